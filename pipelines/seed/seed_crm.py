"""
Seed data generator -- creates a realistic CRM booking funnel.

Generates:
  - ~25 staff users (bookers, closers, admins)
  - ~1 500 leads spread over the last 90 days, moving through
    New -> Assigned -> Booked -> Attended -> Sale
  - one sale per converted lead

Tables are created from the CRM schema metadata if they do not exist, then
emptied and refilled, so the script is idempotent.
Run:  python -m pipelines.seed.seed_crm [--leads N] [--days N]
"""
from __future__ import annotations

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url

from crm_assistant.core.config import get_settings
from crm_assistant.schema.loader import CrmSchema, load_crm_schema

# ── Load .env from project root ─────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")

# ── Tunables ─────────────────────────────────────────────
NUM_BOOKERS = 15
NUM_CLOSERS = 8
NUM_ADMINS = 2
NUM_LEADS = 1_500
HISTORY_DAYS = 90

ASSIGN_RATE = 0.85
BOOK_RATE = 0.45
ATTEND_RATE = 0.60
SALE_RATE = 0.35

BOOKED_OUTCOMES = ["Booked", "Cancelled", "No Answer"]
ATTENDED_OUTCOMES = ["Attended", "Complete"]
UNBOOKED_OUTCOMES = ["Assigned", "Contacted", "No Answer", "Not Interested"]
PAYMENT_METHODS = ["card", "cash", "bank_transfer"]
PAYMENT_TYPES = ["full_payment", "finance"]

# Delete children before parents
_TABLE_ORDER = ["sales", "leads", "users"]


def _sync_url(url: str) -> str:
    """Swap an async driver for its blocking counterpart."""
    parsed = make_url(url)
    driver = {
        "postgresql+asyncpg": "postgresql+psycopg2",
        "sqlite+aiosqlite": "sqlite",
    }.get(parsed.drivername, parsed.drivername)
    return parsed.set(drivername=driver).render_as_string(hide_password=False)


# ── Generators ───────────────────────────────────────────

class CrmDataGenerator:
    """Deterministic generator for users, leads and sales."""

    def __init__(self, now: datetime, seed: int = 42, history_days: int = HISTORY_DAYS):
        self.now = now
        self.history_days = history_days
        self.fake = Faker("en_GB")
        self.fake.seed_instance(seed)
        self.rng = random.Random(seed)

    def _ts_after(self, start: datetime, max_hours: int) -> datetime:
        ts = start + timedelta(minutes=self.rng.randint(5, max_hours * 60))
        return min(ts, self.now)

    def users(self) -> list[dict]:
        rows = []
        roles = ["booker"] * NUM_BOOKERS + ["closer"] * NUM_CLOSERS + ["admin"] * NUM_ADMINS
        for role in roles:
            name = self.fake.unique.first_name()
            rows.append({
                "id": self.fake.uuid4(),
                "name": name,
                "email": f"{name.lower()}@{self.fake.domain_name()}",
                "role": role,
                "password_hash": self.fake.sha256(),
                "created_at": self.now - timedelta(days=self.history_days + self.rng.randint(30, 365)),
            })
        return rows

    def leads(self, users: list[dict], count: int = NUM_LEADS) -> list[dict]:
        booker_ids = [u["id"] for u in users if u["role"] in ("booker", "admin")]
        admin_ids = [u["id"] for u in users if u["role"] == "admin"]
        rows = []
        for _ in range(count):
            created = self.now - timedelta(
                days=self.rng.randint(0, self.history_days),
                hours=self.rng.randint(0, 23),
                minutes=self.rng.randint(0, 59),
            )
            lead = {
                "id": self.fake.uuid4(),
                "name": self.fake.name(),
                "phone": self.fake.phone_number(),
                "email": self.fake.email(),
                "age": self.rng.randint(18, 70),
                "postcode": self.fake.postcode(),
                "status": "New",
                "date_booked": None,
                "booked_at": None,
                "assigned_at": None,
                "booker_id": None,
                "created_by_user_id": self.rng.choice(admin_ids),
                "has_sale": 0,
                "created_at": created,
                "updated_at": created,
            }
            if self.rng.random() < ASSIGN_RATE:
                lead["assigned_at"] = self._ts_after(created, 24)
                lead["booker_id"] = self.rng.choice(booker_ids)
                lead["status"] = self.rng.choice(UNBOOKED_OUTCOMES)
                if self.rng.random() < BOOK_RATE:
                    lead["booked_at"] = self._ts_after(lead["assigned_at"], 72)
                    lead["date_booked"] = lead["booked_at"] + timedelta(days=self.rng.randint(1, 14))
                    attended = lead["date_booked"] <= self.now and self.rng.random() < ATTEND_RATE
                    lead["status"] = (
                        self.rng.choice(ATTENDED_OUTCOMES) if attended
                        else self.rng.choice(BOOKED_OUTCOMES)
                    )
                lead["updated_at"] = max(v for v in (lead["assigned_at"], lead["booked_at"]) if v)
            rows.append(lead)
        return rows

    def sales(self, users: list[dict], leads: list[dict]) -> list[dict]:
        seller_ids = [u["id"] for u in users if u["role"] in ("closer", "admin")]
        rows = []
        for lead in leads:
            if lead["status"] not in ATTENDED_OUTCOMES or self.rng.random() >= SALE_RATE:
                continue
            lead["has_sale"] = 1
            created = min(lead["date_booked"] + timedelta(hours=self.rng.randint(1, 6)), self.now)
            rows.append({
                "id": self.fake.uuid4(),
                "lead_id": lead["id"],
                "user_id": self.rng.choice(seller_ids),
                "amount": round(self.rng.uniform(250.0, 4_500.0), 2),
                "payment_method": self.rng.choice(PAYMENT_METHODS),
                "payment_type": self.rng.choice(PAYMENT_TYPES),
                "payment_status": "paid",
                "status": "completed",
                "created_at": created,
                "updated_at": created,
            })
        return rows


# ── Load ─────────────────────────────────────────────────

def _bulk_insert(engine: Engine, schema: CrmSchema, table: str, rows: list[dict],
                 batch_size: int = 500) -> None:
    """Insert rows into *table* in batches using executemany."""
    if not rows:
        return
    sa_table = schema.sa_table(table)
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(sa_table.insert(), rows[i : i + batch_size])


def seed(
    engine: Engine,
    schema: CrmSchema | None = None,
    num_leads: int = NUM_LEADS,
    history_days: int = HISTORY_DAYS,
    now: datetime | None = None,
    rng_seed: int = 42,
) -> dict[str, int]:
    """Create the CRM tables if needed, replace their contents, return row counts."""
    schema = schema or load_crm_schema()
    now = now or datetime.now(timezone.utc)

    schema.metadata.create_all(engine)
    with engine.begin() as conn:
        for name in _TABLE_ORDER:
            conn.execute(schema.sa_table(name).delete())

    gen = CrmDataGenerator(now, seed=rng_seed, history_days=history_days)
    users = gen.users()
    leads = gen.leads(users, num_leads)
    sales = gen.sales(users, leads)

    for name, rows in (("users", users), ("leads", leads), ("sales", sales)):
        _bulk_insert(engine, schema, name, rows)

    return {"users": len(users), "leads": len(leads), "sales": len(sales)}


# ── Main ─────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed the CRM database with synthetic data")
    parser.add_argument("--leads", type=int, default=NUM_LEADS, help="number of leads")
    parser.add_argument("--days", type=int, default=HISTORY_DAYS, help="days of history")
    parser.add_argument("--seed", type=int, default=42, help="random seed")
    args = parser.parse_args(argv)

    print("═══ CRM Seed Data Generator ═══")
    engine = create_engine(_sync_url(get_settings().database_url), echo=False)
    try:
        counts = seed(engine, num_leads=args.leads, history_days=args.days, rng_seed=args.seed)
    finally:
        engine.dispose()

    print(f"Done -- seeded {counts['users']:,} users, {counts['leads']:,} leads, "
          f"{counts['sales']:,} sales.")


if __name__ == "__main__":
    main()
