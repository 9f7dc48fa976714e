"""
Text-generation client -- provider-agnostic async wrapper.

Supported providers:
  mock      -- echo back the prompt (for tests / offline dev)
  openai    -- OpenAI Chat Completions (gpt-4o-mini default)
  anthropic -- Anthropic Messages (claude-3-haiku default)

One instance is constructed by the application root and shared by the
query generator and the response formatter.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable

from crm_assistant.core.config import Settings, get_settings
from crm_assistant.core.errors import ServiceUnavailable, UpstreamGenerationError
from crm_assistant.core.logging import get_logger

logger = get_logger(__name__)


_OPENAI_DEFAULT_MODEL = "gpt-4o-mini"
_ANTHROPIC_DEFAULT_MODEL = "claude-3-haiku-20240307"

_SYSTEM_PROMPT = "You are a helpful analytics assistant for a sales CRM."


class TextGenerator:
    """Async text generation against the configured provider.

    Parameters
    ----------
    provider : str
        One of: mock, openai, anthropic.
    api_key : str
        Provider API key (ignored for mock).
    model : str
        Model override; provider default when empty.
    timeout : float
        Per-call timeout in seconds.
    """

    def __init__(self, provider: str = "mock", api_key: str = "", model: str = "", timeout: float = 30.0):
        self.provider = provider.lower()
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TextGenerator:
        settings = settings or get_settings()
        provider = settings.llm_provider.lower()
        key = {
            "openai": settings.openai_api_key,
            "anthropic": settings.anthropic_api_key,
        }.get(provider, "")
        return cls(provider=provider, api_key=key, model=settings.llm_model,
                   timeout=settings.llm_timeout_seconds)

    @property
    def is_mock(self) -> bool:
        return self.provider == "mock"

    @property
    def available(self) -> bool:
        return self.is_mock or bool(self.api_key)

    # ── Providers ────────────────────────────────────────

    async def _call_mock(self, prompt: str, max_tokens: int) -> str:
        logger.info("LLM mock mode -- returning echo")
        return f"[MOCK] {prompt[:200]}"

    async def _call_openai(self, prompt: str, max_tokens: int) -> str:
        """Call OpenAI Chat Completions."""
        if not self.api_key:
            raise ServiceUnavailable(
                "openai_api_key is not set.  "
                "Set OPENAI_API_KEY in your .env file or environment."
            )

        import openai

        client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        response = await client.chat.completions.create(
            model=self.model or _OPENAI_DEFAULT_MODEL,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.0,
            max_tokens=max_tokens,
        )
        text = response.choices[0].message.content or ""
        logger.info("OpenAI response (%d chars)", len(text))
        return text

    async def _call_anthropic(self, prompt: str, max_tokens: int) -> str:
        """Call Anthropic Messages."""
        if not self.api_key:
            raise ServiceUnavailable(
                "anthropic_api_key is not set.  "
                "Set ANTHROPIC_API_KEY in your .env file or environment."
            )

        import anthropic

        client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        response = await client.messages.create(
            model=self.model or _ANTHROPIC_DEFAULT_MODEL,
            max_tokens=max_tokens,
            system=_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        text = response.content[0].text if response.content else ""
        logger.info("Anthropic response (%d chars)", len(text))
        return text

    def _provider_fn(self) -> Callable[[str, int], Awaitable[str]]:
        providers: dict[str, Any] = {
            "mock": self._call_mock,
            "openai": self._call_openai,
            "anthropic": self._call_anthropic,
        }
        fn = providers.get(self.provider)
        if fn is None:
            raise NotImplementedError(
                f"LLM provider '{self.provider}' is not supported.  "
                f"Choose from: {', '.join(providers)}"
            )
        return fn

    # ── Public API ───────────────────────────────────────

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        """Send *prompt* to the provider and return the generated text.

        Raises
        ------
        ServiceUnavailable
            The provider has no API key configured.
        UpstreamGenerationError
            The provider call failed.
        """
        fn = self._provider_fn()
        logger.info("Calling LLM provider=%s  prompt_len=%d", self.provider, len(prompt))
        try:
            return await fn(prompt, max_tokens)
        except (ServiceUnavailable, NotImplementedError):
            raise
        except Exception as exc:
            logger.warning("LLM provider=%s failed: %s", self.provider, exc)
            raise UpstreamGenerationError(f"Text generation failed: {exc}") from exc
