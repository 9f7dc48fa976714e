"""
Error taxonomy for the analytics assistant.

Every domain error carries the HTTP status the API layer maps it to.
"""
from __future__ import annotations


class AssistantError(Exception):
    """Base class for all assistant errors."""

    status_code: int = 500


class ValidationError(AssistantError):
    """The inbound question is missing or malformed."""

    status_code = 400


class ServiceUnavailable(AssistantError):
    """The text-generation service is not configured."""

    status_code = 503


class UpstreamGenerationError(AssistantError):
    """The text-generation service failed or returned an unusable descriptor."""


class DescriptorRejectedError(UpstreamGenerationError):
    """A generated descriptor references tables/columns outside the schema allow-list."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Generated query was rejected: " + "; ".join(errors))


class QueryExecutionError(AssistantError):
    """The store rejected or failed to run a query."""


class DelegatedEndpointError(AssistantError):
    """A delegated CRM read endpoint could not be reached or answered with an error."""


class UnknownStrategyError(AssistantError):
    """The dispatcher has no handler for a classified strategy."""
