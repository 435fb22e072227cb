"""
Error taxonomy of the orchestration core.

Only subclasses of OrchestrationError cross the core boundary. Provider
errors are internal to the dispatcher and are always converted into a
fallback, a default artifact or ServiceUnavailable.
"""

from typing import Sequence

from coachcore.models import ProviderResult


class OrchestrationError(Exception):
    """Base class for every failure reported to callers of the core."""


class QuotaExceeded(OrchestrationError):
    """Daily quota used up. Terminal until the next calendar day."""

    def __init__(self, limit: "int", retry_after: "float") -> "None":
        super().__init__(
            f"Daily AI usage limit of {limit} requests exceeded. "
            "Upgrade to Pro for unlimited access."
        )
        self.limit = limit
        self.retry_after = retry_after


class RateLimited(OrchestrationError):
    """Per-minute ceiling hit. The caller may retry after wait_seconds."""

    def __init__(self, wait_seconds: "float") -> "None":
        super().__init__(
            f"Too many requests. Please wait {int(wait_seconds) + 1} seconds "
            "before trying again."
        )
        self.wait_seconds = wait_seconds


class ServiceUnavailable(OrchestrationError):
    def __init__(self, kind: "str", failures: "Sequence[str]" = ()) -> "None":
        super().__init__(
            "AI service is temporarily unavailable. Please try again later."
        )
        self.kind = kind
        self.failures = tuple(failures)


class MalformedInput(OrchestrationError):
    pass


class ProviderError(Exception):
    """
    ProviderError is raised by a single provider attempt. When the provider
    returned a billable response before failing, result carries it so the
    tokens can still be accounted.
    """

    def __init__(
        self,
        provider: "str",
        message: "str",
        result: "ProviderResult | None" = None,
    ) -> "None":
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.result = result


class ProviderTransportError(ProviderError):
    pass


class ProviderBadResponse(ProviderError):
    pass
