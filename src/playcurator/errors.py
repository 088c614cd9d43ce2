"""Error taxonomy shared by the curation core and its collaborators."""

from __future__ import annotations

from typing import Literal

FailureKind = Literal["auth", "rate_limit", "quota", "internal"]


class CuratorError(Exception):
    """Base class for all playcurator errors."""


class ValidationError(CuratorError, ValueError):
    """Malformed playlist configuration, rejected before a run starts."""


class RemoteError(CuratorError):
    """Non-retryable failure reported by the remote playlist service."""


class RemoteTransientError(RemoteError):
    """Rate limit or server error that persisted after the transport's retries."""


class RateLimitError(RemoteTransientError):
    """The remote kept answering 429 after all retries."""

    def __init__(self, message: str = "Rate limited", *, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RemoteAuthError(RemoteError):
    """Credentials were rejected even after a token refresh."""


class AIProviderError(CuratorError):
    """The AI suggestion provider failed."""


class AIQuotaError(AIProviderError):
    """The AI provider quota is exhausted."""


class PlanNotFoundError(CuratorError, LookupError):
    """A plan id is unknown, already consumed, or expired."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id!r} not found or expired; estimate the playlist again")
        self.plan_id = plan_id


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception onto the coarse failure kinds shown to users."""
    if isinstance(exc, RemoteAuthError):
        return "auth"
    if isinstance(exc, RateLimitError):
        return "rate_limit"
    if isinstance(exc, AIQuotaError):
        return "quota"
    return "internal"


_MESSAGES: dict[FailureKind, str] = {
    "auth": "Spotify rejected the stored credentials. Re-authorize and update spotify.refresh_token.",
    "rate_limit": "Spotify is limiting our requests. Please try again in a few minutes.",
    "quota": "AI generation quota exceeded. Try a different model or wait.",
}


def describe_failure(exc: BaseException) -> str:
    """Return a human-readable message distinguishing auth, rate-limit, quota and internal failures."""
    kind = classify_failure(exc)
    if kind in _MESSAGES:
        return _MESSAGES[kind]
    return f"Curation failed: {exc}"
