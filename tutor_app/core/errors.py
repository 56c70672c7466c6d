"""Error taxonomy shared by the session engine and its collaborators."""

from __future__ import annotations


class TutorError(Exception):
    """Base class for recoverable engine failures."""


class TransientNetworkError(TutorError):
    """A content or persistence call failed; the user must re-trigger the action."""


class AuthRequiredError(TutorError):
    """The action needs an authenticated user."""


class RateLimitedError(TutorError):
    """The content service rejected the call because of usage limits."""

    def __init__(self, message: str = "Rate limit reached.", retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds
