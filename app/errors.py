"""Typed failures of the completions pipeline.

Every failure path raises a subclass of CompletionError so callers can branch on
the error kind instead of message text. Each error carries the HTTP status it maps
to, a plain-text message for the response body, and optional response headers.
"""
from typing import Dict, Optional


class CompletionError(Exception):
    """Base exception for the completions pipeline."""

    status_code: int = 400
    error_code: str = "COMPLETION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.headers: Dict[str, str] = dict(headers or {})
        self.cause = cause

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_code}: {self.message})"


class MissingProject(CompletionError):
    error_code = "MISSING_PROJECT"

    def __init__(self, message: str = "No project found", **kwargs):
        super().__init__(message, **kwargs)


class MissingPrompt(CompletionError):
    error_code = "MISSING_PROMPT"

    def __init__(self, message: str = "No prompt provided", **kwargs):
        super().__init__(message, **kwargs)


class RateLimited(CompletionError):
    """Admission was refused for the project; carries the retry window in seconds."""

    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, retry_after: int, **kwargs):
        self.retry_after = max(0, int(retry_after))
        unit = "second" if self.retry_after == 1 else "seconds"
        super().__init__(
            f"Too many requests. Please try again in {self.retry_after} {unit}.", **kwargs
        )
        self.headers.setdefault("Retry-After", str(self.retry_after))


class ContentRejected(CompletionError):
    error_code = "CONTENT_REJECTED"

    def __init__(self, message: str = "Flagged content", **kwargs):
        super().__init__(message, **kwargs)


class ModerationFailed(CompletionError):
    error_code = "MODERATION_FAILED"


class EmbeddingFailed(CompletionError):
    error_code = "EMBEDDING_FAILED"


class NoRelevantContext(CompletionError):
    error_code = "NO_RELEVANT_CONTEXT"

    def __init__(self, message: str = "No relevant sections found", **kwargs):
        super().__init__(message, **kwargs)


class RetrievalFailed(CompletionError):
    error_code = "RETRIEVAL_FAILED"


class UpstreamStreamError(CompletionError):
    """The completion endpoint refused the request or broke the event stream."""

    status_code = 502
    error_code = "UPSTREAM_STREAM_ERROR"


class InvalidRequest(CompletionError):
    """The request body is not a JSON object of the expected shape."""

    error_code = "INVALID_REQUEST"

    def __init__(self, message: str = "Invalid request body", **kwargs):
        super().__init__(message, **kwargs)
