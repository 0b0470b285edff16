"""Error taxonomy for render jobs.

Every failure that reaches the worker is reduced to one of three kinds. The
kind decides nothing today (all failures are terminal) but is recorded so a
retry policy can later tell transient provider failures from bad input.
"""

from typing import Any


class RenderError(Exception):
    """Base exception for all render failures."""

    kind: str = "render_error"

    def __init__(self, message: str):
        super().__init__(message)

    def to_detail(self) -> dict[str, Any]:
        """Convert exception to a dict stored alongside the job failure."""
        return {"kind": self.kind, "message": str(self)}


class ConfigError(RenderError):
    """Invalid or unsupported job input. Fatal, never retried."""

    kind = "config_error"


class ProviderError(RenderError):
    """A TTS or storage collaborator call failed."""

    kind = "provider_error"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ):
        detail = f"{provider}: {message}"
        if status_code is not None:
            detail += f" (status {status_code})"
        if body:
            detail += f" - {body}"
        super().__init__(detail)
        self.provider = provider
        self.status_code = status_code
        self.body = body

    def to_detail(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": str(self),
            "provider": self.provider,
            "status_code": self.status_code,
            "body": self.body,
        }


class InternalError(RenderError):
    """Unexpected failure anywhere in synthesis."""

    kind = "internal_error"

    def __init__(self, message: str, *, cause: str | None = None):
        super().__init__(message)
        self.cause = cause

    def to_detail(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self), "cause": self.cause}


def describe_failure(exc: BaseException) -> str:
    """Human-readable one-line message for a job's error column."""
    if not isinstance(exc, RenderError):
        exc = InternalError(str(exc) or exc.__class__.__name__, cause=exc.__class__.__name__)
    message = f"{exc.kind}: {exc}"
    if isinstance(exc, InternalError) and exc.cause:
        message += f" [{exc.cause}]"
    return message
