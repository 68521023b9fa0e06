from typing import Any


class LLMError(Exception):
    """A provider-level failure.

    Provider and network errors are the only failures that end a chat
    turn; everything else is folded back into the conversation.

    Args:
        message: Human-readable description.
        code: Stable error code such as ``"PROVIDER_NOT_FOUND"``.
        provider: Provider name or type the error concerns.
        model: Model name, when known.
        retryable: Whether repeating the request may succeed.
        rate_limited: Whether the provider rejected the request for rate.
        details: Underlying error or response payload.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str,
        provider: str,
        model: str | None = None,
        retryable: bool = False,
        rate_limited: bool = False,
        details: Any = None,
    ):
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.model = model
        self.retryable = retryable
        self.rate_limited = rate_limited
        self.details = details


class ToolExecutionError(Exception):
    """Raised by a tool collaborator when a call cannot be completed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


_STATUS_CODES = {
    400: "INVALID_REQUEST",
    401: "INVALID_API_KEY",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def error_code_for_status(status: int | None) -> str:
    if status is None:
        return "UNKNOWN_ERROR"
    return _STATUS_CODES.get(status, "UNKNOWN_ERROR")


def llm_error_from_status(
    message: str, status: int | None, provider: str,
    model: str | None = None, details: Any = None,
) -> LLMError:
    """Build an :class:`LLMError` from an HTTP status (``None`` for network errors)."""
    retryable = status is None or status >= 500 or status == 429
    return LLMError(
        message,
        code=error_code_for_status(status),
        provider=provider,
        model=model,
        retryable=retryable,
        rate_limited=status == 429,
        details=details,
    )
