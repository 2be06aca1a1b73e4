"""Exception hierarchy shared by the tool adapters, dispatcher and API layer."""

from typing import Any, List, Optional


class PromptmackError(Exception):
    """Base class for every error raised on purpose by this package."""


class SchemaViolation(PromptmackError):
    """A tool call's arguments do not satisfy the tool's declared schema."""

    def __init__(self, tool_name: str, message: str, errors: Optional[List[dict]] = None):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message
        self.errors = errors or []


class AdapterFailure(PromptmackError):
    """A vendor call failed: non-2xx status, transport error or missing key."""

    def __init__(
        self,
        vendor: str,
        reason: str,
        *,
        status_code: Optional[int] = None,
        detail: Any = None,
    ):
        message = f"{vendor} {reason}"
        if status_code is not None:
            message = f"{message} ({status_code})"
        super().__init__(message)
        self.vendor = vendor
        self.reason = reason
        self.status_code = status_code
        self.detail = detail


class Unauthorized(PromptmackError):
    """Missing or invalid session, bad credentials, or a chat owned by someone else."""


class PersistenceFailure(PromptmackError):
    """Writing a transcript failed after the response was already delivered."""

    def __init__(self, chat_id: str, cause: BaseException):
        super().__init__(f"failed to save chat {chat_id}: {cause}")
        self.chat_id = chat_id
        self.cause = cause
