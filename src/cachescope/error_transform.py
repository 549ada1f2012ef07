"""User-facing error descriptions.

Turns any exception raised through a binding or scope into a UserError
suitable for display: a message, a title, a severity and a structured
details block. Errors can carry structured information as an ``error_info``
mapping with the keys ``code``, ``message``, ``details``, ``context`` and
``technical``. Library errors (CacheScopeError) are described by their code.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from cachescope.errors import CacheScopeError


class Severity(str, Enum):
    """Display severity of a user error."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorDetails(BaseModel):
    """Machine-readable part of a user error."""

    code: str
    retryable: bool = False
    technical: str | None = None


class UserAction(BaseModel):
    """An action offered alongside an error (e.g. "Try Again")."""

    label: str
    action: Callable[[], Any]


class UserError(BaseModel):
    """Error description for presentation."""

    message: str
    title: str | None = None
    severity: Severity = Severity.ERROR
    details: ErrorDetails | None = None
    actions: list[UserAction] = Field(default_factory=list)


ErrorInfo = Mapping[str, Any]
CustomTransformer = Callable[[ErrorInfo], UserError]

ERROR_TITLES: dict[str, str] = {
    "VALIDATION_ERROR": "Validation Error",
    "NOT_FOUND": "Not Found",
    "PERMISSION_ERROR": "Access Denied",
    "UNAUTHORIZED": "Unauthorized",
    "BUSINESS_LOGIC_ERROR": "Operation Failed",
    "DUPLICATE_ERROR": "Duplicate Entry",
    "RATE_LIMIT_EXCEEDED": "Rate Limit Exceeded",
    "NETWORK_ERROR": "Network Error",
    "TIMEOUT": "Request Timeout",
    "INTERNAL_ERROR": "Server Error",
    "SCOPE_UNRESOLVED": "Missing Context",
    "SOURCE_UNAVAILABLE": "Cache Unavailable",
    "BINDING_CLOSED": "Scope Closed",
}

WARNING_CODES = frozenset({"RATE_LIMIT_EXCEEDED"})
INFO_CODES = frozenset({"NOT_FOUND"})

MAX_LISTED_OPTIONS = 5


def _noop() -> None:
    return None


class ErrorTransformer:
    """Transform arbitrary exceptions into UserError objects."""

    def __init__(
        self,
        include_error_code: bool = False,
        include_technical_details: bool = False,
        custom_transformers: Mapping[str, CustomTransformer] | None = None,
    ):
        self.include_error_code = include_error_code
        self.include_technical_details = include_technical_details
        self.custom_transformers = dict(custom_transformers or {})

    def transform(self, error: Any, operation: str | None = None) -> UserError:
        """Describe an error for display.

        Args:
            error: Any raised object
            operation: Name of the operation that failed, used in the
                generic fallback message

        Returns:
            UserError describing the failure
        """
        info = self.extract_error_info(error)
        if info is None:
            return self._generic_error(error, operation)

        custom = self.custom_transformers.get(info["code"])
        if custom is not None:
            return custom(info)

        return self._from_error_info(info)

    @staticmethod
    def extract_error_info(error: Any) -> ErrorInfo | None:
        """Pull structured error information off an exception, if any."""
        info = getattr(error, "error_info", None)
        if isinstance(info, Mapping) and "code" in info:
            return info
        if isinstance(error, CacheScopeError):
            return {"code": error.code, "message": str(error)}
        return None

    def _from_error_info(self, info: ErrorInfo) -> UserError:
        code = str(info["code"])
        details = info.get("details") or {}
        retryable = bool(details.get("retryable", False))

        user_error = UserError(
            message=self._build_message(info),
            title=ERROR_TITLES.get(code, "Error"),
            severity=self._severity(code),
            details=ErrorDetails(code=code, retryable=retryable),
        )

        if retryable:
            user_error.actions.append(UserAction(label="Try Again", action=_noop))

        technical = info.get("technical")
        if self.include_technical_details and technical:
            request_id = technical.get("request_id") or "N/A"
            user_error.details.technical = f"Request ID: {request_id}"  # type: ignore[union-attr]

        if self.include_error_code:
            user_error.message += f" (Error: {code})"

        return user_error

    @staticmethod
    def _build_message(info: ErrorInfo) -> str:
        message = str(info.get("message") or "An unexpected error occurred")
        context = info.get("context") or {}
        details = info.get("details") or {}

        affected = context.get("affected_items") or []
        if affected:
            names = ", ".join(
                item.get("display_name") or f"{item.get('type')} #{item.get('id')}"
                for item in affected
            )
            message = f"{message} (Affected: {names})"

        parent = context.get("parent_location")
        if parent:
            message = f"{message} in {parent.get('type')} #{parent.get('id')}"

        suggested = details.get("suggested_action")
        if suggested:
            message += f"\n\n{suggested}"

        options = list(details.get("valid_options") or [])
        if options:
            if len(options) <= MAX_LISTED_OPTIONS:
                message += f"\n\nValid options: {', '.join(map(str, options))}"
            else:
                shown = ", ".join(map(str, options[:MAX_LISTED_OPTIONS]))
                message += (
                    f"\n\nValid options: {shown} and {len(options) - MAX_LISTED_OPTIONS} more"
                )

        return message

    @staticmethod
    def _severity(code: str) -> Severity:
        if code in WARNING_CODES:
            return Severity.WARNING
        if code in INFO_CODES:
            return Severity.INFO
        return Severity.ERROR

    @staticmethod
    def _generic_error(error: Any, operation: str | None) -> UserError:
        text = str(error) if error is not None else ""
        if not text:
            text = "An unexpected error occurred"
            if operation:
                text = f"{text} during {operation}"
        return UserError(
            message=text,
            title="Error",
            severity=Severity.ERROR,
            details=ErrorDetails(code="UNKNOWN_ERROR", retryable=False),
        )


default_error_transformer = ErrorTransformer()


def describe_error(error: Any, operation: str | None = None) -> UserError:
    """Describe an error with the default transformer."""
    return default_error_transformer.transform(error, operation)
