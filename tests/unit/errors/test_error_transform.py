"""Tests for user-facing error descriptions."""

from cachescope.core.keys import ComKey, LocKey
from cachescope.error_transform import (
    ErrorTransformer,
    Severity,
    UserError,
    describe_error,
)
from cachescope.errors import (
    AggregateResolutionError,
    ScopeUnresolved,
    SourceOperationFailed,
    SourceUnavailable,
    SubscriptionFailure,
)
from cachescope.source.memory import ItemNotFound

T1 = ComKey("task", "t1", (LocKey("project", "p1"),))


class DomainError(Exception):
    """Error carrying structured information."""

    def __init__(self, info: dict):  # type: ignore[type-arg]
        super().__init__(info.get("message", ""))
        self.error_info = info


class TestErrorTaxonomy:
    """Test the library's error classes."""

    def test_source_unavailable_is_unresolved(self) -> None:
        """A missing source is a kind of unresolved scope."""
        error = SourceUnavailable("tasks", "all")
        assert isinstance(error, ScopeUnresolved)
        assert error.code == "SOURCE_UNAVAILABLE"
        assert error.operation == "all"

    def test_messages_name_scope_and_operation(self) -> None:
        """Messages identify where the failure happened."""
        assert str(ScopeUnresolved("tasks", "create", "no chain")) == (
            "tasks: no chain for 'create'"
        )
        assert "live invalidation unavailable" in str(SubscriptionFailure("tasks", "down"))
        assert "'owner'" in str(AggregateResolutionError("owner", T1))

    def test_operation_failure_keeps_cause(self) -> None:
        """The wrapped source error stays reachable."""
        cause = KeyError("x")
        error = SourceOperationFailed("tasks", "find", cause)
        assert error.cause is cause
        assert error.__cause__ is cause


class TestErrorTransformer:
    """Test ErrorTransformer."""

    def test_generic_error(self) -> None:
        """Plain exceptions keep their message under UNKNOWN_ERROR."""
        user_error = ErrorTransformer().transform(RuntimeError("boom"))
        assert isinstance(user_error, UserError)
        assert user_error.message == "boom"
        assert user_error.title == "Error"
        assert user_error.details is not None
        assert user_error.details.code == "UNKNOWN_ERROR"

    def test_generic_error_without_message(self) -> None:
        """Empty messages fall back to a description naming the operation."""
        user_error = ErrorTransformer().transform(RuntimeError(), "update")
        assert user_error.message == "An unexpected error occurred during update"

    def test_library_errors_use_their_code(self) -> None:
        """CacheScopeError subclasses are described by code."""
        user_error = describe_error(ScopeUnresolved("tasks", "all", "no chain"))
        assert user_error.title == "Missing Context"
        assert user_error.details.code == "SCOPE_UNRESOLVED"  # type: ignore[union-attr]
        assert user_error.severity is Severity.ERROR

    def test_not_found_is_informational(self) -> None:
        """Missing items are reported at info severity."""
        user_error = describe_error(ItemNotFound(T1))
        assert user_error.title == "Not Found"
        assert user_error.severity is Severity.INFO

    def test_rate_limit_is_warning(self) -> None:
        """Rate limiting is reported as a warning."""
        error = DomainError({"code": "RATE_LIMIT_EXCEEDED", "message": "Slow down"})
        user_error = describe_error(error)
        assert user_error.severity is Severity.WARNING

    def test_retryable_adds_action(self) -> None:
        """Retryable errors offer a Try Again action."""
        error = DomainError(
            {"code": "NETWORK_ERROR", "message": "Offline", "details": {"retryable": True}}
        )
        user_error = describe_error(error)
        assert user_error.details.retryable  # type: ignore[union-attr]
        assert [action.label for action in user_error.actions] == ["Try Again"]

    def test_message_context(self) -> None:
        """Affected items, parent location and suggestions are appended."""
        error = DomainError(
            {
                "code": "BUSINESS_LOGIC_ERROR",
                "message": "Cannot close",
                "context": {
                    "affected_items": [{"type": "task", "id": "t1"}, {"display_name": "Roof"}],
                    "parent_location": {"type": "project", "id": "p1"},
                },
                "details": {"suggested_action": "Finish open tasks first"},
            }
        )
        user_error = describe_error(error)
        assert user_error.message == (
            "Cannot close (Affected: task #t1, Roof) in project #p1\n\nFinish open tasks first"
        )

    def test_valid_options_are_truncated(self) -> None:
        """Long option lists are shortened."""
        options = [f"o{i}" for i in range(8)]
        error = DomainError(
            {"code": "VALIDATION_ERROR", "message": "Bad", "details": {"valid_options": options}}
        )
        user_error = describe_error(error)
        assert user_error.message.endswith("Valid options: o0, o1, o2, o3, o4 and 3 more")

    def test_code_and_technical_details(self) -> None:
        """Codes and request ids are included when enabled."""
        transformer = ErrorTransformer(include_error_code=True, include_technical_details=True)
        error = DomainError(
            {
                "code": "INTERNAL_ERROR",
                "message": "Failed",
                "technical": {"request_id": "req-1"},
            }
        )
        user_error = transformer.transform(error)
        assert user_error.message == "Failed (Error: INTERNAL_ERROR)"
        assert user_error.details.technical == "Request ID: req-1"  # type: ignore[union-attr]

    def test_custom_transformer(self) -> None:
        """Custom transformers take over for their code."""
        transformer = ErrorTransformer(
            custom_transformers={"NOT_FOUND": lambda info: UserError(message="Gone")}
        )
        assert transformer.transform(ItemNotFound(T1)).message == "Gone"
