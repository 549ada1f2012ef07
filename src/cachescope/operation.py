"""Operation runner with user-facing error reporting.

Wraps any async operation (usually a bound scope operation) and tracks its
loading flag, last result and last error. Errors are described with an
ErrorTransformer; by default they are reported, not raised.

Example:
    runner = OperationRunner(view.update, on_error=show_toast)
    await runner.execute({"name": "renamed"})
    if runner.error:
        ...
    await runner.retry()
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from cachescope.error_transform import ErrorTransformer, UserError, default_error_transformer
from cachescope.errors import CacheScopeError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationRunner(Generic[T]):
    def __init__(
        self,
        operation: Callable[..., Awaitable[T]],
        *,
        on_success: Callable[[T], Any] | None = None,
        on_error: Callable[[UserError, BaseException], Any] | None = None,
        throw_on_error: bool = False,
        transformer: ErrorTransformer | None = None,
    ):
        self.operation = operation
        self.on_success = on_success
        self.on_error = on_error
        self.throw_on_error = throw_on_error
        self.transformer = transformer or default_error_transformer
        self.loading = False
        self.error: UserError | None = None
        self.result: T | None = None
        self._last_args: tuple[tuple[Any, ...], dict[str, Any]] | None = None

    @property
    def name(self) -> str:
        return getattr(self.operation, "__name__", None) or "unknown"

    async def execute(self, *args: Any, **kwargs: Any) -> T | None:
        self.loading = True
        self.error = None
        self._last_args = (args, kwargs)
        try:
            result = await self.operation(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"Operation {self.name} failed: {type(e).__name__}: {e}",
                extra={"operation": self.name, "error_type": type(e).__name__},
            )
            self.error = self.transformer.transform(e, self.name)
            if self.on_error is not None:
                self.on_error(self.error, e)
            if self.throw_on_error:
                raise
            return None
        finally:
            self.loading = False

        self.result = result
        if self.on_success is not None:
            self.on_success(result)
        return result

    def reset(self) -> None:
        self.loading = False
        self.error = None
        self.result = None
        self._last_args = None

    async def retry(self) -> T | None:
        """Run the operation again with the arguments of the last execute()."""
        if self._last_args is None:
            raise CacheScopeError("Cannot retry: no previous operation")
        args, kwargs = self._last_args
        return await self.execute(*args, **kwargs)
