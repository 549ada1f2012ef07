"""Scope tree nodes.

Scopes form an explicit publish/subscribe tree. Each node publishes an
immutable view; descendants find the nearest ancestor of a given kind and
watch its view instead of looking anything up independently.

Lifecycle:
- mount() resolves the node against its ancestors, registers watches and
  subscriptions, and runs the initial load. It cascades to children.
- unmount() cascades to children first, then runs every registered release.
  After unmount a node publishes nothing; results of calls still in flight
  are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from cachescope.binding.state import InFlightTracker, OperationCategory

logger = logging.getLogger(__name__)

ViewListener = Callable[[Any], None]


class ScopeNode(ABC):
    """Base class for every scope in the tree."""

    kind = "scope"

    def __init__(self, name: str | None = None, parent: ScopeNode | None = None):
        self.name = name or self.kind
        self.parent = parent
        self.children: list[ScopeNode] = []
        # Extra kinds this node stands in for once mounted
        self.aliases: frozenset[str] = frozenset()
        self.tracker = InFlightTracker()
        self._view: Any = None
        self._listeners: list[ViewListener] = []
        self._releases: list[Callable[[], None]] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._mounted = False
        self._unmounted = False
        if parent is not None:
            parent.children.append(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    @property
    def view(self) -> Any:
        return self._view

    @property
    def mounted(self) -> bool:
        return self._mounted and not self._unmounted

    @property
    def unmounted(self) -> bool:
        return self._unmounted

    def provides(self, kind: str) -> bool:
        return kind == self.kind or kind in self.aliases

    def nearest(self, kind: str) -> ScopeNode | None:
        """Closest ancestor (not self) that provides kind."""
        node = self.parent
        while node is not None:
            if node.provides(kind):
                return node
            node = node.parent
        return None

    def watch(self, listener: ViewListener) -> Callable[[], None]:
        """Call listener with every newly published view."""
        self._listeners.append(listener)

        def unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unwatch

    def publish(self, view: Any) -> bool:
        """Replace the published view. Returns False once unmounted."""
        if self._unmounted:
            return False
        self._view = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception(f"Error in {self.name} view listener")
        return True

    def refresh(self) -> None:
        if not self._unmounted:
            self.publish(self.render())

    @abstractmethod
    def render(self) -> Any:
        """Build the view for the node's current state."""
        pass

    def own(self, release: Callable[[], None]) -> None:
        """Run release on unmount."""
        self._releases.append(release)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @contextmanager
    def inflight(self, category: OperationCategory) -> Iterator[None]:
        """Raise a flag on this node for the duration of a call.

        The view is left as published once the node is unmounted.
        """
        try:
            with self.tracker.track(category):
                self.refresh()
                yield
        finally:
            self.refresh()

    async def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        await self.on_mount()
        for child in list(self.children):
            await child.mount()

    async def on_mount(self) -> None:
        self.refresh()

    def unmount(self) -> None:
        if self._unmounted:
            return
        for child in reversed(list(self.children)):
            child.unmount()
        self._unmounted = True

        releases, self._releases = self._releases, []
        for release in reversed(releases):
            try:
                release()
            except Exception:
                logger.exception(f"Error releasing {self.name}")
        self._listeners.clear()

        if self.parent is not None and self in self.parent.children:
            self.parent.children.remove(self)
        logger.debug(f"Unmounted {self!r}")

    async def settle(self) -> None:
        """Wait for background work started by this node and its children."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for child in list(self.children):
            await child.settle()

    async def __aenter__(self) -> ScopeNode:
        await self.mount()
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.unmount()


@dataclass(frozen=True, slots=True)
class Attached:
    """An ancestor of the wanted kind exists; results merge into its view."""

    ancestor: ScopeNode


@dataclass(frozen=True, slots=True)
class Detached:
    """No ancestor of the wanted kind; the node publishes a fresh view."""

    kind: str


Attachment = Attached | Detached


def resolve_attachment(node: ScopeNode, kind: str) -> Attachment:
    ancestor = node.nearest(kind)
    if ancestor is not None:
        return Attached(ancestor)
    return Detached(kind)
