"""Global pytest configuration and fixtures.

Provides two in-memory cache sources shared by the unit tests:
- projects: primary items keyed by PriKey("project", ...)
- tasks: items contained in projects, keyed by ComKey("task", ..., (project,))
"""

from __future__ import annotations

import pytest

from cachescope.core.keys import ComKey, LocKey, PriKey
from cachescope.source.memory import InMemoryCacheSource

P1 = (LocKey("project", "p1"),)
P2 = (LocKey("project", "p2"),)
T1 = ComKey("task", "t1", P1)
T2 = ComKey("task", "t2", P1)
T3 = ComKey("task", "t3", P2)


@pytest.fixture
def project_source() -> InMemoryCacheSource:
    """Primary source with two projects."""
    source = InMemoryCacheSource(("project",), name="projects")
    source.seed({"key": PriKey("project", "p1"), "name": "Apollo"})
    source.seed({"key": PriKey("project", "p2"), "name": "Gemini"})
    return source


@pytest.fixture
def task_source() -> InMemoryCacheSource:
    """Contained source: two tasks in p1, one in p2."""
    source = InMemoryCacheSource(("task", "project"), name="tasks")
    source.seed({"key": T1, "name": "a", "done": False})
    source.seed({"key": T2, "name": "b", "done": True})
    source.seed({"key": T3, "name": "a", "done": False})

    source.register_finder("byName", lambda item, params: item["name"] == params.get("name"))
    source.register_action("complete", lambda item, body: {**item, "done": True})
    source.register_all_action(
        "completeAll", lambda items, body: [{**item, "done": True} for item in items]
    )
    source.register_facet("summary", lambda item, params: {"name": item["name"], **params})
    source.register_all_facet("count", lambda items, params: {"count": len(items)})
    return source
