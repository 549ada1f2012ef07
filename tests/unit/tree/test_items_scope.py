"""Tests for collection scopes."""

import asyncio

import pytest

from cachescope.binding.adapter import AdapterBinding
from cachescope.core.keys import ComKey, LocKey, PriKey
from cachescope.errors import ScopeUnresolved
from cachescope.source.memory import InMemoryCacheSource
from cachescope.tree.item import ItemScope
from cachescope.tree.items import ItemsScope
from cachescope.tree.views import ItemsView, facet_result

P1 = (LocKey("project", "p1"),)
T1 = ComKey("task", "t1", P1)
T2 = ComKey("task", "t2", P1)
PROJECT_1 = PriKey("project", "p1")


async def mount_tasks_under_p1(
    project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
) -> tuple[ItemScope, ItemsScope]:
    project = ItemScope(AdapterBinding("projects", project_source), key=PROJECT_1)
    tasks = ItemsScope(AdapterBinding("tasks", task_source), parent=project)
    await project.mount()
    return project, tasks


class TestLoading:
    """Test the initial query."""

    async def test_primary_binding_needs_no_ancestor(
        self, project_source: InMemoryCacheSource
    ) -> None:
        """A primary collection runs under the empty chain."""
        scope = ItemsScope(AdapterBinding("projects", project_source))
        await scope.mount()
        view = scope.view
        assert isinstance(view, ItemsView)
        assert view.locations == ()
        assert {item["name"] for item in view.items} == {"Apollo", "Gemini"}

    async def test_chain_from_nearest_item(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """A contained collection loads under the parent item's chain."""
        _, tasks = await mount_tasks_under_p1(project_source, task_source)
        assert tasks.view.locations == P1
        assert [item["key"] for item in tasks.view.items] == [T1, T2]
        assert tasks.view.parent_item["name"] == "Apollo"

    async def test_contained_without_ancestor(self, task_source: InMemoryCacheSource) -> None:
        """Without a chain the load records ScopeUnresolved and calls nothing."""
        scope = ItemsScope(AdapterBinding("tasks", task_source))
        await scope.mount()
        assert isinstance(scope.view.last_error, ScopeUnresolved)
        assert scope.view.items == ()
        assert task_source.calls == []

    async def test_mutation_without_chain_raises(self, task_source: InMemoryCacheSource) -> None:
        """create() without a chain raises before reaching the source."""
        scope = ItemsScope(AdapterBinding("tasks", task_source), load_on_mount=False)
        await scope.mount()
        with pytest.raises(ScopeUnresolved):
            await scope.view.create({"name": "orphan"})
        assert task_source.calls == []

    async def test_supplied_items_skip_load(self, project_source: InMemoryCacheSource) -> None:
        """Items passed in directly are published as-is."""
        items = [{"key": PriKey("project", "p9"), "name": "given"}]
        scope = ItemsScope(AdapterBinding("projects", project_source), items=items)
        await scope.mount()
        assert scope.view.items == tuple(items)
        assert project_source.calls == []

    async def test_query_invalidation_reloads(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """Query invalidation reruns the scope's query."""
        project, tasks = await mount_tasks_under_p1(project_source, task_source)
        task_source.seed({"key": ComKey("task", "t4", P1), "name": "d"})

        await task_source.invalidate()
        await project.settle()

        assert len(tasks.view.items) == 3


class TestBoundOperations:
    """Test collection operations bound to the scope's chain."""

    async def test_create_appends(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """A created item lands under the chain and in the view."""
        _, tasks = await mount_tasks_under_p1(project_source, task_source)
        created = await tasks.view.create({"id": "t9", "name": "new"})
        assert created["key"] == ComKey("task", "t9", P1)
        assert tasks.view.items[-1] is created

    async def test_update_and_remove(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """update() replaces the item in place; remove() drops it."""
        _, tasks = await mount_tasks_under_p1(project_source, task_source)
        await tasks.view.update(T1, {"name": "renamed"})
        assert tasks.view.items[0]["name"] == "renamed"
        await tasks.view.remove(T1)
        assert [item["key"] for item in tasks.view.items] == [T2]

    async def test_all_action_replaces_items(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """Items returned by a collection action replace the listed ones."""
        _, tasks = await mount_tasks_under_p1(project_source, task_source)
        await tasks.view.all_action("completeAll")
        assert all(item["done"] for item in tasks.view.items)

    async def test_all_facet_merges_result(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """Collection facet results are memoized on the view."""
        _, tasks = await mount_tasks_under_p1(project_source, task_source)
        result = await tasks.view.all_facet("count")
        assert result == {"count": 2}
        assert facet_result(tasks.view, "count") == {"count": 2}

    async def test_find_runs_under_chain(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """Finder calls are constrained to the parent's items."""
        _, tasks = await mount_tasks_under_p1(project_source, task_source)
        found = await tasks.view.find("byName", {"name": "a"})
        assert [item["key"] for item in found] == [T1]

    async def test_named_queries(
        self, project_source: InMemoryCacheSource, task_source: InMemoryCacheSource
    ) -> None:
        """add_queries builds helpers over find()."""
        project = ItemScope(AdapterBinding("projects", project_source), key=PROJECT_1)
        tasks = ItemsScope(
            AdapterBinding("tasks", task_source),
            parent=project,
            add_queries=lambda find: {"named": lambda name: find("byName", {"name": name})},
        )
        await project.mount()
        found = await tasks.view.queries["named"]("b")
        assert [item["key"] for item in found] == [T2]


class TestUnmount:
    """Test that nothing is written after unmount."""

    async def test_late_all_result_is_dropped(self) -> None:
        """all() finishing after unmount leaves the view and binding untouched."""
        source = InMemoryCacheSource(
            ("project",), [{"key": PriKey("project", "p1"), "name": "Apollo"}], latency_ms=30
        )
        binding = AdapterBinding("projects", source)
        scope = ItemsScope(binding, load_on_mount=False)
        await scope.mount()

        task = asyncio.create_task(scope.view.all())
        await asyncio.sleep(0.01)
        before = scope.view
        assert before.is_loading
        scope.unmount()
        items = await task

        assert len(items) == 1
        assert scope.items == []
        assert scope.view is before
        assert binding.store.revision == 0

    async def test_late_load_is_dropped(self) -> None:
        """A load finishing after unmount records nothing."""
        source = InMemoryCacheSource(
            ("project",), [{"key": PriKey("project", "p1"), "name": "Apollo"}], latency_ms=30
        )
        scope = ItemsScope(AdapterBinding("projects", source), load_on_mount=False)
        await scope.mount()

        task = asyncio.create_task(scope.load())
        await asyncio.sleep(0.01)
        scope.unmount()
        await task

        assert scope.items == []
        assert scope.last_error is None

    async def test_load_after_unmount_skips_source(self) -> None:
        """Loading an unmounted scope neither calls the source nor records an error."""
        source = InMemoryCacheSource(("project",), [{"key": PriKey("project", "p1")}])
        scope = ItemsScope(AdapterBinding("projects", source), load_on_mount=False)
        await scope.mount()
        scope.unmount()

        assert await scope.load() == []
        assert source.calls == []
        assert scope.last_error is None
