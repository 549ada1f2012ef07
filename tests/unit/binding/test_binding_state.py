"""Tests for binding flags and memoized facet results."""

from cachescope.binding.state import (
    OPERATION_CATEGORIES,
    BindingState,
    FacetResultStore,
    InFlightTracker,
    OperationCategory,
)
from cachescope.core.hashing import stable_hash


class TestInFlightTracker:
    """Test per-category in-flight counters."""

    def test_starts_idle(self) -> None:
        """No flags are raised initially."""
        assert InFlightTracker().state == BindingState()
        assert not InFlightTracker().state.busy

    def test_flags_are_independent(self) -> None:
        """Several categories can be in flight at once."""
        tracker = InFlightTracker()
        tracker.enter(OperationCategory.LOADING)
        tracker.enter(OperationCategory.UPDATING)
        state = tracker.state
        assert state.is_loading
        assert state.is_updating
        assert not state.is_creating
        assert not state.is_removing

    def test_overlapping_calls_keep_flag_raised(self) -> None:
        """The flag drops only when the last call of its category ends."""
        tracker = InFlightTracker()
        tracker.enter(OperationCategory.LOADING)
        tracker.enter(OperationCategory.LOADING)
        tracker.exit(OperationCategory.LOADING)
        assert tracker.state.is_loading
        tracker.exit(OperationCategory.LOADING)
        assert not tracker.state.is_loading

    def test_exit_never_goes_negative(self) -> None:
        """Unbalanced exits are ignored."""
        tracker = InFlightTracker()
        tracker.exit(OperationCategory.REMOVING)
        assert tracker.count(OperationCategory.REMOVING) == 0

    def test_track_resets_on_failure(self) -> None:
        """The context manager lowers the flag when the body raises."""
        tracker = InFlightTracker()
        try:
            with tracker.track(OperationCategory.CREATING):
                assert tracker.state.is_creating
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert not tracker.state.is_creating

    def test_operation_categories(self) -> None:
        """Each operation raises the documented flag."""
        assert OPERATION_CATEGORIES["find"] is OperationCategory.LOADING
        assert OPERATION_CATEGORIES["facet"] is OperationCategory.LOADING
        assert OPERATION_CATEGORIES["create"] is OperationCategory.CREATING
        assert OPERATION_CATEGORIES["action"] is OperationCategory.UPDATING
        assert OPERATION_CATEGORIES["set"] is OperationCategory.UPDATING
        assert OPERATION_CATEGORIES["remove"] is OperationCategory.REMOVING


class TestFacetResultStore:
    """Test additive memoization by (name, parameter hash)."""

    def test_distinct_params_coexist(self) -> None:
        """A second parameter bag adds an entry instead of replacing."""
        store = FacetResultStore()
        store.merge("report", {"year": 2023}, "r1")
        store.merge("report", {"year": 2024}, "r2")
        assert store.get("report", {"year": 2023}) == "r1"
        assert store.get("report", {"year": 2024}) == "r2"
        assert len(store.entries("report")) == 2

    def test_same_params_overwrite(self) -> None:
        """The same bag in any key order replaces its own entry."""
        store = FacetResultStore()
        store.merge("report", {"a": 1, "b": 2}, "old")
        store.merge("report", {"b": 2, "a": 1}, "new")
        assert store.entries("report") == {stable_hash({"a": 1, "b": 2}): "new"}

    def test_other_names_untouched(self) -> None:
        """Entries for other names survive a merge."""
        store = FacetResultStore({"summary": {"{}": "s"}})
        store.merge("report", None, "r")
        assert store.get("summary") == "s"
        assert store.contains("report")
        assert len(store) == 2

    def test_snapshot_is_a_copy(self) -> None:
        """Published results do not change with later merges."""
        store = FacetResultStore()
        store.merge("report", None, "r")
        published = store.snapshot()
        store.merge("report", {"x": 1}, "r2")
        assert len(published["report"]) == 1

    def test_layered_keeps_base_entries(self) -> None:
        """Overlaying adds entries and never drops base ones."""
        base = {"report": {"h1": 1}, "summary": {"h": "s"}}
        overlay = {"report": {"h2": 2}, "count": {"h": 3}}
        merged = FacetResultStore.layered(base, overlay)
        assert merged == {
            "report": {"h1": 1, "h2": 2},
            "summary": {"h": "s"},
            "count": {"h": 3},
        }
        assert base == {"report": {"h1": 1}, "summary": {"h": "s"}}
