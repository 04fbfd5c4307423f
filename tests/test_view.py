"""Tests for the view engine: sorting, filtering and tree layout."""

import pytest

from conftest import make_counters, make_sample
from proctop.delta import compute_metrics
from proctop.models import Metrics, SortDirection, SortKey, ViewState
from proctop.tree import build_forest
from proctop.view import build_view, matches_filter, sort_pids


def view(sample, metrics=None, **state):
    """Build the view for a sample with the given ViewState fields."""
    if metrics is None:
        metrics, _ = compute_metrics(None, sample)
    view_state = ViewState(**state)
    return build_view(build_forest(sample), sample, metrics, view_state)


def pids(rows):
    return [row.pid for row in rows]


@pytest.fixture
def sample():
    """init(1) -> bash(10) -> {python(100), vim(101)}; init -> sshd(20) -> bash(21)."""
    return make_sample(
        [
            make_counters(1, 0, name="init", memory=100),
            make_counters(10, 1, name="bash", memory=300),
            make_counters(100, 10, name="python", memory=900, command="python app.py"),
            make_counters(101, 10, name="vim", memory=300),
            make_counters(20, 1, name="sshd", memory=50),
            make_counters(21, 20, name="Bash", memory=10),
        ]
    )


def cpu_metrics(sample, cpu):
    """Metrics with fixed cpu_percent per pid."""
    return {
        pid: Metrics(cpu_percent=cpu.get(pid, 0.0), memory_bytes=counters.memory_bytes)
        for pid, counters in sample.processes.items()
    }


class TestSorting:
    """Tests for flat-mode sorting."""

    def test_pid_ascending(self, sample):
        rows = view(sample, sort_key=SortKey.PID, sort_direction=SortDirection.ASCENDING)
        assert pids(rows) == [1, 10, 20, 21, 100, 101]

    def test_pid_descending(self, sample):
        rows = view(sample, sort_key=SortKey.PID, sort_direction=SortDirection.DESCENDING)
        assert pids(rows) == [101, 100, 21, 20, 10, 1]

    def test_memory_descending_ties_by_pid(self, sample):
        """bash(10) and vim(101) both use 300 bytes: pid ascending breaks the tie."""
        rows = view(sample, sort_key=SortKey.MEMORY, sort_direction=SortDirection.DESCENDING)
        assert pids(rows) == [100, 10, 101, 1, 20, 21]

    def test_memory_ascending_ties_by_pid(self, sample):
        rows = view(sample, sort_key=SortKey.MEMORY, sort_direction=SortDirection.ASCENDING)
        assert pids(rows) == [21, 20, 1, 10, 101, 100]

    def test_cpu_descending(self, sample):
        metrics = cpu_metrics(sample, {20: 80.0, 100: 12.5, 101: 80.0})
        rows = view(sample, metrics, sort_key=SortKey.CPU, sort_direction=SortDirection.DESCENDING)
        assert pids(rows) == [20, 101, 100, 1, 10, 21]

    def test_name_is_case_insensitive(self, sample):
        rows = view(sample, sort_key=SortKey.NAME, sort_direction=SortDirection.ASCENDING)
        # "bash" (10) and "Bash" (21) compare equal; pid breaks the tie
        assert pids(rows) == [10, 21, 1, 100, 20, 101]

    def test_unavailable_sorts_as_zero(self):
        sample = make_sample([make_counters(1, memory=None), make_counters(2, memory=5)])
        rows = view(sample, sort_key=SortKey.MEMORY, sort_direction=SortDirection.DESCENDING)
        assert pids(rows) == [2, 1]

    def test_sort_is_deterministic(self, sample):
        metrics = cpu_metrics(sample, {1: 3.0, 10: 3.0, 21: 3.0})
        first = view(sample, metrics, sort_key=SortKey.CPU, sort_direction=SortDirection.DESCENDING)
        second = view(sample, metrics, sort_key=SortKey.CPU, sort_direction=SortDirection.DESCENDING)
        assert pids(first) == pids(second) == [1, 10, 21, 20, 100, 101]

    @pytest.mark.parametrize("key", list(SortKey))
    @pytest.mark.parametrize("direction", list(SortDirection))
    def test_total_order(self, sample, key, direction):
        """Output is monotonic in the key, with pid ascending among equals."""
        from proctop.view import sort_value

        metrics = cpu_metrics(sample, {10: 5.0, 20: 5.0, 100: 1.0})
        ordered = sort_pids(sample.processes, sample, metrics, key, direction)
        values = [sort_value(key, sample.processes[pid], metrics[pid]) for pid in ordered]
        for (a, pa), (b, pb) in zip(zip(values, ordered), zip(values[1:], ordered[1:])):
            if a == b:
                assert pa < pb
            elif direction is SortDirection.ASCENDING:
                assert a < b
            else:
                assert a > b


class TestFiltering:
    """Tests for the command filter."""

    def test_matches_filter_case_insensitive(self):
        counters = make_counters(1, name="python", command="/usr/bin/Python3 server.py")
        assert matches_filter(counters, "python3")
        assert matches_filter(counters, "SERVER")
        assert not matches_filter(counters, "ruby")
        assert matches_filter(counters, "")

    def test_flat_filter(self, sample):
        rows = view(sample, sort_key=SortKey.PID, sort_direction=SortDirection.ASCENDING, filter_text="BASH")
        assert pids(rows) == [10, 21]
        assert all(row.depth == 0 for row in rows)

    def test_flat_filter_no_match(self, sample):
        assert view(sample, filter_text="nothing-matches") == ()


class TestTreeMode:
    """Tests for tree-mode layout."""

    def test_tree_order_and_depth(self, sample):
        rows = view(sample, sort_key=SortKey.PID, sort_direction=SortDirection.ASCENDING, tree_mode=True)
        assert [(row.pid, row.depth) for row in rows] == [
            (1, 0),
            (10, 1),
            (100, 2),
            (101, 2),
            (20, 1),
            (21, 2),
        ]

    def test_siblings_follow_active_sort(self, sample):
        rows = view(sample, sort_key=SortKey.MEMORY, sort_direction=SortDirection.DESCENDING, tree_mode=True)
        assert pids(rows) == [1, 10, 100, 101, 20, 21]
        rows = view(sample, sort_key=SortKey.PID, sort_direction=SortDirection.DESCENDING, tree_mode=True)
        assert pids(rows) == [1, 20, 21, 10, 101, 100]

    def test_filter_keeps_ancestors(self, sample):
        """A match deep in the tree keeps its parents; unmatched siblings are hidden."""
        rows = view(
            sample,
            sort_key=SortKey.PID,
            sort_direction=SortDirection.ASCENDING,
            tree_mode=True,
            filter_text="app.py",
        )
        assert [(row.pid, row.depth) for row in rows] == [(1, 0), (10, 1), (100, 2)]

    def test_every_match_has_its_ancestors(self, sample):
        forest = build_forest(sample)
        metrics, _ = compute_metrics(None, sample)
        for needle in ["bash", "vim", "sshd", "py", "init"]:
            rows = build_view(forest, sample, metrics, ViewState(tree_mode=True, filter_text=needle))
            shown = set(pids(rows))
            for pid in shown:
                if matches_filter(sample.processes[pid], needle):
                    assert set(forest.ancestors(pid)) <= shown

    def test_collapsed_node_hides_descendants(self, sample):
        forest = build_forest(sample, {(10, 1000.0): False})
        metrics, _ = compute_metrics(None, sample)
        state = ViewState(sort_key=SortKey.PID, sort_direction=SortDirection.ASCENDING, tree_mode=True)

        rows = build_view(forest, sample, metrics, state)

        assert pids(rows) == [1, 10, 20, 21]

    def test_filter_lists_matches_below_collapsed_node(self, sample):
        forest = build_forest(sample, {(10, 1000.0): False})
        metrics, _ = compute_metrics(None, sample)
        state = ViewState(
            sort_key=SortKey.PID,
            sort_direction=SortDirection.ASCENDING,
            tree_mode=True,
            filter_text="app.py",
        )

        rows = build_view(forest, sample, metrics, state)

        assert [(row.pid, row.depth) for row in rows] == [(1, 0), (10, 1), (100, 2)]

    def test_orphans_are_roots(self):
        sample = make_sample([make_counters(5, 4444), make_counters(6, 5), make_counters(2, 0)])
        rows = view(sample, sort_key=SortKey.PID, sort_direction=SortDirection.ASCENDING, tree_mode=True)
        assert [(row.pid, row.depth) for row in rows] == [(2, 0), (5, 0), (6, 1)]

    def test_vanished_process_never_listed(self):
        first = make_sample([make_counters(1, 0), make_counters(5, 1)])
        second = make_sample([make_counters(1, 0)])
        assert 5 in pids(view(first, tree_mode=True))
        assert 5 not in pids(view(second, tree_mode=True))
        assert 5 not in pids(view(second))


def test_no_sample_gives_empty_view():
    from proctop.models import Forest

    assert build_view(Forest(nodes={}, roots=()), None, {}, ViewState()) == ()
