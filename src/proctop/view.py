"""Sort and filter the process forest into display rows."""

from collections.abc import Iterable, Mapping

from proctop.models import (
    Forest,
    Metrics,
    RawCounters,
    Sample,
    SortDirection,
    SortKey,
    ViewRow,
    ViewState,
)

_NO_METRICS = Metrics(cpu_percent=None, memory_bytes=None)


def sort_value(key: SortKey, counters: RawCounters, metrics: Metrics):
    """Primary sort value of one process. Unavailable numbers sort as zero."""
    if key is SortKey.CPU:
        return metrics.cpu_percent or 0.0
    if key is SortKey.MEMORY:
        return metrics.memory_bytes or 0
    if key is SortKey.PID:
        return counters.pid
    if key is SortKey.NAME:
        return counters.name.lower()
    if key is SortKey.USER:
        return counters.username.lower()
    if key is SortKey.TIME:
        return counters.cpu_ticks or 0
    raise ValueError(f"Unknown sort key: {key}")


def sort_pids(
    pids: Iterable[int],
    sample: Sample,
    metrics: Mapping[int, Metrics],
    sort_key: SortKey,
    direction: SortDirection,
) -> list[int]:
    """
    Order pids by the active key, breaking ties by pid ascending.

    Sorting by pid first and then (stably) by the key keeps the pid
    tie-break ascending in both directions.
    """
    by_pid = sorted(pids)
    return sorted(
        by_pid,
        key=lambda pid: sort_value(sort_key, sample.processes[pid], metrics.get(pid, _NO_METRICS)),
        reverse=direction is SortDirection.DESCENDING,
    )


def matches_filter(counters: RawCounters, filter_text: str) -> bool:
    """Case-insensitive substring match on the command line (or name)."""
    if not filter_text:
        return True
    needle = filter_text.lower()
    return needle in (counters.command or counters.name).lower() or needle in counters.name.lower()


def visible_in_tree(forest: Forest, sample: Sample, filter_text: str) -> set[int]:
    """Pids shown in tree mode: every match plus its full ancestor chain."""
    if not filter_text:
        return set(forest.nodes)
    visible: set[int] = set()
    for pid in forest.nodes:
        if pid in visible or not matches_filter(sample.processes[pid], filter_text):
            continue
        visible.add(pid)
        visible.update(forest.ancestors(pid))
    return visible


def build_view(
    forest: Forest,
    sample: Sample | None,
    metrics: Mapping[int, Metrics],
    view_state: ViewState,
) -> tuple[ViewRow, ...]:
    """
    Produce the ordered rows handed to the render layer.

    Pure function of its inputs. In flat mode every matching process is
    listed at depth 0. In tree mode siblings are ordered by the active sort,
    matches keep their ancestors, and children of collapsed nodes are hidden
    unless a filter is active, in which case every match is listed.
    """
    if sample is None:
        return ()

    def row(pid: int, depth: int) -> ViewRow:
        return ViewRow(
            node=forest.nodes[pid],
            counters=sample.processes[pid],
            metrics=metrics.get(pid, _NO_METRICS),
            depth=depth,
        )

    def ordered(pids: Iterable[int]) -> list[int]:
        return sort_pids(pids, sample, metrics, view_state.sort_key, view_state.sort_direction)

    if not view_state.tree_mode:
        matching = (pid for pid in forest.nodes if matches_filter(sample.processes[pid], view_state.filter_text))
        return tuple(row(pid, 0) for pid in ordered(matching))

    visible = visible_in_tree(forest, sample, view_state.filter_text)
    rows: list[ViewRow] = []
    # Explicit stack instead of recursion: process trees can be deep
    stack = [(pid, 0) for pid in reversed(ordered(p for p in forest.roots if p in visible))]
    while stack:
        pid, depth = stack.pop()
        rows.append(row(pid, depth))
        node = forest.nodes[pid]
        if not node.expanded and not view_state.filter_text:
            continue
        children = ordered(child for child in node.children if child in visible)
        stack.extend((child, depth + 1) for child in reversed(children))
    return tuple(rows)
