"""Build the process forest from one sample's parent links."""

from collections.abc import Mapping
from types import MappingProxyType

from proctop.models import Forest, ProcessKey, ProcessNode, Sample

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


def resolve_parents(sample: Sample) -> dict[int, int | None]:
    """
    Map each pid to the parent it will hang under, or None for a root.

    A process whose parent isn't in the sample (already exited, or pid 0)
    becomes a root. Cycles, which the OS can report transiently while pids
    are being reused, are broken by making the node that closes the loop a
    root.
    """
    parents: dict[int, int | None] = {}
    for pid, counters in sample.processes.items():
        ppid = counters.ppid
        parents[pid] = ppid if ppid != pid and ppid in sample.processes else None

    state = dict.fromkeys(parents, _UNVISITED)
    for start in parents:
        if state[start] != _UNVISITED:
            continue
        path = []
        pid = start
        while pid is not None and state[pid] == _UNVISITED:
            state[pid] = _IN_PROGRESS
            path.append(pid)
            parent = parents[pid]
            if parent is not None and state[parent] == _IN_PROGRESS:
                parents[pid] = None
                parent = None
            pid = parent
        for visited in path:
            state[visited] = _DONE
    return parents


def build_forest(sample: Sample, expanded: Mapping[ProcessKey, bool] | None = None) -> Forest:
    """
    Build the forest of process nodes for a sample.

    Args:
        sample: The current sample; only processes in it get nodes.
        expanded: Expand/collapse flags carried over from earlier samples,
            keyed by (pid, start_time) so a reused pid starts out expanded.

    Returns:
        Forest with children and roots in pid order.
    """
    expanded = expanded or {}
    parents = resolve_parents(sample)

    children: dict[int, list[int]] = {pid: [] for pid in parents}
    roots: list[int] = []
    for pid in sorted(parents):
        parent = parents[pid]
        if parent is None:
            roots.append(pid)
        else:
            children[parent].append(pid)

    nodes = {}
    for pid, parent in parents.items():
        counters = sample.processes[pid]
        nodes[pid] = ProcessNode(
            pid=pid,
            start_time=counters.start_time,
            parent=parent,
            children=tuple(children[pid]),
            expanded=expanded.get(counters.key, True),
        )
    return Forest(nodes=MappingProxyType(nodes), roots=tuple(roots))


def toggle_expanded(expanded: Mapping[ProcessKey, bool], forest: Forest, pid: int) -> dict[ProcessKey, bool]:
    """
    Flip the expand flag of pid, returning a new flag mapping.

    Flags for processes no longer in the forest are dropped. An unknown pid
    leaves the flags unchanged apart from that pruning.
    """
    live = {node.key for node in forest.nodes.values()}
    flags = {key: value for key, value in expanded.items() if key in live}
    node = forest.nodes.get(pid)
    if node is not None:
        flags[node.key] = not node.expanded
    return flags
