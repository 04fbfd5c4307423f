"""Data models for proctop."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

# (pid, start_time): identity of a process across samples, since pids get reused
ProcessKey = tuple[int, float]


class ProbeError(Exception):
    """Base class for OS probe failures."""


class ProcessNotFound(ProbeError):
    """The process exited (or never existed)."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"No such process: {pid}")
        self.pid = pid


class PermissionDenied(ProbeError):
    """The OS refused access to the process."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"Permission denied for process {pid}")
        self.pid = pid


class ProbeUnavailable(ProbeError):
    """The OS probe failed broadly (e.g. introspection is sandboxed)."""


class SortKey(Enum):
    """Sort keys for the process view."""

    CPU = "cpu"
    MEMORY = "mem"
    PID = "pid"
    NAME = "name"
    USER = "user"
    TIME = "time"

    @property
    def default_direction(self) -> "SortDirection":
        """Natural direction for this key: biggest consumers first, identifiers ascending."""
        if self in (SortKey.CPU, SortKey.MEMORY, SortKey.TIME):
            return SortDirection.DESCENDING
        return SortDirection.ASCENDING


class SortDirection(Enum):
    """Sort direction for the process view."""

    ASCENDING = "asc"
    DESCENDING = "desc"

    def inverted(self) -> "SortDirection":
        """Return the opposite direction."""
        if self is SortDirection.ASCENDING:
            return SortDirection.DESCENDING
        return SortDirection.ASCENDING


class SignalKind(Enum):
    """Signals offered by the kill menu."""

    HUP = 1
    INT = 2
    KILL = 9
    TERM = 15
    TSTP = 20
    XCPU = 24

    @property
    def label(self) -> str:
        """Menu label, e.g. '15 SIGTERM'."""
        return f"{self.value:2d} SIG{self.name}"


@dataclass(slots=True, frozen=True)
class RawCounters:
    """Immutable per-process counters read from the OS in one sample."""

    pid: int
    ppid: int  # 0 if root or unknown
    name: str
    command: str
    status: str  # 'R', 'S', 'Z', 'D', etc.
    start_time: float  # Epoch seconds
    cpu_ticks: int | None  # Cumulative user+system ticks, None if unreadable
    memory_bytes: int | None  # Resident set size, None if unreadable
    virtual_bytes: int | None = None
    username: str = ""
    threads: int = 0
    nice: int = 0
    accessible: bool = True

    @property
    def key(self) -> ProcessKey:
        """Identity of this process across samples."""
        return (self.pid, self.start_time)

    @classmethod
    def unavailable(cls, pid: int, name: str = "", ppid: int = 0, start_time: float = 0.0) -> "RawCounters":
        """Placeholder for a process that exists but cannot be inspected."""
        return cls(
            pid=pid,
            ppid=ppid,
            name=name,
            command=name,
            status="?",
            start_time=start_time,
            cpu_ticks=None,
            memory_bytes=None,
            accessible=False,
        )


@dataclass(slots=True, frozen=True)
class CoreTicks:
    """Cumulative tick counters for one CPU core."""

    busy: int
    idle: int | None = None  # None when the platform doesn't separate idle time


@dataclass(slots=True, frozen=True)
class SystemCounters:
    """Point-in-time system-wide memory and load figures."""

    memory_total: int
    memory_used: int
    swap_total: int
    swap_used: int
    load_avg: tuple[float, float, float]
    boot_time: float

    @property
    def memory_percent(self) -> float:
        return self.memory_used / self.memory_total * 100 if self.memory_total else 0.0

    @property
    def swap_percent(self) -> float:
        return self.swap_used / self.swap_total * 100 if self.swap_total else 0.0


@dataclass(slots=True, frozen=True)
class Sample:
    """
    Immutable, timestamped record of all process and core counters.

    Everything in one sample is treated as read at the same logical instant,
    even though the OS gives no cross-process atomicity.
    """

    timestamp: float  # Monotonic seconds
    tick_rate: float  # Ticks per second, per core
    processes: Mapping[int, RawCounters]
    cores: tuple[CoreTicks, ...] = ()
    system: SystemCounters | None = None
    wall_time: float = 0.0  # Epoch seconds

    def __post_init__(self) -> None:
        object.__setattr__(self, "processes", MappingProxyType(dict(self.processes)))
        object.__setattr__(self, "cores", tuple(self.cores))

    @property
    def core_count(self) -> int:
        return max(1, len(self.cores))


@dataclass(slots=True, frozen=True)
class Metrics:
    """Per-process figures derived from a pair of samples."""

    cpu_percent: float | None  # None: counters unavailable
    memory_bytes: int | None
    memory_percent: float | None = None

    @property
    def available(self) -> bool:
        return self.cpu_percent is not None and self.memory_bytes is not None


@dataclass(slots=True, frozen=True)
class ProcessNode:
    """A process's position in the parent/child hierarchy."""

    pid: int
    start_time: float
    parent: int | None  # Parent pid, never a reference to the parent node
    children: tuple[int, ...] = ()
    expanded: bool = True

    @property
    def key(self) -> ProcessKey:
        return (self.pid, self.start_time)


@dataclass(slots=True, frozen=True)
class Forest:
    """All process nodes of one sample, indexed by pid."""

    nodes: Mapping[int, ProcessNode]
    roots: tuple[int, ...]

    def ancestors(self, pid: int) -> list[int]:
        """Return parent, grandparent, ... of pid up to its root."""
        chain: list[int] = []
        node = self.nodes.get(pid)
        while node is not None and node.parent is not None:
            chain.append(node.parent)
            node = self.nodes.get(node.parent)
        return chain


@dataclass(slots=True, frozen=True)
class ViewState:
    """Sort, filter and layout choices of the current session."""

    sort_key: SortKey = SortKey.CPU
    sort_direction: SortDirection = SortDirection.DESCENDING
    filter_text: str = ""
    tree_mode: bool = False


@dataclass(slots=True, frozen=True)
class ViewRow:
    """One display row: the node, its raw counters, metrics and tree depth."""

    node: ProcessNode
    counters: RawCounters
    metrics: Metrics
    depth: int = 0

    @property
    def pid(self) -> int:
        return self.node.pid


@dataclass(slots=True, frozen=True)
class EngineStatus:
    """Health of the sampling engine: Ok, or Degraded with a reason."""

    degraded: bool = False
    reason: str = ""

    @classmethod
    def ok(cls) -> "EngineStatus":
        return cls()

    @classmethod
    def degraded_by(cls, reason: str) -> "EngineStatus":
        return cls(degraded=True, reason=reason)


@dataclass(slots=True, frozen=True)
class Snapshot:
    """The complete, internally consistent unit published to the render layer."""

    sample: Sample | None
    forest: Forest
    view_state: ViewState
    metrics: Mapping[int, Metrics] = field(default_factory=dict)
    core_utilization: tuple[float, ...] = ()
    rows: tuple[ViewRow, ...] = ()
    status: EngineStatus = field(default_factory=EngineStatus)
    generation: int = 0
