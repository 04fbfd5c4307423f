"""Shared test fixtures for proctop."""

import pytest

from proctop.models import (
    CoreTicks,
    PermissionDenied,
    ProbeUnavailable,
    ProcessNotFound,
    RawCounters,
    Sample,
    SignalKind,
    SystemCounters,
)


def make_counters(
    pid: int,
    ppid: int = 0,
    name: str | None = None,
    ticks: int | None = 0,
    memory: int | None = 1024,
    start_time: float = 1000.0,
    command: str | None = None,
    username: str = "user",
) -> RawCounters:
    """Create RawCounters for testing."""
    name = name if name is not None else f"proc{pid}"
    return RawCounters(
        pid=pid,
        ppid=ppid,
        name=name,
        command=command if command is not None else f"/usr/bin/{name}",
        status="S",
        start_time=start_time,
        cpu_ticks=ticks,
        memory_bytes=memory,
        virtual_bytes=memory,
        username=username,
        threads=1,
    )


def make_system(memory_total: int = 16 * 1024**3) -> SystemCounters:
    return SystemCounters(
        memory_total=memory_total,
        memory_used=memory_total // 2,
        swap_total=0,
        swap_used=0,
        load_avg=(1.0, 0.5, 0.25),
        boot_time=0.0,
    )


def make_sample(
    processes: list[RawCounters],
    timestamp: float = 0.0,
    cores: list[CoreTicks] | None = None,
    tick_rate: float = 100.0,
    system: SystemCounters | None = None,
) -> Sample:
    """Create a Sample for testing."""
    return Sample(
        timestamp=timestamp,
        tick_rate=tick_rate,
        processes={counters.pid: counters for counters in processes},
        cores=tuple(cores if cores is not None else [CoreTicks(busy=0)]),
        system=system,
        wall_time=3600.0,
    )


class FakeProbe:
    """In-memory ProcessProbe whose process table tests edit directly."""

    def __init__(self, processes: list[RawCounters] | None = None, cores: list[CoreTicks] | None = None) -> None:
        self.processes: dict[int, RawCounters] = {p.pid: p for p in processes or []}
        self.cores: list[CoreTicks] = cores if cores is not None else [CoreTicks(busy=0, idle=0)]
        self.denied: set[int] = set()
        self.vanishing: set[int] = set()  # Listed, but gone by the time they're read
        self.unavailable = False
        self.signals: list[tuple[int, SignalKind]] = []
        self.protected: set[int] = set()

    @property
    def tick_rate(self) -> float:
        return 100.0

    def list_process_ids(self) -> set[int]:
        if self.unavailable:
            raise ProbeUnavailable("introspection denied")
        return set(self.processes) | self.vanishing

    def read_process(self, pid: int) -> RawCounters:
        if pid in self.vanishing or pid not in self.processes:
            raise ProcessNotFound(pid)
        if pid in self.denied:
            raise PermissionDenied(pid)
        return self.processes[pid]

    def read_cores(self) -> tuple[CoreTicks, ...]:
        if self.unavailable:
            raise ProbeUnavailable("introspection denied")
        return tuple(self.cores)

    def read_system(self) -> SystemCounters:
        return make_system()

    def send_signal(self, pid: int, kind: SignalKind) -> None:
        if pid not in self.processes:
            raise ProcessNotFound(pid)
        if pid in self.protected:
            raise PermissionDenied(pid)
        self.signals.append((pid, kind))

    def add(self, counters: RawCounters) -> None:
        self.processes[counters.pid] = counters

    def remove(self, pid: int) -> None:
        self.processes.pop(pid, None)


@pytest.fixture
def fake_probe() -> FakeProbe:
    """A small process tree: init(1) -> shell(10) -> python(100), plus a daemon(20)."""
    return FakeProbe(
        processes=[
            make_counters(1, 0, name="init", ticks=500, memory=4096),
            make_counters(10, 1, name="bash", ticks=100, memory=8192),
            make_counters(20, 1, name="sshd", ticks=50, memory=2048),
            make_counters(100, 10, name="python", ticks=1000, memory=65536, command="python -m http.server"),
        ]
    )
