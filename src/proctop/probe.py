"""OS probe for proctop: the only code that talks to the operating system."""

import os
import signal
from typing import Protocol

import psutil
import structlog

from proctop.models import (
    CoreTicks,
    PermissionDenied,
    ProbeUnavailable,
    ProcessNotFound,
    RawCounters,
    SignalKind,
    SystemCounters,
)

log = structlog.get_logger()

# psutil status strings to the one-letter codes shown in the table
_STATUS_CODES = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_DISK_SLEEP: "D",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_TRACING_STOP: "t",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_DEAD: "X",
    psutil.STATUS_IDLE: "I",
}

# Fields of psutil's cpu_times() that count as idle time
_IDLE_FIELDS = ("idle", "iowait")


def host_tick_rate() -> float:
    """Clock ticks per second as reported by the host."""
    try:
        rate = os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        # No sysconf (Windows): psutil reports seconds, so any rate is exact
        return 100.0
    return float(rate) if rate > 0 else 100.0


def status_code(status: str) -> str:
    """Map a psutil status string to a one-letter code."""
    return _STATUS_CODES.get(status, "?")


class ProcessProbe(Protocol):
    """Capability interface over the OS process table and CPU counters."""

    @property
    def tick_rate(self) -> float: ...

    def list_process_ids(self) -> set[int]: ...

    def read_process(self, pid: int) -> RawCounters: ...

    def read_cores(self) -> tuple[CoreTicks, ...]: ...

    def read_system(self) -> SystemCounters: ...

    def send_signal(self, pid: int, kind: SignalKind) -> None: ...


class PsutilProbe:
    """
    ProcessProbe backed by psutil.

    No psutil.Process objects are cached between calls, so repeated sampling
    never holds on to OS handles. CPU times (seconds) are converted to
    integer ticks using the host tick rate.
    """

    def __init__(self, tick_rate: float | None = None) -> None:
        self._tick_rate = tick_rate if tick_rate is not None else host_tick_rate()

    @property
    def tick_rate(self) -> float:
        return self._tick_rate

    def _to_ticks(self, seconds: float) -> int:
        return int(round(seconds * self._tick_rate))

    def list_process_ids(self) -> set[int]:
        try:
            return set(psutil.pids())
        except (psutil.Error, OSError) as exc:
            raise ProbeUnavailable(f"cannot enumerate processes: {exc}") from exc

    def read_process(self, pid: int) -> RawCounters:
        """
        Read one process's counters.

        Raises ProcessNotFound if it exited, PermissionDenied if nothing at
        all could be read. When only the resource counters are denied, a
        partial record with accessible=False is returned instead.
        """
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                name = proc.name()
                ppid = proc.ppid()
                start_time = proc.create_time()
                status = status_code(proc.status())
                try:
                    cpu = proc.cpu_times()
                    mem = proc.memory_info()
                except psutil.AccessDenied:
                    return RawCounters.unavailable(pid, name=name, ppid=ppid, start_time=start_time)
                return RawCounters(
                    pid=pid,
                    ppid=ppid or 0,
                    name=name,
                    command=self._command_line(proc, name),
                    status=status,
                    start_time=start_time,
                    cpu_ticks=self._to_ticks(cpu.user + cpu.system),
                    memory_bytes=mem.rss,
                    virtual_bytes=mem.vms,
                    username=self._optional(proc.username, ""),
                    threads=self._optional(proc.num_threads, 0),
                    nice=self._optional(proc.nice, 0),
                )
        except psutil.ZombieProcess as exc:
            # Zombie whose core counters are already gone
            raise ProcessNotFound(pid) from exc
        except psutil.NoSuchProcess as exc:
            raise ProcessNotFound(pid) from exc
        except psutil.AccessDenied as exc:
            raise PermissionDenied(pid) from exc

    @staticmethod
    def _optional(getter, default):
        """Call a psutil getter, falling back to a default if access is denied."""
        try:
            value = getter()
        except (psutil.AccessDenied, psutil.ZombieProcess):
            return default
        return value if value is not None else default

    @staticmethod
    def _command_line(proc: psutil.Process, name: str) -> str:
        try:
            cmdline = proc.cmdline()
        except (psutil.AccessDenied, psutil.ZombieProcess):
            return name
        return " ".join(cmdline) if cmdline else name

    def read_cores(self) -> tuple[CoreTicks, ...]:
        try:
            per_core = psutil.cpu_times(percpu=True)
        except (psutil.Error, OSError) as exc:
            raise ProbeUnavailable(f"cannot read CPU counters: {exc}") from exc

        cores = []
        for times in per_core:
            fields = times._asdict()
            idle = sum(fields.get(name, 0.0) for name in _IDLE_FIELDS)
            # guest time is already included in user time on Linux
            busy = sum(v for k, v in fields.items() if k not in _IDLE_FIELDS and not k.startswith("guest"))
            cores.append(CoreTicks(busy=self._to_ticks(busy), idle=self._to_ticks(idle)))
        return tuple(cores)

    def read_system(self) -> SystemCounters:
        try:
            mem = psutil.virtual_memory()
            swap = psutil.swap_memory()
            load_avg = psutil.getloadavg()
            boot_time = psutil.boot_time()
        except (psutil.Error, OSError) as exc:
            raise ProbeUnavailable(f"cannot read system counters: {exc}") from exc

        return SystemCounters(
            memory_total=mem.total,
            memory_used=mem.used,
            swap_total=swap.total,
            swap_used=swap.used,
            load_avg=tuple(load_avg),
            boot_time=boot_time,
        )

    def send_signal(self, pid: int, kind: SignalKind) -> None:
        try:
            sig = signal.Signals[f"SIG{kind.name}"]
        except KeyError:
            sig = kind.value  # Not named on this platform, send the raw number
        try:
            psutil.Process(pid).send_signal(sig)
        except psutil.NoSuchProcess as exc:
            raise ProcessNotFound(pid) from exc
        except psutil.AccessDenied as exc:
            raise PermissionDenied(pid) from exc
        log.debug("signal_sent", pid=pid, signal=kind.name)
