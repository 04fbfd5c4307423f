"""Turn cumulative OS counters from two consecutive samples into rates."""

from proctop.models import CoreTicks, Metrics, RawCounters, Sample


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def process_cpu_percent(
    previous: RawCounters | None,
    current: RawCounters,
    elapsed: float,
    tick_rate: float,
    core_count: int,
) -> float | None:
    """
    CPU percentage of one process over the interval.

    Returns None when the counters are unreadable. A process seen for the
    first time, a reused pid (start time differs) or a counter that went
    backwards all yield 0.0 rather than a negative or wrapped value.
    """
    if current.cpu_ticks is None:
        return None
    if previous is None or previous.cpu_ticks is None or previous.start_time != current.start_time:
        return 0.0
    if elapsed <= 0 or tick_rate <= 0:
        return 0.0
    delta = current.cpu_ticks - previous.cpu_ticks
    if delta <= 0:
        return 0.0
    percent = delta / (elapsed * tick_rate) * 100
    return _clamp(percent, 0.0, core_count * 100.0)


def core_percent(previous: CoreTicks | None, current: CoreTicks, elapsed: float, tick_rate: float) -> float:
    """
    Utilization of one core over the interval.

    Uses busy/(busy+idle) when both samples split out idle ticks, otherwise
    busy ticks against wall-clock time.
    """
    if previous is None:
        return 0.0
    busy = current.busy - previous.busy
    if busy < 0:
        return 0.0
    if previous.idle is not None and current.idle is not None:
        idle = current.idle - previous.idle
        total = busy + max(idle, 0)
        if total <= 0:
            return 0.0
        return _clamp(busy / total * 100, 0.0, 100.0)
    if elapsed <= 0 or tick_rate <= 0:
        return 0.0
    return _clamp(busy / (elapsed * tick_rate) * 100, 0.0, 100.0)


def compute_metrics(previous: Sample | None, current: Sample) -> tuple[dict[int, Metrics], tuple[float, ...]]:
    """
    Compute per-process metrics and per-core utilization.

    Args:
        previous: The sample before `current`, or None on the first tick.
        current: The newest sample.

    Returns:
        Metrics keyed by pid (one entry per process in `current`), and
        per-core utilization percentages in core order.
    """
    elapsed = current.timestamp - previous.timestamp if previous is not None else 0.0
    tick_rate = current.tick_rate
    core_count = current.core_count
    memory_total = current.system.memory_total if current.system is not None else 0

    metrics: dict[int, Metrics] = {}
    for pid, counters in current.processes.items():
        before = previous.processes.get(pid) if previous is not None else None
        memory_percent = None
        if counters.memory_bytes is not None and memory_total > 0:
            memory_percent = counters.memory_bytes / memory_total * 100
        metrics[pid] = Metrics(
            cpu_percent=process_cpu_percent(before, counters, elapsed, tick_rate, core_count),
            memory_bytes=counters.memory_bytes,
            memory_percent=memory_percent,
        )

    previous_cores = previous.cores if previous is not None else ()
    cores = tuple(
        core_percent(
            previous_cores[i] if i < len(previous_cores) else None,
            core,
            elapsed,
            tick_rate,
        )
        for i, core in enumerate(current.cores)
    )
    return metrics, cores
