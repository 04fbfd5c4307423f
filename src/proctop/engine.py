"""Sampling engine for proctop."""

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from enum import Enum

import structlog

from proctop.delta import compute_metrics
from proctop.models import (
    EngineStatus,
    Forest,
    PermissionDenied,
    ProbeUnavailable,
    ProcessKey,
    ProcessNotFound,
    RawCounters,
    Sample,
    SignalKind,
    Snapshot,
    SortDirection,
    SortKey,
    ViewRow,
    ViewState,
)
from proctop.probe import ProcessProbe
from proctop.tree import build_forest, toggle_expanded
from proctop.view import build_view

log = structlog.get_logger()

MIN_POLL_RATE = 0.1


class LoopState(Enum):
    """States of the sampling loop."""

    IDLE = "idle"
    SAMPLING = "sampling"
    PUBLISHING = "publishing"
    ERROR = "error"


class SamplingEngine:
    """
    Sampling loop that owns the last two samples and publishes snapshots.

    Runs in a separate daemon thread. Each tick reads the probe, computes
    metrics, rebuilds the forest and the view, then swaps a new immutable
    Snapshot into the current slot. Readers never lock: they get either the
    old or the new snapshot. Writers (the sampling thread and the view-state
    mutators) build their snapshot without the lock and only hold it for the
    swap, retrying if another writer published first.
    """

    def __init__(
        self,
        probe: ProcessProbe,
        poll_rate: float = 2.0,
        view_state: ViewState | None = None,
    ) -> None:
        """
        Initialize the SamplingEngine.

        Args:
            probe: OS probe to sample from.
            poll_rate: How often to sample (in seconds). Default 2.0s.
            view_state: Initial sort/filter/tree settings.
        """
        self._probe = probe
        self._poll_rate = max(MIN_POLL_RATE, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._publish_lock = threading.Lock()
        self._previous: Sample | None = None
        self._expanded: dict[ProcessKey, bool] = {}
        self._state = LoopState.IDLE
        self._snapshot = Snapshot(
            sample=None,
            forest=Forest(nodes={}, roots=()),
            view_state=view_state or ViewState(),
        )

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(MIN_POLL_RATE, value)

    @property
    def is_running(self) -> bool:
        """Check if the sampling thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def state(self) -> LoopState:
        return self._state

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SamplingEngine",
        )
        self._thread.start()
        log.info("engine_started", poll_rate=self._poll_rate)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread, letting the current tick finish.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            log.info("engine_stopped")

    def _poll_loop(self) -> None:
        """Main sampling loop running in the background thread."""
        while not self._stop_event.is_set():
            self.tick()
            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def tick(self) -> Snapshot:
        """
        Run one Idle -> Sampling -> Publishing -> Idle cycle.

        A broad probe failure, or any error while publishing, moves the loop
        to ERROR: the last snapshot stays visible with a Degraded status and
        the next tick retries.
        """
        self._state = LoopState.SAMPLING
        try:
            sample, denied = self._collect_sample()
        except ProbeUnavailable as exc:
            log.warning("probe_unavailable", reason=str(exc))
            return self._publish_degraded(str(exc))
        except Exception as exc:
            # Keep the loop alive no matter what the probe throws
            log.exception("tick_failed")
            return self._publish_degraded(f"sampling failed: {exc}")

        self._state = LoopState.PUBLISHING
        status = EngineStatus.ok()
        if sample.processes and denied == len(sample.processes):
            status = EngineStatus.degraded_by("process details unavailable (permission denied)")
        try:
            snapshot = self._publish_sample(sample, status)
        except Exception as exc:
            log.exception("tick_failed")
            return self._publish_degraded(f"publishing failed: {exc}")
        self._state = LoopState.IDLE
        log.debug(
            "sample_published",
            generation=snapshot.generation,
            processes=len(sample.processes),
            denied=denied,
        )
        return snapshot

    def _collect_sample(self) -> tuple[Sample, int]:
        """
        Read the probe into a new Sample.

        Processes that exit between enumeration and read are left out;
        processes we may not inspect are kept as unavailable placeholders.
        """
        pids = self._probe.list_process_ids()
        processes: dict[int, RawCounters] = {}
        denied = 0
        for pid in pids:
            try:
                counters = self._probe.read_process(pid)
            except ProcessNotFound:
                continue
            except PermissionDenied:
                counters = RawCounters.unavailable(pid)
            if not counters.accessible:
                denied += 1
            processes[pid] = counters

        cores = self._probe.read_cores()
        system = self._probe.read_system()
        sample = Sample(
            timestamp=time.monotonic(),
            tick_rate=self._probe.tick_rate,
            processes=processes,
            cores=cores,
            system=system,
            wall_time=time.time(),
        )
        return sample, denied

    def _publish_sample(self, sample: Sample, status: EngineStatus) -> Snapshot:
        """
        Derive metrics, forest and rows from sample and swap them in.

        The derivation runs outside the lock. If a view change or an expand
        toggle was published meanwhile, the rows (and the forest, when the
        flags changed) are rebuilt against it and the swap is retried.
        """
        metrics, cores = compute_metrics(self._previous, sample)
        expanded = None
        while True:
            current = self._snapshot
            if self._expanded is not expanded:
                expanded = self._expanded
                forest = build_forest(sample, expanded)
                # Forget flags of processes that are gone
                kept = {node.key: node.expanded for node in forest.nodes.values() if not node.expanded}
            rows = build_view(forest, sample, metrics, current.view_state)
            with self._publish_lock:
                if self._snapshot is not current or self._expanded is not expanded:
                    continue
                snapshot = Snapshot(
                    sample=sample,
                    forest=forest,
                    view_state=current.view_state,
                    metrics=metrics,
                    core_utilization=cores,
                    rows=rows,
                    status=status,
                    generation=current.generation + 1,
                )
                self._snapshot = snapshot
                self._expanded = kept
                self._previous = sample
                return snapshot

    def _publish_degraded(self, reason: str) -> Snapshot:
        with self._publish_lock:
            snapshot = replace(
                self._snapshot,
                status=EngineStatus.degraded_by(reason),
                generation=self._snapshot.generation + 1,
            )
            self._snapshot = snapshot
        self._state = LoopState.ERROR
        return snapshot

    # ------------------------------------------------------------------
    # Render-side API
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """The currently published snapshot."""
        return self._snapshot

    def current_view(self) -> tuple[ViewRow, ...]:
        """Ordered display rows of the current snapshot."""
        return self._snapshot.rows

    def core_utilization(self) -> tuple[float, ...]:
        """Per-core utilization percentages of the current snapshot."""
        return self._snapshot.core_utilization

    def engine_status(self) -> EngineStatus:
        return self._snapshot.status

    # ------------------------------------------------------------------
    # Input-side API
    # ------------------------------------------------------------------

    @property
    def view_state(self) -> ViewState:
        return self._snapshot.view_state

    def _update_view(self, change: Callable[[ViewState], ViewState]) -> ViewState:
        """
        Apply a view-state change and republish against the current sample.

        Rows are rebuilt outside the lock; the swap is retried if another
        snapshot was published in between, so a publish in progress never
        holds the caller up.
        """
        while True:
            current = self._snapshot
            view_state = change(current.view_state)
            rows = build_view(current.forest, current.sample, current.metrics, view_state)
            with self._publish_lock:
                if self._snapshot is not current:
                    continue
                self._snapshot = replace(
                    current,
                    view_state=view_state,
                    rows=rows,
                    generation=current.generation + 1,
                )
                return view_state

    def set_sort_key(self, key: SortKey) -> ViewState:
        """Sort by key, in that key's natural direction."""
        return self._update_view(lambda state: replace(state, sort_key=key, sort_direction=key.default_direction))

    def set_sort_direction(self, direction: SortDirection) -> ViewState:
        return self._update_view(lambda state: replace(state, sort_direction=direction))

    def invert_sort(self) -> ViewState:
        return self._update_view(lambda state: replace(state, sort_direction=state.sort_direction.inverted()))

    def set_filter(self, text: str) -> ViewState:
        """Filter by text as typed; surrounding whitespace is part of the query."""
        return self._update_view(lambda state: replace(state, filter_text=text))

    def toggle_tree_mode(self) -> ViewState:
        return self._update_view(lambda state: replace(state, tree_mode=not state.tree_mode))

    def toggle_expand(self, pid: int) -> bool:
        """
        Expand or collapse pid in tree mode.

        Returns:
            The node's new expanded flag, or False if pid isn't shown.
        """
        while True:
            current = self._snapshot
            expanded = self._expanded
            if current.sample is None or pid not in current.forest.nodes:
                return False
            flags = toggle_expanded(expanded, current.forest, pid)
            forest = build_forest(current.sample, flags)
            rows = build_view(forest, current.sample, current.metrics, current.view_state)
            with self._publish_lock:
                if self._snapshot is not current or self._expanded is not expanded:
                    continue
                self._expanded = flags
                self._snapshot = replace(
                    current,
                    forest=forest,
                    rows=rows,
                    generation=current.generation + 1,
                )
                return forest.nodes[pid].expanded

    def request_kill(self, pid: int, kind: SignalKind = SignalKind.TERM) -> None:
        """
        Send a signal to pid right away, on the caller's thread.

        Raises:
            ProcessNotFound: pid doesn't exist.
            PermissionDenied: the OS refused to deliver the signal.
        """
        try:
            self._probe.send_signal(pid, kind)
        except (ProcessNotFound, PermissionDenied) as exc:
            log.warning("kill_failed", pid=pid, signal=kind.name, error=type(exc).__name__)
            raise
        log.info("kill_sent", pid=pid, signal=kind.name)
