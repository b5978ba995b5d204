from __future__ import annotations

import logging
import threading
from typing import Callable

from cpu_analyser.core.exceptions import SnapshotReadError, TimingAnomalyError
from cpu_analyser.core.utils import monotonic_ms
from cpu_analyser.engine.correlator import UtilizationRecord, correlate, filter_above_threshold
from cpu_analyser.engine.state import SamplerState, SamplerStats
from cpu_analyser.monitoring.process_table import ProcessSnapshotReader, Snapshot

Reporter = Callable[[list[UtilizationRecord]], None]


class SamplingLoop:
    """
    Continuous monitor: snapshot, wait one interval, snapshot again, report.

    Read failures and clock anomalies only discard the current round; the loop
    keeps going until request_stop() is called.
    """

    def __init__(
        self,
        *,
        reader: ProcessSnapshotReader,
        reporter: Reporter,
        interval_seconds: int,
        threshold_percent: float,
        ticks_per_second: int,
        stop_event: threading.Event | None = None,
    ) -> None:
        if not 0 < interval_seconds <= threading.TIMEOUT_MAX:
            raise ValueError("interval_seconds must be > 0 and within threading.TIMEOUT_MAX")
        if threshold_percent < 0:
            raise ValueError("threshold_percent must be >= 0")
        self.reader = reader
        self.reporter = reporter
        self.interval_seconds = interval_seconds
        self.threshold_percent = threshold_percent
        self.ticks_per_second = ticks_per_second
        self.stats = SamplerStats()

        self._stop = stop_event or threading.Event()
        self._log = logging.getLogger("cpu_analyser.sampler")

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        self._log.info(
            "sampler started",
            extra={"interval_seconds": self.interval_seconds, "threshold_percent": self.threshold_percent},
        )
        while not self._stop.is_set():
            self.run_once()
        self._log.info("sampler stopped")

    def run_once(self) -> list[UtilizationRecord] | None:
        """One sampling round. Returns the reported records, or None if the round was discarded."""
        self.stats.state = SamplerState.AWAITING_START_SNAPSHOT
        t0 = monotonic_ms()
        start = self._take_snapshot("start")
        if start is None:
            self._stop.wait(self.interval_seconds)
            return None

        self.stats.state = SamplerState.SLEEPING
        if self._stop.wait(self.interval_seconds):
            return None

        self.stats.state = SamplerState.AWAITING_END_SNAPSHOT
        end = self._take_snapshot("end")
        if end is None:
            return None

        self.stats.state = SamplerState.REPORTING
        try:
            records = correlate(start, end, self.ticks_per_second)
        except TimingAnomalyError as exc:
            self.stats.timing_anomalies += 1
            self._log.warning("discarding round: %s", exc)
            return None

        selected = filter_above_threshold(records, self.threshold_percent)
        self.reporter(selected)

        self.stats.rounds_reported += 1
        self.stats.last_reported_count = len(selected)
        self.stats.last_cycle_latency_ms = monotonic_ms() - t0
        self._log.debug(
            "round complete",
            extra={
                "correlated": len(records),
                "reported": len(selected),
                "latency_ms": self.stats.last_cycle_latency_ms,
            },
        )
        return selected

    def _take_snapshot(self, which: str) -> Snapshot | None:
        try:
            return self.reader.snapshot()
        except SnapshotReadError as exc:
            self.stats.read_failures += 1
            self._log.error("could not get %s process statistics, retrying: %s", which, exc)
            return None
