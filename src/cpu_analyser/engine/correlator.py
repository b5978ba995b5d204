from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

from cpu_analyser.core.exceptions import TimingAnomalyError
from cpu_analyser.monitoring.process_table import Snapshot

_log = logging.getLogger("cpu_analyser.correlator")


@dataclass(frozen=True)
class UtilizationRecord:
    pid: int
    name: str
    cpu_percent: float


def correlate(start: Snapshot, end: Snapshot, ticks_per_second: int) -> list[UtilizationRecord]:
    """
    CPU utilization of every process alive in both snapshots.

    Processes only in `start` have exited and processes only in `end` have no
    baseline; neither is reported. A process whose counters went backwards is
    treated as a recycled pid and skipped. Raises TimingAnomalyError when the
    uptime did not advance between the snapshots.
    """
    if ticks_per_second <= 0:
        raise ValueError("ticks_per_second must be > 0")

    uptime_delta = end.uptime_seconds - start.uptime_seconds
    if not (math.isfinite(uptime_delta) and uptime_delta > 0):
        raise TimingAnomalyError(
            f"uptime did not advance between snapshots ({start.uptime_seconds} -> {end.uptime_seconds})"
        )

    records: list[UtilizationRecord] = []
    for sample in end:
        baseline = start.get(sample.pid)
        if baseline is None:
            continue
        tick_delta = sample.total_ticks - baseline.total_ticks
        if tick_delta < 0:
            _log.debug(
                "cpu counters went backwards, skipping",
                extra={"pid": sample.pid, "tick_delta": tick_delta},
            )
            continue
        cpu_percent = 100.0 * (tick_delta / ticks_per_second) / uptime_delta
        records.append(UtilizationRecord(pid=sample.pid, name=sample.name, cpu_percent=cpu_percent))
    return records


def filter_above_threshold(
    records: Iterable[UtilizationRecord], threshold_percent: float
) -> list[UtilizationRecord]:
    return [r for r in records if r.cpu_percent > threshold_percent]
