from __future__ import annotations

import threading

import pytest

from cpu_analyser.core.exceptions import SnapshotReadError
from cpu_analyser.engine.correlator import UtilizationRecord
from cpu_analyser.engine.sampler import SamplingLoop
from cpu_analyser.engine.state import SamplerState
from cpu_analyser.monitoring.process_table import (
    ProcessSample,
    ProcessSnapshotReader,
    Snapshot,
)
from cpu_analyser.monitoring.uptime import UptimeReader


class _NoUptime(UptimeReader):
    def read(self) -> float:
        raise AssertionError("scripted reader never reads uptime")


class _ScriptedReader(ProcessSnapshotReader):
    backend = "scripted"

    def __init__(self, outcomes: list[Snapshot | Exception]) -> None:
        super().__init__(_NoUptime())
        self.outcomes = list(outcomes)
        self.calls = 0

    def read_processes(self) -> dict[int, ProcessSample]:
        return {}

    def snapshot(self) -> Snapshot:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _InstantEvent(threading.Event):
    """Records requested waits instead of blocking."""

    def __init__(self) -> None:
        super().__init__()
        self.waits: list[float] = []

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(timeout)
        return self.is_set()


def _snap(uptime: float, *samples: tuple[int, int, int]) -> Snapshot:
    return Snapshot.of(
        [ProcessSample(pid=pid, user_ticks=u, kernel_ticks=k, name=f"proc{pid}") for pid, u, k in samples],
        uptime_seconds=uptime,
    )


def _loop(
    reader: ProcessSnapshotReader, threshold: float = 4.99
) -> tuple[SamplingLoop, list[list[UtilizationRecord]], _InstantEvent]:
    reported: list[list[UtilizationRecord]] = []
    event = _InstantEvent()
    loop = SamplingLoop(
        reader=reader,
        reporter=reported.append,
        interval_seconds=10,
        threshold_percent=threshold,
        ticks_per_second=100,
        stop_event=event,
    )
    return loop, reported, event


START = _snap(1000.0, (42, 100, 50), (7, 0, 0))
END = _snap(1010.0, (42, 130, 70), (7, 0, 0), (99, 9000, 9000))


def test_round_reports_processes_above_threshold() -> None:
    loop, reported, event = _loop(_ScriptedReader([START, END]))
    out = loop.run_once()
    assert out is not None
    assert [r.pid for r in out] == [42]
    assert out[0].cpu_percent == pytest.approx(5.0)
    assert reported == [out]
    assert event.waits == [10]
    assert loop.stats.rounds_reported == 1
    assert loop.stats.state is SamplerState.REPORTING


def test_threshold_equal_to_usage_reports_empty_round() -> None:
    loop, reported, _ = _loop(_ScriptedReader([START, END]), threshold=5.0)
    assert loop.run_once() == []
    assert reported == [[]]


def test_start_failure_waits_one_interval_and_retries() -> None:
    reader = _ScriptedReader([SnapshotReadError("no /proc"), START, END])
    loop, reported, event = _loop(reader)

    assert loop.run_once() is None
    assert event.waits == [10]
    assert reported == []
    assert loop.stats.read_failures == 1

    assert loop.run_once() is not None
    assert reader.calls == 3


def test_end_failure_restarts_without_extra_wait() -> None:
    loop, reported, event = _loop(_ScriptedReader([START, SnapshotReadError("gone")]))
    assert loop.run_once() is None
    assert event.waits == [10]
    assert reported == []
    assert loop.stats.state is SamplerState.AWAITING_END_SNAPSHOT


def test_timing_anomaly_discards_round() -> None:
    loop, reported, _ = _loop(_ScriptedReader([START, _snap(1000.0, (42, 500, 500))]))
    assert loop.run_once() is None
    assert reported == []
    assert loop.stats.timing_anomalies == 1


def test_stop_during_sleep_skips_end_snapshot() -> None:
    reader = _ScriptedReader([START, END])
    loop, reported, _ = _loop(reader)
    loop.request_stop()
    assert loop.run_once() is None
    assert reader.calls == 1
    assert reported == []


def test_run_continues_through_failures_until_stopped() -> None:
    reader = _ScriptedReader([SnapshotReadError("x"), START, SnapshotReadError("y"), START, END])
    event = _InstantEvent()
    reported: list[list[UtilizationRecord]] = []

    def _report(records: list[UtilizationRecord]) -> None:
        reported.append(records)
        loop.request_stop()

    loop = SamplingLoop(
        reader=reader,
        reporter=_report,
        interval_seconds=3,
        threshold_percent=0.0,
        ticks_per_second=100,
        stop_event=event,
    )
    loop.run()
    assert loop.stopped
    assert len(reported) == 1
    assert loop.stats.read_failures == 2
    assert event.waits == [3, 3, 3]


@pytest.mark.parametrize("interval,threshold", [(0, 1.0), (-5, 1.0), (5, -0.1), (10**13, 1.0)])
def test_invalid_loop_settings(interval: int, threshold: float) -> None:
    with pytest.raises(ValueError):
        SamplingLoop(
            reader=_ScriptedReader([]),
            reporter=lambda records: None,
            interval_seconds=interval,
            threshold_percent=threshold,
            ticks_per_second=100,
        )
