from __future__ import annotations

import sys
from typing import Iterable, TextIO

from cpu_analyser.core.utils import safe_json_dumps, utc_now
from cpu_analyser.engine.correlator import UtilizationRecord


def sort_records(records: Iterable[UtilizationRecord]) -> list[UtilizationRecord]:
    return sorted(records, key=lambda r: (-r.cpu_percent, r.pid))


def format_table(records: Iterable[UtilizationRecord], *, interval_seconds: int, threshold_percent: float) -> str:
    lines = [
        "",
        f"--- CPU Usage in last {interval_seconds} seconds (Threshold: {threshold_percent:.2f}%) ---",
        f"{'PID':<10} {'COMMAND':<20} {'CPU%':<10}",
    ]
    for r in sort_records(records):
        lines.append(f"{r.pid:<10d} {r.name:<20} {r.cpu_percent:<10.2f}")
    return "\n".join(lines)


def format_json(records: Iterable[UtilizationRecord], *, interval_seconds: int, threshold_percent: float) -> str:
    return safe_json_dumps(
        {
            "ts": utc_now(),
            "interval_seconds": interval_seconds,
            "threshold_percent": threshold_percent,
            "processes": [
                {"pid": r.pid, "name": r.name, "cpu_percent": round(r.cpu_percent, 2)}
                for r in sort_records(records)
            ],
        }
    )


class StreamReporter:
    """Writes one block per interval to a text stream (stdout by default)."""

    def __init__(
        self,
        *,
        interval_seconds: int,
        threshold_percent: float,
        fmt: str = "table",
        stream: TextIO | None = None,
    ) -> None:
        if fmt not in {"table", "json"}:
            raise ValueError(f"unknown report format: {fmt}")
        self.interval_seconds = interval_seconds
        self.threshold_percent = threshold_percent
        self.fmt = fmt
        self.stream = stream

    def __call__(self, records: list[UtilizationRecord]) -> None:
        formatter = format_table if self.fmt == "table" else format_json
        out = self.stream or sys.stdout
        out.write(
            formatter(records, interval_seconds=self.interval_seconds, threshold_percent=self.threshold_percent)
            + "\n"
        )
        out.flush()
