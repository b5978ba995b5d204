from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from pathlib import Path

import psutil

from cpu_analyser.core.exceptions import SnapshotReadError


class UptimeReader(ABC):
    @abstractmethod
    def read(self) -> float:
        """Seconds since boot; raises SnapshotReadError when unavailable."""


class ProcUptimeReader(UptimeReader):
    """Seconds since boot, from the first field of <proc_root>/uptime."""

    def __init__(self, proc_root: str | Path = "/proc") -> None:
        self.path = Path(proc_root) / "uptime"

    def read(self) -> float:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SnapshotReadError(f"Failed to read {self.path}: {exc}") from exc
        fields = raw.split()
        if not fields:
            raise SnapshotReadError(f"Empty uptime record in {self.path}")
        try:
            uptime = float(fields[0])
        except ValueError as exc:
            raise SnapshotReadError(f"Unparsable uptime record in {self.path}: {raw!r}") from exc
        if not math.isfinite(uptime) or uptime < 0:
            raise SnapshotReadError(f"Invalid uptime in {self.path}: {uptime}")
        return uptime


class PsutilUptimeReader(UptimeReader):
    def read(self) -> float:
        try:
            boot = float(psutil.boot_time())
        except (psutil.Error, OSError) as exc:
            raise SnapshotReadError(f"Failed to read boot time: {exc}") from exc
        uptime = time.time() - boot
        if uptime < 0:
            raise SnapshotReadError(f"Boot time lies in the future: {boot}")
        return uptime
