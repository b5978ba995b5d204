from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

import psutil

from cpu_analyser.core.config import SourceConfig
from cpu_analyser.core.exceptions import ConfigError, SnapshotReadError
from cpu_analyser.monitoring.uptime import ProcUptimeReader, PsutilUptimeReader, UptimeReader

DEFAULT_NAME_MAX_LEN = 255

# Fields after "(comm) ": state, ppid, pgrp, session, tty_nr, tpgid, flags,
# minflt, cminflt, majflt, cmajflt, utime, stime.
_UTIME_INDEX = 11
_STIME_INDEX = 12


@dataclass(frozen=True)
class ProcessSample:
    pid: int
    user_ticks: int
    kernel_ticks: int
    name: str

    @property
    def total_ticks(self) -> int:
        return self.user_ticks + self.kernel_ticks


@dataclass(frozen=True)
class Snapshot:
    processes: Mapping[int, ProcessSample]
    uptime_seconds: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "processes", MappingProxyType(dict(self.processes)))

    def __len__(self) -> int:
        return len(self.processes)

    def __iter__(self) -> Iterator[ProcessSample]:
        return iter(self.processes.values())

    def get(self, pid: int) -> ProcessSample | None:
        return self.processes.get(pid)

    @classmethod
    def of(cls, samples: list[ProcessSample], uptime_seconds: float) -> Snapshot:
        return cls(processes={s.pid: s for s in samples}, uptime_seconds=uptime_seconds)


def parse_stat_line(pid: int, line: bytes | str, name_max_len: int = DEFAULT_NAME_MAX_LEN) -> ProcessSample:
    """
    Parse one /proc/<pid>/stat record.

    The command name sits between the first '(' and the *last* ')' of the
    record, since names may themselves contain parentheses.
    """
    raw = line.encode("utf-8", "surrogateescape") if isinstance(line, str) else line
    name_end = raw.rfind(b")")
    if name_end == -1:
        raise ValueError(f"stat record for pid {pid} has no ')'")
    name_start = raw.find(b"(")
    if name_start == -1 or name_start > name_end:
        raise ValueError(f"stat record for pid {pid} has no '('")

    name = raw[name_start + 1 : name_end].decode("utf-8", "replace")[:name_max_len]
    fields = raw[name_end + 2 :].split()
    if len(fields) <= _STIME_INDEX:
        raise ValueError(f"stat record for pid {pid} is truncated")

    utime, stime = fields[_UTIME_INDEX], fields[_STIME_INDEX]
    if not (utime.isdigit() and stime.isdigit()):
        raise ValueError(f"stat record for pid {pid} has non-numeric cpu times")
    return ProcessSample(pid=pid, user_ticks=int(utime), kernel_ticks=int(stime), name=name)


class ProcessSnapshotReader(ABC):
    backend: str = "abstract"

    def __init__(
        self,
        uptime_reader: UptimeReader,
        *,
        max_processes: int | None = None,
        name_max_len: int = DEFAULT_NAME_MAX_LEN,
    ) -> None:
        self.uptime_reader = uptime_reader
        self.max_processes = max_processes
        self.name_max_len = name_max_len
        self._log = logging.getLogger(f"cpu_analyser.reader.{self.backend}")

    @abstractmethod
    def read_processes(self) -> dict[int, ProcessSample]:
        """All visible processes keyed by pid; raises SnapshotReadError."""

    def snapshot(self) -> Snapshot:
        processes = self.read_processes()
        if not processes:
            raise SnapshotReadError("Process table read returned no processes")
        # Uptime is read right after enumeration; skew between the two biases the percentage.
        uptime = self.uptime_reader.read()
        return Snapshot(processes=processes, uptime_seconds=uptime)

    def _at_capacity(self, count: int) -> bool:
        if self.max_processes is None or count < self.max_processes:
            return False
        self._log.debug(
            "process cap reached, remaining processes not read",
            extra={"max_processes": self.max_processes, "truncated": True},
        )
        return True


class ProcfsSnapshotReader(ProcessSnapshotReader):
    backend = "procfs"

    def __init__(
        self,
        uptime_reader: UptimeReader | None = None,
        *,
        proc_root: str | Path = "/proc",
        max_processes: int | None = None,
        name_max_len: int = DEFAULT_NAME_MAX_LEN,
    ) -> None:
        self.proc_root = Path(proc_root)
        super().__init__(
            uptime_reader or ProcUptimeReader(self.proc_root),
            max_processes=max_processes,
            name_max_len=name_max_len,
        )

    def read_processes(self) -> dict[int, ProcessSample]:
        out: dict[int, ProcessSample] = {}
        try:
            entries = os.scandir(self.proc_root)
        except OSError as exc:
            raise SnapshotReadError(f"Failed to open {self.proc_root}: {exc}") from exc

        with entries:
            for entry in entries:
                if self._at_capacity(len(out)):
                    break
                if not entry.name.isdigit():
                    continue
                sample = self._read_one(int(entry.name))
                if sample is not None:
                    out[sample.pid] = sample
        return out

    def _read_one(self, pid: int) -> ProcessSample | None:
        stat_path = self.proc_root / str(pid) / "stat"
        try:
            raw = stat_path.read_bytes()
        except OSError:
            # Exited between enumeration and read.
            return None
        try:
            return parse_stat_line(pid, raw.split(b"\n", 1)[0], self.name_max_len)
        except ValueError as exc:
            self._log.debug("skipping unparsable stat record", extra={"pid": pid, "error": str(exc)})
            return None


class PsutilSnapshotReader(ProcessSnapshotReader):
    """Process table via psutil, for hosts without a procfs mount."""

    backend = "psutil"

    def __init__(
        self,
        uptime_reader: UptimeReader | None = None,
        *,
        ticks_per_second: int,
        max_processes: int | None = None,
        name_max_len: int = DEFAULT_NAME_MAX_LEN,
    ) -> None:
        if ticks_per_second <= 0:
            raise ValueError("ticks_per_second must be > 0")
        self.ticks_per_second = ticks_per_second
        super().__init__(
            uptime_reader or PsutilUptimeReader(),
            max_processes=max_processes,
            name_max_len=name_max_len,
        )

    def read_processes(self) -> dict[int, ProcessSample]:
        out: dict[int, ProcessSample] = {}
        try:
            for proc in psutil.process_iter(["name", "cpu_times"]):
                if self._at_capacity(len(out)):
                    break
                info = proc.info
                times = info.get("cpu_times")
                if times is None:
                    # Access denied or gone; psutil reports it as a missing attribute.
                    continue
                out[proc.pid] = ProcessSample(
                    pid=int(proc.pid),
                    user_ticks=self._to_ticks(times.user),
                    kernel_ticks=self._to_ticks(times.system),
                    name=str(info.get("name") or "")[: self.name_max_len],
                )
        except (psutil.Error, OSError) as exc:
            raise SnapshotReadError(f"Failed to enumerate processes: {exc}") from exc
        return out

    def _to_ticks(self, seconds: float) -> int:
        return max(0, int(round(float(seconds) * self.ticks_per_second)))


def build_snapshot_reader(source: SourceConfig, *, ticks_per_second: int) -> ProcessSnapshotReader:
    backend = source.backend
    if backend == "auto":
        backend = "procfs" if (Path(source.proc_root) / "uptime").exists() else "psutil"

    if backend == "procfs":
        return ProcfsSnapshotReader(
            proc_root=source.proc_root,
            max_processes=source.max_processes,
            name_max_len=source.name_max_len,
        )
    if backend == "psutil":
        return PsutilSnapshotReader(
            ticks_per_second=ticks_per_second,
            max_processes=source.max_processes,
            name_max_len=source.name_max_len,
        )
    raise ConfigError(f"Unknown process table backend: {source.backend}")
