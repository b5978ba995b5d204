from __future__ import annotations


class CpuAnalyserError(Exception):
    """Base error for the CPU analyser."""


class ConfigError(CpuAnalyserError):
    pass


class SnapshotReadError(CpuAnalyserError):
    """The process table or the uptime source could not be read."""


class TimingAnomalyError(CpuAnalyserError):
    """Elapsed time between two snapshots is not positive."""
