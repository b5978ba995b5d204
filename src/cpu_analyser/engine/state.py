from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SamplerState(str, Enum):
    AWAITING_START_SNAPSHOT = "awaiting_start_snapshot"
    SLEEPING = "sleeping"
    AWAITING_END_SNAPSHOT = "awaiting_end_snapshot"
    REPORTING = "reporting"


@dataclass
class SamplerStats:
    state: SamplerState = SamplerState.AWAITING_START_SNAPSHOT
    rounds_reported: int = 0
    read_failures: int = 0
    timing_anomalies: int = 0
    last_cycle_latency_ms: int | None = None
    last_reported_count: int = 0
