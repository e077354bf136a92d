"""Bounded in-process log of engine interaction metadata.

The buffer has a fixed capacity; once full, each new entry drops the oldest.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from explorer.config import get_settings
from explorer.points.schemas import UsageStats


@dataclass
class InteractionRecord:
    tenant_id: str
    request_type: str
    input_summary: str
    output_summary: str
    latency_ms: float
    success: bool
    error: str | None = None
    classroom_id: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InteractionLog:
    """Ring buffer of InteractionRecords."""

    def __init__(self, capacity: int) -> None:
        self.entries: deque[InteractionRecord] = deque(maxlen=capacity)
        self.dropped = 0

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def capacity(self) -> int:
        return self.entries.maxlen or 0

    def record(self, entry: InteractionRecord) -> None:
        if len(self.entries) == self.capacity:
            self.dropped += 1
        self.entries.append(entry)

    def usage_stats(self, tenant_id: str, period_days: int = 30, now: datetime | None = None) -> UsageStats:
        if now is None:
            now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=period_days)
        logs = [e for e in self.entries if e.tenant_id == tenant_id and e.recorded_at >= cutoff]
        succeeded = sum(1 for e in logs if e.success)
        return UsageStats(
            tenant_id=tenant_id,
            period_days=period_days,
            total_requests=len(logs),
            successful_requests=succeeded,
            failed_requests=len(logs) - succeeded,
            average_latency_ms=sum(e.latency_ms for e in logs) / len(logs) if logs else 0.0,
            by_request_type=dict(Counter(e.request_type for e in logs)),
        )


class Timer:
    """Milliseconds elapsed since construction."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


@lru_cache
def get_interaction_log() -> InteractionLog:
    """Process-wide interaction log."""
    return InteractionLog(get_settings().interaction_log_capacity)
