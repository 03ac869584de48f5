"""
Logical Clock for Deterministic Timestamps
==========================================

Injectable clock used to stamp ``last_updated_at`` and ``created_at``.

GUARANTEES:
- Same operations + same tick sequence = identical entity timestamps
- Never reads system time implicitly in replay mode
- Live ticks are recorded only when requested, for later replay
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List

from ..contracts.base import Timestamp


class ClockExhausted(Exception):
    """Raised when replay clock runs out of ticks."""
    pass


@dataclass
class LogicalClock:
    """
    Injectable clock for deterministic execution.

    MODES:
    ======
    1. LIVE mode: Uses real system time, records ticks when ``record`` is set
    2. REPLAY mode: Uses a pre-recorded tick sequence
    """
    _ticks: List[datetime] = field(default_factory=list)
    _current_index: int = 0
    _is_live: bool = True
    _record: bool = False

    def now(self) -> Timestamp:
        """
        Get current logical time.

        In LIVE mode: reads system time, recording it if requested
        In REPLAY mode: returns next tick from recorded sequence
        """
        if self._is_live:
            current = datetime.now(timezone.utc)
            if self._record:
                self._ticks.append(current)
            self._current_index += 1
            return Timestamp(value=current)

        if self._current_index >= len(self._ticks):
            raise ClockExhausted(
                f"Replay clock exhausted at index {self._current_index}. "
                f"Recorded sequence had {len(self._ticks)} ticks."
            )
        tick = self._ticks[self._current_index]
        self._current_index += 1
        return Timestamp(value=tick)

    def tick_count(self) -> int:
        """Number of ticks produced or consumed."""
        return self._current_index

    def is_live(self) -> bool:
        return self._is_live

    def recorded_ticks(self) -> List[datetime]:
        """Copy of the tick sequence, usable with ``from_ticks``.

        Empty for a live clock created without ``record=True``.
        """
        return list(self._ticks)

    @classmethod
    def live(cls, record: bool = False) -> LogicalClock:
        """Create clock in LIVE mode (uses system time)."""
        return cls(_is_live=True, _record=record)

    @classmethod
    def from_ticks(cls, ticks: Iterable[datetime]) -> LogicalClock:
        """Create clock in REPLAY mode from a tick sequence."""
        normalized = [
            t if t.tzinfo is not None else t.replace(tzinfo=timezone.utc)
            for t in ticks
        ]
        return cls(_ticks=normalized, _current_index=0, _is_live=False)

    @classmethod
    def fixed(cls, start: datetime, count: int = 10_000, step_seconds: int = 1) -> LogicalClock:
        """
        REPLAY clock ticking ``step_seconds`` apart from ``start``.

        Mainly for tests that need predictable timestamps.
        """
        return cls.from_ticks(
            start + timedelta(seconds=i * step_seconds) for i in range(count)
        )

    def __repr__(self) -> str:
        mode = "LIVE" if self._is_live else "REPLAY"
        return f"LogicalClock({mode}, ticks={len(self._ticks)}, index={self._current_index})"
