"""Calendar clock with optional day/month overrides for testing."""

from __future__ import annotations

import logging
import os
from calendar import monthrange
from datetime import date, datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

SEASON_MONTH = 12
LAST_DAY = 24


def _parse_iso(ts: str) -> datetime | None:
    if not ts:
        return None
    raw = ts.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _valid_override(value: Any, low: int, high: int, name: str) -> int | None:
    """Return the override as an int, or None when absent or out of range."""
    if value is None or value == "":
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s override: %r", name, value)
        return None
    if not low <= n <= high:
        logger.warning("Ignoring out-of-range %s override: %d", name, n)
        return None
    return n


class Clock:
    """Resolves the current calendar day and month.

    Overrides are checked before the real clock: an explicit day/month
    pair, or a frozen reference instant. A valid day override without a
    month implies December. Invalid overrides are ignored.
    """

    def __init__(
        self,
        override_day: int | str | None = None,
        override_month: int | str | None = None,
        frozen_at: datetime | str | None = None,
        test_mode: bool = False,
        now_fn: Callable[[], datetime] | None = None,
    ):
        self._day = _valid_override(override_day, 1, 31, "day")
        self._month = _valid_override(override_month, 1, 12, "month")
        if self._day is not None and self._month is None:
            self._month = SEASON_MONTH

        if isinstance(frozen_at, str):
            parsed = _parse_iso(frozen_at)
            if parsed is None:
                logger.warning("Ignoring unparseable frozen_at: %r", frozen_at)
            frozen_at = parsed
        self._frozen = frozen_at
        self._test_mode = test_mode
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, cfg: dict) -> Clock:
        clock_cfg = cfg.get("clock", {}) or {}
        return cls(
            override_day=os.getenv("NISSEKOMM_MOCK_DAY") or clock_cfg.get("mock_day"),
            override_month=os.getenv("NISSEKOMM_MOCK_MONTH") or clock_cfg.get("mock_month"),
            frozen_at=clock_cfg.get("frozen_at"),
            test_mode=bool(clock_cfg.get("test_mode", False)),
        )

    def now(self) -> datetime:
        if self._frozen is not None:
            return self._frozen
        return self._now_fn()

    def now_iso(self) -> str:
        return self.now().isoformat()

    def current_day(self) -> int:
        if self._day is not None:
            return self._day
        return self.now().day

    def current_month(self) -> int:
        if self._month is not None:
            return self._month
        return self.now().month

    @property
    def test_mode(self) -> bool:
        return self._test_mode

    def season_day(self) -> int:
        """Calendar day used to gate missions: 0 outside December."""
        if self._test_mode:
            return LAST_DAY
        if self.current_month() != SEASON_MONTH:
            return 0
        return self.current_day()

    def is_calendar_active(self) -> bool:
        if self._test_mode:
            return True
        return self.current_month() == SEASON_MONTH and 1 <= self.current_day() <= LAST_DAY

    def days_until_christmas(self) -> int:
        now = self.now()
        month = self.current_month()
        day = min(self.current_day(), monthrange(now.year, month)[1])
        today = date(now.year, month, day)
        christmas_eve = date(now.year, SEASON_MONTH, LAST_DAY)
        return max(0, (christmas_eve - today).days)
