"""
Daily Window Tracker

A "game day" is the 24-hour window that starts at a fixed local hour rather
than midnight (math resets at 06:00, the word game at 04:00). Play counters
are keyed by (user, game_type, game_day), so a new day simply starts a new
counter and there is nothing to reset.
"""

from datetime import date, datetime, timedelta
from typing import Dict, Optional

from .storage import StorageInterface
from .clock import Clock, utc_now, to_local
from .errors import DailyLimitExceededError


def game_day(now: datetime, reset_hour: int, tz: str) -> date:
    """
    The game day containing ``now``.

    Local time shifted back by ``reset_hour`` hours, truncated to a date:
    with reset_hour=6, 05:59 on the 10th still belongs to the 9th.
    """
    local = to_local(now, tz)
    return (local - timedelta(hours=reset_hour)).date()


def next_reset(now: datetime, reset_hour: int, tz: str) -> datetime:
    """Local datetime at which the current game day ends"""
    day = game_day(now, reset_hour, tz)
    local = to_local(now, tz)
    boundary = datetime(day.year, day.month, day.day, tzinfo=local.tzinfo) + timedelta(days=1, hours=reset_hour)
    return boundary


class DailyPlayTracker:
    """Per-user, per-game daily play counters with atomic check-and-increment"""

    def __init__(self, storage: StorageInterface, timezone: str = "Africa/Johannesburg", clock: Clock = utc_now):
        self.storage = storage
        self.timezone = timezone
        self.clock = clock
        self.table_name = "daily_play_counters"

    @staticmethod
    def _counter_id(user_id: str, game_type: str, day: date) -> str:
        return f"{user_id}:{game_type}:{day.isoformat()}"

    def count(self, user_id: str, game_type: str, reset_hour: int, now: Optional[datetime] = None) -> int:
        day = game_day(now or self.clock(), reset_hour, self.timezone)
        data = self.storage.load(self.table_name, self._counter_id(user_id, game_type, day))
        return data["count"] if data else 0

    def remaining(self, user_id: str, game_type: str, limit: int, reset_hour: int,
                  now: Optional[datetime] = None) -> int:
        """Plays left today, without consuming one"""
        return max(0, limit - self.count(user_id, game_type, reset_hour, now))

    def try_consume(self, user_id: str, game_type: str, limit: int, reset_hour: int,
                    now: Optional[datetime] = None) -> int:
        """
        Atomically take one play from today's quota.

        Returns:
            Plays remaining after this one

        Raises:
            DailyLimitExceededError: When the quota is already used up
        """
        day = game_day(now or self.clock(), reset_hour, self.timezone)
        counter_id = self._counter_id(user_id, game_type, day)

        with self.storage.atomic():
            data: Optional[Dict] = self.storage.load(self.table_name, counter_id)
            used = data["count"] if data else 0
            if used >= limit:
                raise DailyLimitExceededError(game_type, limit)
            self.storage.save(self.table_name, counter_id, {
                "user_id": user_id,
                "game_type": game_type,
                "game_day": day.isoformat(),
                "count": used + 1
            })
        return limit - used - 1
