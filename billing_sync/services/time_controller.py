"""Virtual clock shared by the cache, reconciler and access checks.

Responsibilities:
- Report the current UTC time (real time plus an offset)
- Advance or set time for tests and manual grace-period checks
- Optionally freeze time at a fixed instant
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from billing_sync.logging_config import get_logger

logger = get_logger(__name__)


class TimeController:
    """Virtual clock.

    Args:
        start: optional fixed instant; when given the clock is frozen there and
            only moves through advance_time() / set_time()
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._lock = threading.RLock()
        self._frozen_at: Optional[datetime] = None
        self._offset = timedelta(0)
        if start is not None:
            self._frozen_at = start if start.tzinfo else start.replace(tzinfo=timezone.utc)

        logger.debug(
            "time_controller_initialized",
            frozen=self._frozen_at is not None,
        )

    def now(self) -> datetime:
        """Current virtual time as a timezone-aware UTC datetime."""
        with self._lock:
            if self._frozen_at is not None:
                return self._frozen_at
            return datetime.fromtimestamp(time.time(), tz=timezone.utc) + self._offset

    def now_millis(self) -> int:
        """Current virtual time as Unix milliseconds."""
        return int(self.now().timestamp() * 1000)

    def advance_time(
            self,
            days: int = 0,
            hours: int = 0,
            minutes: int = 0,
            seconds: float = 0,
    ) -> dict:
        """Advance virtual time.

        Args:
            days: number of days to advance
            hours: number of hours to advance
            minutes: number of minutes to advance
            seconds: number of seconds to advance

        Returns:
            Dictionary with old_time, new_time and advanced_seconds

        Raises:
            ValueError: if any value is negative
        """
        if days < 0 or hours < 0 or minutes < 0 or seconds < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed.")

        delta = timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
        with self._lock:
            old_time = self.now()
            if self._frozen_at is not None:
                self._frozen_at = self._frozen_at + delta
            else:
                self._offset += delta
            new_time = self.now()

        logger.info(
            "time_advanced",
            old_time=old_time.isoformat(),
            new_time=new_time.isoformat(),
            advanced_seconds=delta.total_seconds(),
        )
        return {
            "old_time": old_time,
            "new_time": new_time,
            "advanced_seconds": delta.total_seconds(),
        }

    def set_time(self, moment: datetime) -> dict:
        """Set virtual time to a specific instant.

        Raises:
            ValueError: If the instant is before the current virtual time
        """
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        with self._lock:
            old_time = self.now()
            if moment < old_time:
                raise ValueError(
                    f"cannot set time backwards, current: {old_time.isoformat()}, requested: {moment.isoformat()}"
                )
            if self._frozen_at is not None:
                self._frozen_at = moment
            else:
                self._offset += moment - old_time

        logger.info("time_set", old_time=old_time.isoformat(), new_time=moment.isoformat())
        return {"old_time": old_time, "new_time": moment}

    def reset_time(self) -> dict:
        """Reset virtual time back to real current time (and unfreeze)."""
        with self._lock:
            old_time = self.now()
            self._frozen_at = None
            self._offset = timedelta(0)
            new_time = self.now()

        logger.info("time_reset", old_time=old_time.isoformat(), new_time=new_time.isoformat())
        return {"old_time": old_time, "new_time": new_time}


_time_controller_instance: Optional[TimeController] = None
_controller_lock = threading.Lock()


def get_time_controller() -> TimeController:
    global _time_controller_instance
    if _time_controller_instance is None:
        with _controller_lock:
            if _time_controller_instance is None:
                _time_controller_instance = TimeController()
    return _time_controller_instance


def reset_time_controller() -> None:
    global _time_controller_instance
    with _controller_lock:
        _time_controller_instance = TimeController()
