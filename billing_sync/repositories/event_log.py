"""Processed-event log - dedup window for billing provider webhook ids.

The provider delivers events at least once and retries for days. An event id
claimed here is not processed again until its window elapses.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from billing_sync.logging_config import get_logger
from billing_sync.services.time_controller import TimeController, get_time_controller

logger = get_logger(__name__)


class ProcessedEventLog:
    """TTL-bounded set of claimed event ids.

    Args:
        window_seconds: how long a claimed id is remembered
        clock: time source (defaults to the global time controller)
    """

    def __init__(self, window_seconds: float, clock: Optional[TimeController] = None):
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got: {window_seconds}")
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock or get_time_controller()
        self._claims: Dict[str, datetime] = {}
        self._lock = threading.RLock()

    def _expired(self, claimed_at: datetime, now: datetime) -> bool:
        return now - claimed_at >= self._window

    def claim(self, event_id: str) -> bool:
        """Atomically claim an event id.

        Returns:
            True if the caller now owns the event, False if it was already claimed
        """
        now = self._clock.now()
        with self._lock:
            claimed_at = self._claims.get(event_id)
            if claimed_at is not None and not self._expired(claimed_at, now):
                return False
            self._claims[event_id] = now
            return True

    def release(self, event_id: str) -> None:
        """Forget a claim so a redelivery of the event is processed."""
        with self._lock:
            self._claims.pop(event_id, None)

    def is_processed(self, event_id: str) -> bool:
        now = self._clock.now()
        with self._lock:
            claimed_at = self._claims.get(event_id)
            return claimed_at is not None and not self._expired(claimed_at, now)

    def purge_expired(self) -> int:
        """Drop claims older than the window.

        Returns:
            Number of ids removed
        """
        now = self._clock.now()
        with self._lock:
            expired = [eid for eid, at in self._claims.items() if self._expired(at, now)]
            for event_id in expired:
                del self._claims[event_id]
        if expired:
            logger.debug("processed_events_purged", count=len(expired))
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._claims)

    def clear(self) -> None:
        with self._lock:
            self._claims.clear()

    def __len__(self) -> int:
        return self.count()
