"""
Scheduler for candle timing and re-optimization cadence.

Crypto futures trade around the clock, so there is no market calendar: the
scheduler only knows the candle interval (when the next candle closes) and
the re-optimization interval. All times are UTC.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

import pandas as pd
import pytz

from ..broker.base import interval_to_timedelta
from ..shared.defaults import LIVE_INTERVAL, LOOP_INTERVAL_SECONDS, OPTIMIZE_INTERVAL_HOURS

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)


class PollingScheduler:
    """
    Manages timing for the live polling loop.

    Responsibilities:
    - Align to candle boundaries (which candle is the newest closed one)
    - Track when the duration range was last re-optimized
    - Sleep in small chunks so a shutdown request is honoured quickly
    """

    def __init__(
        self,
        interval: str = LIVE_INTERVAL,
        loop_interval_seconds: int = LOOP_INTERVAL_SECONDS,
        optimize_interval_hours: float = OPTIMIZE_INTERVAL_HOURS,
        timezone: str = "UTC",
    ):
        """
        Initialize scheduler.

        Args:
            interval: Candle interval (e.g. "1h")
            loop_interval_seconds: Seconds between polling ticks
            optimize_interval_hours: Re-optimization cadence (0 disables)
            timezone: Timezone for log output and current time (default: UTC)
        """
        self.interval = interval_to_timedelta(interval)
        self.loop_interval_seconds = loop_interval_seconds
        self.optimize_interval = timedelta(hours=optimize_interval_hours)
        self.tz = pytz.timezone(timezone)

        self.last_optimized: Optional[datetime] = None

    def get_current_time(self) -> datetime:
        """Get current time in the scheduler timezone."""
        return datetime.now(self.tz)

    def to_utc(self, moment: Optional[datetime] = None) -> datetime:
        if moment is None:
            moment = self.get_current_time()
        moment = pd.Timestamp(moment).to_pydatetime()
        if moment.tzinfo is None:
            return pytz.UTC.localize(moment)
        return moment.astimezone(pytz.UTC)

    def current_candle_open(self, now: Optional[datetime] = None) -> datetime:
        """Open time of the candle that is still forming at ``now``."""
        now = self.to_utc(now)
        elapsed = (now - _EPOCH) // self.interval
        return _EPOCH + elapsed * self.interval

    def last_closed_candle_open(self, now: Optional[datetime] = None) -> datetime:
        """Open time of the newest fully closed candle."""
        return self.current_candle_open(now) - self.interval

    def is_closed(self, candle_open: datetime, now: Optional[datetime] = None) -> bool:
        """True when the candle opened at ``candle_open`` has closed by ``now``."""
        return self.to_utc(candle_open) + self.interval <= self.to_utc(now)

    def seconds_until_next_close(self, now: Optional[datetime] = None) -> int:
        now = self.to_utc(now)
        next_close = self.current_candle_open(now) + self.interval
        return max(int((next_close - now).total_seconds()), 0)

    def optimization_due(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the duration range should be re-optimized.

        Returns:
            False when re-optimization is disabled; True when it never ran or
            the interval has elapsed since the last run
        """
        if self.optimize_interval <= timedelta(0):
            return False
        if self.last_optimized is None:
            return True
        return self.to_utc(now) - self.last_optimized >= self.optimize_interval

    def mark_optimized(self, now: Optional[datetime] = None):
        self.last_optimized = self.to_utc(now)
        logger.info(f"Range optimized at {self.last_optimized.strftime('%Y-%m-%d %H:%M %Z')}")

    def sleep(self, seconds: Optional[float] = None, should_stop: Optional[Callable[[], bool]] = None) -> bool:
        """
        Sleep until the next tick.

        Sleeps in chunks of at most 1 second so ``should_stop`` is polled.

        Args:
            seconds: Seconds to sleep (default: loop_interval_seconds)
            should_stop: Callable returning True to abort the sleep early

        Returns:
            True if the full duration elapsed, False if interrupted
        """
        remaining = self.loop_interval_seconds if seconds is None else seconds
        while remaining > 0:
            if should_stop is not None and should_stop():
                return False
            chunk = min(remaining, 1.0)
            time.sleep(chunk)
            remaining -= chunk
        return True
