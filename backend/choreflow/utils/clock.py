"""Injectable time source"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from choreflow.config import settings


class Clock(ABC):
    """Source of "now" for every scheduling decision"""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware datetime"""

    @property
    @abstractmethod
    def tz(self) -> ZoneInfo:
        """Zone used for time-of-day arithmetic"""

    def localize(self, value: datetime) -> datetime:
        """Attach or convert ``value`` to the clock's zone"""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)


class SystemClock(Clock):
    """Wall clock in the configured family timezone"""

    def __init__(self, timezone_name: Optional[str] = None):
        self._tz = ZoneInfo(timezone_name or settings.TIMEZONE)

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)
