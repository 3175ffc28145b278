"""
Update-frequency strategies deciding when a pipeline runs next.
"""

from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Union

import pytz

from shared.utils.configs import base_configs
from shared.utils.helpers import utc_now
from shared.utils.types import UpdateFrequency


class UpdateFrequencyStrategy(ABC):
    """
    Common contract for scheduling policies. `now` may be passed in to pin
    the current time; it defaults to the wall clock.
    """

    @abstractmethod
    def should_update(
        self,
        last_update: Optional[datetime],
        frequency: UpdateFrequency,
        now: Optional[datetime] = None,
    ) -> bool:
        pass

    @abstractmethod
    def get_next_update_time(
        self,
        last_update: Optional[datetime],
        frequency: UpdateFrequency,
        now: Optional[datetime] = None,
    ) -> datetime:
        pass


class BiannualUpdateStrategy(UpdateFrequencyStrategy):
    """Runs on January 15 and July 15 at 02:00 UTC."""

    TRIGGER_DATES = ((1, 15), (7, 15))
    TRIGGER_HOUR = 2

    def trigger_dates(self, year: int) -> List[datetime]:
        return [
            datetime(year, month, day, self.TRIGGER_HOUR, tzinfo=timezone.utc)
            for month, day in self.TRIGGER_DATES
        ]

    def should_update(self, last_update, frequency=UpdateFrequency.BIANNUAL, now=None) -> bool:
        """
        True if a trigger date was crossed between `last_update` and now.

        Args:
            last_update: When the pipeline last ran, None if never
            frequency: Unused, kept for the common contract
            now: Current time override

        Returns:
            Whether the pipeline is due
        """
        if last_update is None:
            return True
        now = now or utc_now()
        for year in range(last_update.year, now.year + 1):
            for trigger in self.trigger_dates(year):
                if last_update < trigger <= now:
                    return True
        return False

    def get_next_update_time(self, last_update, frequency=UpdateFrequency.BIANNUAL, now=None) -> datetime:
        """The nearest trigger date after both now and `last_update`."""
        reference = now or utc_now()
        if last_update is not None and last_update > reference:
            reference = last_update
        for year in (reference.year, reference.year + 1):
            for trigger in self.trigger_dates(year):
                if trigger > reference:
                    return trigger
        # Unreachable: next year's January trigger is always later
        raise RuntimeError("No biannual trigger date found")


class WeeklyUpdateStrategy(UpdateFrequencyStrategy):
    """
    Runs every Sunday at 02:00 local time. On a Sunday before 02:00 the run
    is the same day; from 02:00 on it is the following Sunday.
    """

    TRIGGER_HOUR = 2
    SUNDAY = 6

    def __init__(self, tz: pytz.BaseTzInfo = base_configs["timezone"]):
        self.tz = tz

    def _next_sunday_after(self, reference: datetime) -> datetime:
        local_reference = reference.astimezone(self.tz)
        days_ahead = (self.SUNDAY - local_reference.weekday()) % 7
        target_date = local_reference.date() + timedelta(days=days_ahead)
        candidate = self.tz.localize(
            datetime.combine(target_date, time(self.TRIGGER_HOUR))
        )
        if candidate <= local_reference:
            candidate = self.tz.localize(
                datetime.combine(target_date + timedelta(days=7), time(self.TRIGGER_HOUR))
            )
        return self.tz.normalize(candidate)

    def get_next_update_time(self, last_update, frequency=UpdateFrequency.WEEKLY, now=None) -> datetime:
        reference = now or utc_now()
        if last_update is not None and last_update > reference:
            reference = last_update
        return self._next_sunday_after(reference)

    def should_update(self, last_update, frequency=UpdateFrequency.WEEKLY, now=None) -> bool:
        if last_update is None:
            return True
        now = now or utc_now()
        return now >= self._next_sunday_after(last_update)


class UpdateStrategyFactory:
    @staticmethod
    def create_strategy(frequency: Union[str, UpdateFrequency]) -> UpdateFrequencyStrategy:
        """
        Build the strategy for a frequency.

        Raises:
            ValueError: For any frequency other than biannual or weekly
        """
        key = frequency.value if isinstance(frequency, UpdateFrequency) else frequency
        if key == UpdateFrequency.BIANNUAL.value:
            return BiannualUpdateStrategy()
        if key == UpdateFrequency.WEEKLY.value:
            return WeeklyUpdateStrategy()
        raise ValueError(f"Unsupported update frequency: {frequency}")
