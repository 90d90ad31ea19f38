"""The engine's single wall clock."""

from datetime import datetime
from zoneinfo import ZoneInfo


class Clock:
    """Returns aware ``now`` values in the engine timezone.

    Every eligibility decision reads weekday and time of day from this clock;
    user timezones are not applied (known simplification).
    """

    def __init__(self, timezone_name: str = "UTC"):
        self.tz = ZoneInfo(timezone_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def __call__(self) -> datetime:
        return self.now()
