"""
Billing cycle keys.

A cycle key identifies the window (hour or minute) a charge or a suspension
belongs to. Configs disabled for wallet suspension carry the key so that a
second evaluation inside the same window leaves them alone.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def floor_to_minute(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


def floor_to_hour(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


def cycle_key(moment: datetime, resolution: str = "hourly") -> str:
    """ISO-8601 start of the cycle containing `moment`."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if resolution == "minute":
        start = floor_to_minute(moment)
    else:
        start = floor_to_hour(moment)
    return start.astimezone(timezone.utc).isoformat()


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
