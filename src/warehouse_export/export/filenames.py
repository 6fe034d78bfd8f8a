from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo
import time


@dataclass(frozen=True)
class RunClock:
    """The export's start time, captured once.

    ``unix`` and ``stamp`` always describe the same instant, so the numeric and
    formatted parts of a filename never disagree.
    """

    unix: int
    tz: str = "UTC"

    @classmethod
    def now(cls, tz: str = "UTC", timenow: Optional[float] = None) -> "RunClock":
        return cls(unix=int(time.time() if timenow is None else timenow), tz=tz)

    @property
    def moment(self) -> datetime:
        return datetime.fromtimestamp(self.unix, tz=timezone.utc).astimezone(ZoneInfo(self.tz or "UTC"))

    @property
    def stamp(self) -> str:
        return self.moment.strftime("%Y-%m-%d-%H-%M-%S")


def export_filename(user_id: int, item_id: int, quiz_id: int, query_name: str, clock: RunClock) -> str:
    """``<user>-<item>-<quiz>-<query_name>-<unix>-<YYYY-MM-DD-HH-MM-SS>.csv``"""
    name = (query_name or "").replace(" ", "_").replace("/", "_").replace("\\", "_")
    return f"{int(user_id)}-{int(item_id)}-{int(quiz_id)}-{name}-{clock.unix}-{clock.stamp}.csv"
