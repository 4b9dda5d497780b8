from dataclasses import dataclass
from datetime import datetime, time


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max)


def current_month_to_date(now: datetime) -> Period:
    first = start_of_day(now.replace(day=1))
    return Period(first, end_of_day(now))
