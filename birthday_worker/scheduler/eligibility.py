# birthday_worker/scheduler/eligibility.py
from calendar import isleap
from datetime import date, timedelta
from typing import Iterable, List
from birthday_worker.models import Recipient
from birthday_worker.scheduler.civil_time import CivilTime

def is_birthday_on(birthday: date, day: date) -> bool:
    """Month/day match, with Feb 29 birthdays observed on Feb 28 in common years"""
    if birthday.month == 2 and birthday.day == 29 and not isleap(day.year):
        return day.month == 2 and day.day == 28
    return birthday.month == day.month and birthday.day == day.day

def is_birthday_today(birthday: date, now: CivilTime) -> bool:
    return is_birthday_on(birthday, now.date)

def is_upcoming(birthday: date, now: CivilTime, days_ahead: int) -> bool:
    """True when the birthday falls exactly `days_ahead` local days from now"""
    return is_birthday_on(birthday, now.date + timedelta(days=days_ahead))

def scan_today(recipients: Iterable[Recipient], now: CivilTime) -> List[Recipient]:
    return [
        r for r in recipients
        if not r.opted_out and is_birthday_today(r.birthday, now)
    ]

def scan_upcoming(recipients: Iterable[Recipient], now: CivilTime, days_ahead: int) -> List[Recipient]:
    return [
        r for r in recipients
        if not r.opted_out and is_upcoming(r.birthday, now, days_ahead)
    ]
