# birthday_worker/utils/formatting.py
from datetime import date

def format_month_day(day: date) -> str:
    """e.g. 'March 17'"""
    return f"{day.strftime('%B')} {day.day}"

def format_long_date(day: date) -> str:
    """Human form used in messages, e.g. 'October 18, 2026'"""
    return f"{format_month_day(day)}, {day.year}"
