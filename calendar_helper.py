# calendar_helper.py
# Jalali (solar) <-> Gregorian conversion, month stepping and the inline
# calendar keyboard used by the bot. Gregorian datetime.date is what we store;
# the Jalali (year, month, day) view is always derived on demand.
import datetime
import re

import jdatetime
from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from errors import InvalidDateError

MIN_YEAR = jdatetime.MINYEAR
MAX_YEAR = jdatetime.MAXYEAR

MONTH_NAMES = [
    "فروردین", "اردیبهشت", "خرداد", "تیر", "مرداد", "شهریور",
    "مهر", "آبان", "آذر", "دی", "بهمن", "اسفند",
]
# Saturday is the first day of the Jalali week
WEEKDAY_NAMES = ["شنبه", "یکشنبه", "دوشنبه", "سه‌شنبه", "چهارشنبه", "پنج‌شنبه", "جمعه"]
WEEKDAY_SHORT = ["ش", "ی", "د", "س", "چ", "پ", "ج"]

_SOLAR_RE = re.compile(r"^\s*(\d{1,4})[/-](\d{1,2})[/-](\d{1,2})\s*$")


def is_leap_year(year):
    return jdatetime.date(year, 1, 1).isleap()


def days_in_month(year, month):
    """Length of a Jalali month: 31 for months 1-6, 30 for 7-11, 29/30 for Esfand."""
    if month < 1 or month > 12:
        raise InvalidDateError(f"Invalid solar month: {month}", {'month': month})
    if month <= 6:
        return 31
    if month <= 11:
        return 30
    return 30 if is_leap_year(year) else 29


def _check_year(year):
    if year < MIN_YEAR or year > MAX_YEAR:
        raise InvalidDateError(f"Solar year {year} is out of range", {'year': year})


def to_solar(civil_date):
    """
    civil_date: datetime.date (Gregorian)
    return: (year, month, day) in the Jalali calendar
    """
    if isinstance(civil_date, datetime.datetime):
        civil_date = civil_date.date()
    jd = jdatetime.date.fromgregorian(date=civil_date)
    return jd.year, jd.month, jd.day


def to_civil(year, month, day):
    """
    year, month, day: Jalali date parts
    return: datetime.date (Gregorian)
    Raises InvalidDateError for a month/day that does not exist or a year
    outside the supported range.
    """
    _check_year(year)
    if day < 1 or day > days_in_month(year, month):
        raise InvalidDateError(
            f"Invalid solar day: {year}/{month}/{day}",
            {'year': year, 'month': month, 'day': day},
        )
    try:
        return jdatetime.date(year, month, day).togregorian()
    except (ValueError, OverflowError) as e:
        raise InvalidDateError(f"Cannot convert {year}/{month}/{day}: {e}") from e


def shift_month(year, month, months):
    """Add `months` to a Jalali (year, month) pair, carrying into the year."""
    total = month + months
    return year + (total - 1) // 12, (total - 1) % 12 + 1


def add_months(civil_date, months):
    """
    civil_date: datetime.date (Gregorian)
    months: int, may be zero or negative
    Return: datetime.date (Gregorian) — months are added on the Jalali calendar
    and the day is capped to the last day of the target month.
    """
    y, m, d = to_solar(civil_date)
    new_y, new_m = shift_month(y, m, months)
    _check_year(new_y)
    new_d = min(d, days_in_month(new_y, new_m))
    return to_civil(new_y, new_m, new_d)


def weekday_index(civil_date):
    # python weekday: Monday=0 .. Sunday=6; shift so that Saturday=0
    return (civil_date.weekday() + 2) % 7


def weekday_name(civil_date):
    return WEEKDAY_NAMES[weekday_index(civil_date)]


def month_name(month):
    if month < 1 or month > 12:
        raise InvalidDateError(f"Invalid solar month: {month}", {'month': month})
    return MONTH_NAMES[month - 1]


def format_solar(civil_date):
    """1403/09/20"""
    if civil_date is None:
        return ""
    y, m, d = to_solar(civil_date)
    return f"{y:04d}/{m:02d}/{d:02d}"


def format_solar_long(civil_date):
    """20 آذر 1403"""
    if civil_date is None:
        return ""
    y, m, d = to_solar(civil_date)
    return f"{d} {month_name(m)} {y}"


def format_solar_full(civil_date):
    """سه‌شنبه 20 آذر 1403"""
    if civil_date is None:
        return ""
    return f"{weekday_name(civil_date)} {format_solar_long(civil_date)}"


def format_solar_datetime(dt):
    """1403/09/20 - 14:30"""
    if dt is None:
        return ""
    return f"{format_solar(dt.date())} - {dt:%H:%M}"


def parse_solar(text):
    """
    text: "1403/09/20" (a "-" separator is accepted too)
    return: datetime.date (Gregorian)
    """
    match = _SOLAR_RE.match(text or "")
    if not match:
        raise InvalidDateError(f"Malformed solar date: {text!r}", {'text': text})
    y, m, d = (int(x) for x in match.groups())
    return to_civil(y, m, d)


def jalali_month_matrix(year, month):
    # returns list of lists of day numbers for week rows (starting Saturday)
    offset = weekday_index(to_civil(year, month, 1))
    days = days_in_month(year, month)
    rows = []
    week = [None] * 7
    i = offset
    for day in range(1, days + 1):
        week[i] = day
        i += 1
        if i == 7:
            rows.append(week)
            week = [None] * 7
            i = 0
    if any(x is not None for x in week):
        rows.append(week)
    return rows


def build_month_keyboard(year, month, prefix="cal"):
    rows = jalali_month_matrix(year, month)
    keyboard = []
    # header with month/year and prev/next
    header = [
        InlineKeyboardButton("⟨", callback_data=f"{prefix}|prev|{year}-{month}"),
        InlineKeyboardButton(f"{month_name(month)} {year}", callback_data="noop"),
        InlineKeyboardButton("⟩", callback_data=f"{prefix}|next|{year}-{month}"),
    ]
    keyboard.append(header)
    keyboard.append([InlineKeyboardButton(n, callback_data="noop") for n in WEEKDAY_SHORT])

    for week in rows:
        row = []
        for d in week:
            if d is None:
                row.append(InlineKeyboardButton(" ", callback_data="noop"))
            else:
                jalali_date = f"{year:04d}/{month:02d}/{d:02d}"
                row.append(InlineKeyboardButton(str(d), callback_data=f"{prefix}|day|{jalali_date}"))
        keyboard.append(row)
    keyboard.append([InlineKeyboardButton("لغو", callback_data=f"{prefix}|cancel")])
    return InlineKeyboardMarkup(keyboard)
