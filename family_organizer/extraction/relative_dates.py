from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ..utils import _log_debug, try_parse_date, weekday_index
from .temporal import TimeOfDay, combine, find_time_of_day, infer_date_from_time

logger = logging.getLogger(__name__)

SATURDAY = 6
MONDAY = 1

_CN_WEEKDAY = {
    "一": 1, "二": 2, "三": 3, "四": 4, "五": 5, "六": 6, "日": 0, "天": 0,
    "1": 1, "2": 2, "3": 3, "4": 4, "5": 5, "6": 6, "7": 0,
}
_EN_WEEKDAY = {
    "sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6,
}
_EN_MONTH = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_CN_WD = r"([一二三四五六日天1-7])"
_CN_WEEK = r"(?:[個个])?(?:週|周|星期|禮拜|礼拜)"
_EN_WD = (r"(monday|mon|tuesday|tues|tue|wednesday|wed|thursday|thurs|thur|thu|"
          r"friday|fri|saturday|sat|sunday|sun)")
_EN_WD_FULL = r"(monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
_EN_MON = (r"(january|jan|february|feb|march|mar|april|apr|may|june|jun|july|jul|"
           r"august|aug|september|sept|sep|october|oct|november|nov|december|dec)")


def resolve_weekday(target: int, today: date, week_offset: int = 0) -> date:
  """Date of weekday ``target`` (0=Sunday) relative to ``today``.

  ``week_offset`` 0 means "this", 1 "next", 2 "next-next". With offset 0 a
  target equal to today's weekday rolls forward a full week.
  """
  current = weekday_index(today)
  days_to_add = (target - current + 7) % 7
  if week_offset == 0 and days_to_add == 0:
    days_to_add = 7
  days_to_add += week_offset * 7
  return today + timedelta(days=days_to_add)


def resolve_workday(today: date) -> date:
  if 1 <= weekday_index(today) <= 5:
    return today
  return resolve_weekday(MONDAY, today)


def resolve_month_day(month: int, day: int, today: date) -> Optional[date]:
  """Next occurrence of month/day: this year, or next year once it has passed."""
  try:
    candidate = date(today.year, month, day)
  except ValueError:
    return None
  if candidate < today:
    try:
      candidate = date(today.year + 1, month, day)
    except ValueError:
      return None
  return candidate


def resolve_day_of_month(day: int, today: date) -> Optional[date]:
  """Next occurrence of a bare day-of-month: this month, or next month."""
  try:
    candidate = date(today.year, today.month, day)
  except ValueError:
    return None
  if candidate < today:
    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    try:
      candidate = date(year, month, day)
    except ValueError:
      return None
  return candidate


def _absolute(year: int, month: int, day: int) -> Optional[date]:
  try:
    return date(year, month, day)
  except ValueError:
    return None


def _en_weekday(token: str) -> int:
  return _EN_WEEKDAY[token[:3].lower()]


def _en_month(token: str) -> int:
  return _EN_MONTH[token[:3].lower()]


DateRule = Tuple[re.Pattern[str], Callable[[re.Match, date], Optional[date]]]


def _rule(pattern: str, handler: Callable[[re.Match, date], Optional[date]]) -> DateRule:
  return re.compile(pattern, re.IGNORECASE), handler


# Ordered, first rule wins. Longer phrases precede their prefixes
# (大後天 before 後天, "day after tomorrow" before "tomorrow").
_DATE_RULES: List[DateRule] = [
    _rule(r"(\d{4})\s*[-/.年]\s*(\d{1,2})\s*[-/.月]\s*(\d{1,2})\s*[日號号]?",
          lambda m, t: _absolute(int(m.group(1)), int(m.group(2)), int(m.group(3)))),
    _rule(r"大[後后]天|大[後后]日",
          lambda m, t: t + timedelta(days=3)),
    _rule(r"\b(?:the\s+)?day\s+after\s+the\s+day\s+after\s+tomorrow\b",
          lambda m, t: t + timedelta(days=3)),
    _rule(r"[後后]天|\b(?:the\s+)?day\s+after\s+tomorrow\b|overmorrow",
          lambda m, t: t + timedelta(days=2)),
    _rule(r"明天|明日|明晚|明早|\btomorrow\b",
          lambda m, t: t + timedelta(days=1)),
    _rule(r"今天|今日|今晚|今早|\btoday\b|\btonight\b",
          lambda m, t: t),
    _rule(r"\bin\s+(\d{1,3})\s+days?\b|(\d{1,3})\s*[天日](?:之)?[後后]",
          lambda m, t: t + timedelta(days=int(m.group(1) or m.group(2)))),
    # weekend / workday
    _rule(r"下" + r"(?:[個个])?(?:週末|周末)|\bnext\s+weekend\b",
          lambda m, t: resolve_weekday(SATURDAY, t, 1)),
    _rule(r"(?:本|這|这)?(?:[個个])?(?:週末|周末)|\b(?:this\s+)?weekend\b",
          lambda m, t: resolve_weekday(SATURDAY, t, 0)),
    _rule(r"工作日|\b(?:next\s+)?(?:workday|work\s+day|working\s+day|business\s+day)\b",
          lambda m, t: resolve_workday(t)),
    # weekday + week offset
    _rule(r"下下" + _CN_WEEK + _CN_WD,
          lambda m, t: resolve_weekday(_CN_WEEKDAY[m.group(1)], t, 2)),
    _rule(r"\b(?:the\s+)?" + _EN_WD + r"\s+after\s+next\b",
          lambda m, t: resolve_weekday(_en_weekday(m.group(1)), t, 2)),
    _rule(r"\bnext\s+next\s+" + _EN_WD + r"\b",
          lambda m, t: resolve_weekday(_en_weekday(m.group(1)), t, 2)),
    _rule(r"下(?:一)?" + _CN_WEEK + _CN_WD,
          lambda m, t: resolve_weekday(_CN_WEEKDAY[m.group(1)], t, 1)),
    _rule(r"\bnext\s+" + _EN_WD + r"\b",
          lambda m, t: resolve_weekday(_en_weekday(m.group(1)), t, 1)),
    _rule(r"(?:本|這|这)" + _CN_WEEK + _CN_WD,
          lambda m, t: resolve_weekday(_CN_WEEKDAY[m.group(1)], t, 0)),
    _rule(r"\bthis\s+(?:coming\s+)?" + _EN_WD + r"\b",
          lambda m, t: resolve_weekday(_en_weekday(m.group(1)), t, 0)),
    _rule(r"(?:週|周|星期|禮拜|礼拜)" + _CN_WD,
          lambda m, t: resolve_weekday(_CN_WEEKDAY[m.group(1)], t, 0)),
    _rule(r"\b(?:on\s+)?" + _EN_WD_FULL + r"\b",
          lambda m, t: resolve_weekday(_en_weekday(m.group(1)), t, 0)),
    # numeric month/day
    _rule(r"(\d{1,2})\s*月\s*(\d{1,2})\s*[日號号]?",
          lambda m, t: resolve_month_day(int(m.group(1)), int(m.group(2)), t)),
    _rule(r"(?<![\d/])(\d{1,2})/(\d{1,2})(?![\d/])",
          lambda m, t: resolve_month_day(int(m.group(1)), int(m.group(2)), t)),
    _rule(r"\b" + _EN_MON + r"\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b",
          lambda m, t: resolve_month_day(_en_month(m.group(1)), int(m.group(2)), t)),
    _rule(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?" + _EN_MON + r"\b",
          lambda m, t: resolve_month_day(_en_month(m.group(2)), int(m.group(1)), t)),
    # day of month only
    _rule(r"(?<![\d月])(\d{1,2})\s*[號号日]",
          lambda m, t: resolve_day_of_month(int(m.group(1)), t)),
    _rule(r"\b(?:the\s+)?(\d{1,2})(?:st|nd|rd|th)\b",
          lambda m, t: resolve_day_of_month(int(m.group(1)), t)),
]


def _clean_phrase(value: str) -> str:
  phrase = re.sub(r"\s+", " ", value.strip().lower())
  return phrase.strip(" .,!?;:，。！？；：")


def resolve_relative_date(phrase: Optional[str], today: date) -> Optional[date]:
  """Resolve a whole phrase such as ``"下週三"`` or ``"next friday"``."""
  if not isinstance(phrase, str):
    return None
  text = _clean_phrase(phrase)
  if not text:
    return None
  for pattern, handler in _DATE_RULES:
    match = pattern.fullmatch(text)
    if match:
      resolved = handler(match, today)
      _log_debug(f"[DATES] {phrase!r} -> {resolved}")
      return resolved
  return None


def find_relative_date(text: Optional[str], today: date) -> Optional[date]:
  """First date phrase found anywhere in free text, resolved against ``today``."""
  if not isinstance(text, str) or not text.strip():
    return None
  lowered = text.lower()
  for pattern, handler in _DATE_RULES:
    for match in pattern.finditer(lowered):
      resolved = handler(match, today)
      if resolved is not None:
        _log_debug(f"[DATES] found {match.group(0)!r} -> {resolved}")
        return resolved
  return None


def format_date_string(value: Optional[str], today: date) -> Optional[str]:
  """``YYYY-MM-DD`` for a recognised date phrase; other input is returned as-is."""
  if not isinstance(value, str):
    return None
  cleaned = value.strip()
  if not cleaned:
    return None
  parsed = try_parse_date(cleaned)
  if parsed is not None:
    return parsed.isoformat()
  resolved = resolve_relative_date(cleaned, today)
  if resolved is not None:
    return resolved.isoformat()
  return cleaned


def resolve_natural_datetime(text: Optional[str],
                             reference: datetime,
                             default_time: Optional[TimeOfDay] = None) -> Optional[datetime]:
  """Combine a date phrase and a time-of-day phrase found in free text.

  A date without a time uses ``default_time`` (the reference clock when not
  given); a time without a date is placed today or tomorrow.
  """
  if not isinstance(text, str) or not text.strip():
    return None
  day = find_relative_date(text, reference.date())
  tod = find_time_of_day(text)
  if day is not None and tod is not None:
    return combine(day, tod, reference)
  if day is not None:
    return combine(day, default_time or (reference.hour, reference.minute), reference)
  if tod is not None:
    return infer_date_from_time(tod[0], tod[1], reference)
  return None
