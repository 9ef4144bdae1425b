from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple

from ..config import CATEGORY_DURATION_MINUTES, DEFAULT_DURATION_MINUTES

_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:hours?|hrs?|h\b|小時|小时|個小時|个小时|鐘頭|钟头)",
                       re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+)\s*(?:minutes?|mins?|m\b|分鐘|分钟|分)", re.IGNORECASE)
_HALF_HOUR_RE = re.compile(r"半(?:個|个)?(?:小時|小时|鐘頭|钟头)|half\s+an?\s+hour", re.IGNORECASE)
_HOUR_AND_HALF_RE = re.compile(
    r"(\d+)\s*(?:個|个)?(?:小時|小时|鐘頭|钟头)半"
    r"|(\d+)\s*(?:個|个)?半(?:個|个)?(?:小時|小时|鐘頭|钟头)"
    r"|(\d+)\s+and\s+a\s+half\s+hours?",
    re.IGNORECASE)

_CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("meeting", ("開會", "开会", "會議", "会议", "meeting", "meet", "call", "面談", "面谈")),
    ("meal", ("吃飯", "吃饭", "午餐", "晚餐", "早餐", "聚餐", "lunch", "dinner",
              "breakfast", "brunch", "meal")),
    ("exercise", ("運動", "运动", "健身", "跑步", "瑜伽", "gym", "workout", "run",
                  "yoga", "exercise")),
    ("shopping", ("購物", "购物", "買菜", "买菜", "逛街", "shopping", "groceries")),
    ("study", ("學習", "学习", "讀書", "读书", "上課", "上课", "study", "class",
               "homework", "lesson")),
)


def parse_duration(value: Any) -> timedelta:
  """Duration from ``90``, ``"2 hours"``, ``"1.5h"``, ``"45 minutes"``, ``"半小時"``.

  Bare numbers are minutes. Absent or zero durations give the one-hour default.
  """
  default = timedelta(minutes=DEFAULT_DURATION_MINUTES)
  if value is None or isinstance(value, bool):
    return default
  if isinstance(value, (int, float)):
    return timedelta(minutes=value) if value > 0 else default
  if not isinstance(value, str):
    return default

  text = value.strip()
  if not text:
    return default
  if text.isdigit():
    minutes = int(text)
    return timedelta(minutes=minutes) if minutes > 0 else default

  total = timedelta()
  hour_and_half = _HOUR_AND_HALF_RE.search(text)
  if hour_and_half:
    hours = int(next(g for g in hour_and_half.groups() if g))
    total += timedelta(hours=hours, minutes=30)
  elif _HALF_HOUR_RE.search(text):
    total += timedelta(minutes=30)
  else:
    hours_match = _HOURS_RE.search(text)
    if hours_match:
      total += timedelta(hours=float(hours_match.group(1)))
  minutes_match = _MINUTES_RE.search(text)
  if minutes_match:
    total += timedelta(minutes=int(minutes_match.group(1)))

  if total <= timedelta():
    return default
  return total


def category_of(text: Optional[str]) -> str:
  lowered = (text or "").lower()
  for category, keywords in _CATEGORY_KEYWORDS:
    for keyword in keywords:
      if keyword.isascii():
        if re.search(rf"\b{re.escape(keyword)}\b", lowered):
          return category
      elif keyword in lowered:
        return category
  return "other"


def category_duration(text: Optional[str]) -> timedelta:
  minutes = CATEGORY_DURATION_MINUTES.get(category_of(text), DEFAULT_DURATION_MINUTES)
  return timedelta(minutes=minutes)


def infer_end_time(start: datetime,
                   end: Optional[datetime],
                   duration: Any = None) -> datetime:
  """Keep an end that is after ``start``; otherwise derive it from the duration."""
  if end is not None and end > start:
    return end
  if duration is not None:
    return start + parse_duration(duration)
  return start + timedelta(minutes=DEFAULT_DURATION_MINUTES)
