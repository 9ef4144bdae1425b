from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ..config import CANONICAL_DATETIME_RE, ISO_NAIVE_DATETIME_RE
from ..utils import _log_debug

logger = logging.getLogger(__name__)

TimeOfDay = Tuple[int, int]

_CN_DIGITS = {
    "零": 0, "〇": 0, "一": 1, "二": 2, "兩": 2, "两": 2, "三": 3, "四": 4,
    "五": 5, "六": 6, "七": 7, "八": 8, "九": 9,
}
_CN_NUM = r"\d{1,2}|[零〇一二兩两三四五六七八九十]{1,3}"

_EVENING_WORDS = {"下午", "晚上", "傍晚", "今晚", "afternoon", "evening", "night",
                  "tonight", "pm", "p.m."}
_MORNING_WORDS = {"上午", "早上", "早晨", "凌晨", "morning", "dawn", "am", "a.m."}
_NOON_WORDS = {"中午", "noon", "midday"}


def _cn_to_int(token: Optional[str]) -> Optional[int]:
  if token is None:
    return None
  token = token.strip()
  if not token:
    return None
  if token.isdigit():
    return int(token)
  if "十" in token:
    left, _, right = token.partition("十")
    if left and left not in _CN_DIGITS:
      return None
    if right and right not in _CN_DIGITS:
      return None
    tens = _CN_DIGITS[left] if left else 1
    ones = _CN_DIGITS[right] if right else 0
    return tens * 10 + ones
  if len(token) == 1:
    return _CN_DIGITS.get(token)
  return None


def _apply_period(hour: int, period: Optional[str]) -> int:
  if not period:
    return hour
  word = period.strip().lower()
  if word in _EVENING_WORDS:
    return hour + 12 if hour < 12 else hour
  if word in _MORNING_WORDS:
    return 0 if hour == 12 else hour
  if word in _NOON_WORDS:
    return 12
  return hour


def _in_range(tod: Optional[TimeOfDay]) -> bool:
  if tod is None:
    return False
  hour, minute = tod
  return 0 <= hour <= 23 and 0 <= minute <= 59


# -------------------------
# 시각(time-of-day) 규칙
# -------------------------
def _tod_24h(m: re.Match) -> Optional[TimeOfDay]:
  return int(m.group("h")), int(m.group("m"))


def _tod_ampm(m: re.Match) -> Optional[TimeOfDay]:
  hour = int(m.group("h"))
  minute = int(m.group("m") or 0)
  if hour > 12:
    return None
  return _apply_period(hour, m.group("p").replace(".", "")), minute


def _tod_cn_period(m: re.Match) -> Optional[TimeOfDay]:
  hour = _cn_to_int(m.group("h"))
  if hour is None:
    return None
  marker = m.group("mm")
  if marker in (None, "整"):
    minute = 0
  elif marker == "半":
    minute = 30
  else:
    minute = _cn_to_int(marker.rstrip("分").strip())
    if minute is None:
      return None
  return _apply_period(hour, m.group("p")), minute


def _tod_en_leading(m: re.Match) -> Optional[TimeOfDay]:
  hour = int(m.group("h"))
  if m.group("m"):
    minute = int(m.group("m"))
  elif m.group("half"):
    minute = 30
  else:
    minute = 0
  return _apply_period(hour, m.group("p")), minute


def _tod_en_trailing(m: re.Match) -> Optional[TimeOfDay]:
  hour = int(m.group("h"))
  minute = int(m.group("m") or 0)
  return _apply_period(hour, m.group("p")), minute


def _tod_half_past(m: re.Match) -> Optional[TimeOfDay]:
  return int(m.group("h")), 30


def _tod_named(m: re.Match) -> Optional[TimeOfDay]:
  word = m.group("w")
  if word == "midnight":
    return 0, 0
  return 12, 0


def _tod_digits(m: re.Match) -> Optional[TimeOfDay]:
  padded = m.group("d").zfill(4)
  return int(padded[:2]), int(padded[2:])


_P_24H = r"(?<![\d:])(?P<h>\d{1,2}):(?P<m>\d{2})(?::\d{2})?(?![\d:])"
_P_AMPM = r"(?<![\d:])(?P<h>\d{1,2})(?::(?P<m>\d{2}))?\s*(?P<p>a\.m\.|p\.m\.|am|pm)(?![a-z])"
_P_CN = (r"(?P<p>上午|下午|晚上|凌晨|早上|早晨|中午|傍晚|今晚)?\s*"
         rf"(?P<h>{_CN_NUM})\s*[點点時时]"
         rf"(?:\s*(?P<mm>半|整|30分|(?:{_CN_NUM})\s*分?))?")
_P_EN_LEADING = (r"\b(?P<p>morning|afternoon|evening|night|dawn|noon)\s+"
                 r"(?P<h>\d{1,2})(?::(?P<m>\d{2})|\s+(?P<half>half|thirty))?\b")
_P_EN_TRAILING = (r"(?<![\d:])(?P<h>\d{1,2})(?::(?P<m>\d{2}))?\s*(?:o'?clock\s*)?"
                  r"\s(?:in\s+the\s+|at\s+)(?P<p>morning|afternoon|evening|night)\b")
_P_HALF_PAST = r"\bhalf\s+past\s+(?P<h>\d{1,2})\b"
_P_NAMED = r"\b(?P<w>noon|midday|midnight)\b"
_P_DIGITS = r"(?P<d>\d{3,4})"

TodRule = Tuple[re.Pattern[str], Callable[[re.Match], Optional[TimeOfDay]]]


def _anchored(body: str) -> re.Pattern[str]:
  return re.compile(rf"^(?:{body})$", re.IGNORECASE)


# 전체 문자열 매칭 순서: 24h → 12h → 자연어 → 숫자
_TIME_OF_DAY_RULES: List[TodRule] = [
    (_anchored(_P_24H), _tod_24h),
    (_anchored(_P_AMPM), _tod_ampm),
    (_anchored(_P_CN), _tod_cn_period),
    (_anchored(_P_EN_LEADING), _tod_en_leading),
    (_anchored(_P_EN_TRAILING), _tod_en_trailing),
    (_anchored(_P_HALF_PAST), _tod_half_past),
    (_anchored(_P_NAMED), _tod_named),
    (_anchored(_P_DIGITS), _tod_digits),
]

# Scanning free text: period-bearing rules first, no bare numerals.
_TIME_OF_DAY_SCAN_RULES: List[TodRule] = [
    (re.compile(_P_AMPM, re.IGNORECASE), _tod_ampm),
    (re.compile(_P_CN), _tod_cn_period),
    (re.compile(_P_EN_TRAILING, re.IGNORECASE), _tod_en_trailing),
    (re.compile(_P_EN_LEADING, re.IGNORECASE), _tod_en_leading),
    (re.compile(_P_HALF_PAST, re.IGNORECASE), _tod_half_past),
    (re.compile(_P_24H), _tod_24h),
    (re.compile(_P_NAMED, re.IGNORECASE), _tod_named),
]

_CLOCK_RE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})")


def _first_time_of_day(text: str, rules: List[TodRule], scan: bool) -> Optional[TimeOfDay]:
  for pattern, handler in rules:
    matches = pattern.finditer(text) if scan else [pattern.match(text)]
    for match in matches:
      if match is None:
        continue
      try:
        tod = handler(match)
      except Exception as exc:
        logger.warning("Time rule %s failed on %r: %s", pattern.pattern, text, exc)
        continue
      if _in_range(tod):
        return tod
      _log_debug(f"[TEMPORAL] rejected out-of-range {tod} from {text!r}")
  return None


def parse_time_of_day(value: Optional[str]) -> Optional[TimeOfDay]:
  """Whole-string time-of-day match: ``"14:30"``, ``"下午3點半"``, ``"1430"``."""
  if not isinstance(value, str):
    return None
  text = re.sub(r"\s*:\s*", ":", value.strip())
  if not text:
    return None
  return _first_time_of_day(text, _TIME_OF_DAY_RULES, scan=False)


def find_time_of_day(text: Optional[str]) -> Optional[TimeOfDay]:
  """First time-of-day mentioned anywhere in free text."""
  if not isinstance(text, str) or not text.strip():
    return None
  return _first_time_of_day(text, _TIME_OF_DAY_SCAN_RULES, scan=True)


def extract_clock(value: Optional[str]) -> Optional[TimeOfDay]:
  """First ``H:MM`` inside a string, e.g. the clock part of a broken timestamp."""
  if not isinstance(value, str):
    return None
  for match in _CLOCK_RE.finditer(value):
    tod = (int(match.group(1)), int(match.group(2)))
    if _in_range(tod):
      return tod
  return None


# -------------------------
# 날짜+시각 규칙
# -------------------------
def _from_datetime_groups(m: re.Match, reference: datetime) -> datetime:
  year, month, day, hour, minute, second = (int(g) for g in m.groups()[:6])
  return datetime(year, month, day, hour, minute, second,
                  tzinfo=reference.tzinfo)


def _from_iso_generic(text: str, reference: datetime) -> Optional[datetime]:
  candidate = text.replace(" ", "T", 1)
  if candidate.endswith("Z") or candidate.endswith("z"):
    candidate = candidate[:-1] + "+00:00"
  if not re.match(r"^\d{4}-?\d{2}-?\d{2}", candidate):
    return None
  try:
    parsed = datetime.fromisoformat(candidate)
  except ValueError:
    return None
  if parsed.tzinfo is None:
    return parsed.replace(tzinfo=reference.tzinfo)
  if reference.tzinfo is not None:
    return parsed.astimezone(reference.tzinfo)
  return parsed


_OFFSET_TAIL_RE = re.compile(r"^(?:\.\d+|[Zz]|[+-]\d{2})")

_DATETIME_RULES = [
    (CANONICAL_DATETIME_RE, "search"),
    (ISO_NAIVE_DATETIME_RE, "match"),
]


def parse_time(value: Optional[str], reference: datetime) -> Optional[datetime]:
  """Resolve one date/time string to an absolute time, or ``None``.

  Rules are tried in order and the first accepted match wins: exact
  ``YYYY-MM-DD HH:mm:ss``, naive ISO ``YYYY-MM-DDTHH:mm:ss``, generic ISO
  (with offset, converted to the reference zone), then bare time-of-day
  patterns placed on the reference date.
  """
  if not isinstance(value, str) or not value.strip():
    return None
  text = re.sub(r"\s*:\s*", ":", value.strip())

  for pattern, mode in _DATETIME_RULES:
    match = pattern.search(text) if mode == "search" else pattern.match(text)
    if not match:
      continue
    if _OFFSET_TAIL_RE.match(text[match.end():]):
      # fractional seconds or an explicit offset: leave it to the ISO rule
      break
    try:
      return _from_datetime_groups(match, reference)
    except ValueError as exc:
      _log_debug(f"[TEMPORAL] rejected {text!r}: {exc}")

  parsed = _from_iso_generic(text, reference)
  if parsed is not None:
    return parsed

  tod = parse_time_of_day(text)
  if tod is not None:
    hour, minute = tod
    return reference.replace(hour=hour, minute=minute, second=0, microsecond=0)

  logger.info("Could not parse time string: %r", value)
  return None


def infer_date_from_time(hour: int, minute: int, reference: datetime) -> datetime:
  """Today at ``hour:minute``, or tomorrow if that moment has already passed."""
  target = hour * 60 + minute
  current = reference.hour * 60 + reference.minute
  day = reference.date()
  if target <= current:
    day = day + timedelta(days=1)
  return combine(day, (hour, minute), reference)


def combine(day: date, tod: TimeOfDay, reference: datetime) -> datetime:
  return datetime(day.year, day.month, day.day, tod[0], tod[1],
                  tzinfo=reference.tzinfo)


def format_datetime(value: datetime) -> str:
  return value.strftime("%Y-%m-%d %H:%M:%S")
