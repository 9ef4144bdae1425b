from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from ..config import DEFAULT_TIMEZONE, MAX_CANDIDATES
from ..utils import _clean_str
from .schemas import ReasonCode, StageOutcome

logger = logging.getLogger(__name__)

_KEY_FOLD_RE = re.compile(r"[\s_\-]+")

# (aliases, canonical key). Aliases are compared after case/separator folding.
_KEY_ALIASES: List[Tuple[Tuple[str, ...], str]] = [
    (("title", "event", "eventname", "name", "summary", "subject",
      "標題", "标题", "事件", "名稱", "名称"), "title"),
    (("starttime", "start", "begin", "startdatetime", "startat",
      "開始時間", "开始时间"), "startTime"),
    (("endtime", "end", "finish", "enddatetime", "endat",
      "結束時間", "结束时间"), "endTime"),
    (("description", "desc", "details", "detail", "notes", "note",
      "描述", "備註", "备注", "說明", "说明"), "description"),
    (("location", "place", "venue", "address", "地點", "地点"), "location"),
    (("duration", "durationminutes", "length", "時長", "时长"), "duration"),
    (("startdate", "date", "day", "日期"), "startDate"),
    (("time", "clock", "時間", "时间"), "startClock"),
    (("recurrencerule", "recurrence", "rrule", "repeat", "repeatrule"),
     "recurrenceRule"),
    (("isrecurring", "recurring", "repeating"), "isRecurring"),
    (("recurringpattern", "recurrencepattern", "frequencytext",
      "重複", "重复"), "recurringPattern"),
    (("confidence", "score"), "confidence"),
]

_ALIAS_LOOKUP: Dict[str, str] = {
    alias: canonical for aliases, canonical in _KEY_ALIASES for alias in aliases
}

CANONICAL_KEYS = frozenset(canonical for _, canonical in _KEY_ALIASES)

_LIST_WRAPPER_KEYS = ("events", "items", "schedule", "schedules", "data")
_SINGULAR_WRAPPER_KEYS = ("event", "item")


def _fold_key(key: str) -> str:
  return _KEY_FOLD_RE.sub("", key).lower()


def normalize_keys(candidate: Dict[str, Any]) -> Dict[str, Any]:
  """Map alias keys onto canonical names; unknown keys pass through.

  A canonical key already present is never overwritten by an alias.
  """
  normalized: Dict[str, Any] = {}
  aliased: Dict[str, Any] = {}
  for key, value in candidate.items():
    if not isinstance(key, str):
      continue
    canonical = _ALIAS_LOOKUP.get(_fold_key(key))
    if canonical is None:
      normalized[key] = value
    elif key == canonical:
      normalized[canonical] = value
    elif canonical not in aliased:
      aliased[canonical] = value
  for canonical, value in aliased.items():
    normalized.setdefault(canonical, value)
  return normalized


def _looks_like_event(obj: Dict[str, Any]) -> bool:
  folded = {_ALIAS_LOOKUP.get(_fold_key(k)) for k in obj if isinstance(k, str)}
  return "title" in folded and bool({"startTime", "startDate", "startClock"} & folded)


def lift_candidates(payload: Any) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
  """Return ``(candidates, envelope_meta)`` from a parsed payload.

  Accepts a bare list, a list under a wrapper key, a singular ``event``
  wrapper object, or one event-shaped object.
  """
  if isinstance(payload, list):
    raw_items: List[Any] = payload
    meta: Dict[str, Any] = {}
  elif isinstance(payload, dict):
    meta = {k: v for k, v in payload.items() if isinstance(k, str)}
    raw_items = []
    for key in _LIST_WRAPPER_KEYS:
      value = payload.get(key)
      if isinstance(value, list):
        raw_items = value
        meta.pop(key, None)
        break
      if isinstance(value, dict) and key != "data":
        raw_items = [value]
        meta.pop(key, None)
        break
    else:
      for key in _SINGULAR_WRAPPER_KEYS:
        value = payload.get(key)
        if isinstance(value, dict):
          raw_items = [value]
          meta.pop(key, None)
          break
        if isinstance(value, list):
          raw_items = value
          meta.pop(key, None)
          break
      else:
        if _looks_like_event(payload):
          raw_items = [payload]
          meta = {}
  else:
    return [], {}

  candidates = [item for item in raw_items if isinstance(item, dict)]
  if len(candidates) > MAX_CANDIDATES:
    logger.warning("Truncating %d candidates to %d", len(candidates),
                   MAX_CANDIDATES)
    candidates = candidates[:MAX_CANDIDATES]
  return candidates, meta


def normalize_candidate(candidate: Dict[str, Any]) -> StageOutcome:
  """Normalize one candidate; reject it only when title or start is missing."""
  event = normalize_keys(candidate)

  title = event.get("title")
  if isinstance(title, (int, float)) and not isinstance(title, bool):
    title = str(title)
  title = _clean_str(title)
  if not title:
    return StageOutcome.failure(ReasonCode.MISSING_TITLE, value=event)
  event["title"] = title

  has_start = any(
      _clean_str(event.get(key))
      for key in ("startTime", "startDate", "startClock"))
  if not has_start:
    return StageOutcome.failure(ReasonCode.MISSING_START,
                                detail=title,
                                value=event)
  return StageOutcome.success(event)


def resolve_timezone(requested_timezone: Optional[str]) -> str:
  for candidate in (requested_timezone, DEFAULT_TIMEZONE):
    if not isinstance(candidate, str):
      continue
    cleaned = candidate.strip()
    if not cleaned:
      continue
    try:
      ZoneInfo(cleaned)
      return cleaned
    except Exception:
      continue
  return DEFAULT_TIMEZONE
