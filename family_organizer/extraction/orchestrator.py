from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .. import recurrence
from ..config import (
    DEFAULT_EVENT_CONFIDENCE,
    DEFAULT_SIBLING_CONFIDENCE,
    ENVELOPE_NO_JSON_CONFIDENCE,
    ENVELOPE_PARSE_ERROR_CONFIDENCE,
    FALLBACK_EMPTY_CONFIDENCE,
    FALLBACK_NO_JSON_CONFIDENCE,
    FALLBACK_PARSE_ERROR_CONFIDENCE,
    ISO_DATE_RE,
    MAX_OVERNIGHT_END_HOURS,
    MIN_FALLBACK_INPUT_CHARS,
    VALIDATABLE_DATETIME_RE,
)
from ..models import (
    Expense,
    MealRecord,
    NormalizedEvent,
    Nutrition,
    RecurrenceRule,
    ResultEnvelope,
    TodoItem,
)
from ..utils import (
    _clean_confidence,
    _clean_float,
    _clean_str,
    _log_debug,
    coerce_reference,
    generate_record_id,
    try_parse_date,
)
from .duration import infer_end_time
from .fallback import extract_basic_event
from .normalizer import CANONICAL_KEYS, lift_candidates, normalize_candidate
from .relative_dates import find_relative_date, format_date_string, resolve_relative_date
from .schemas import PipelineState, ReasonCode, StageOutcome, summarize_reasons
from .temporal import (
    combine,
    extract_clock,
    find_time_of_day,
    infer_date_from_time,
    parse_time,
    parse_time_of_day,
)
from .unwrapper import parse_candidate_payload, unwrap_response
from .validator import validate_datetime_string, validate_distance

logger = logging.getLogger(__name__)

# (record confidence, envelope confidence) per fallback trigger
_FALLBACK_CONFIDENCE = {
    ReasonCode.NO_JSON: (FALLBACK_NO_JSON_CONFIDENCE, ENVELOPE_NO_JSON_CONFIDENCE),
    ReasonCode.EMPTY_EXTRACTION: (FALLBACK_EMPTY_CONFIDENCE, ENVELOPE_NO_JSON_CONFIDENCE),
    ReasonCode.PARSE_ERROR: (FALLBACK_PARSE_ERROR_CONFIDENCE, ENVELOPE_PARSE_ERROR_CONFIDENCE),
    ReasonCode.INTERNAL_ERROR: (FALLBACK_PARSE_ERROR_CONFIDENCE, ENVELOPE_PARSE_ERROR_CONFIDENCE),
}

# Keys consumed by the assembler; everything else is carried on the event.
_RESERVED_KEYS = CANONICAL_KEYS | {
    "id", "start_time", "end_time", "is_recurring", "recurring_pattern",
    "recurrence_rule",
}

_TRUE_STRINGS = {"true", "yes", "y", "1", "是", "對", "对"}


def _truthy(value: Any) -> bool:
  if isinstance(value, bool):
    return value
  if isinstance(value, (int, float)):
    return value != 0
  if isinstance(value, str):
    return value.strip().lower() in _TRUE_STRINGS
  return False


def _as_text(value: Any) -> Optional[str]:
  if isinstance(value, (int, float)) and not isinstance(value, bool):
    return str(value)
  return _clean_str(value)


def _pick(item: Dict[str, Any], *keys: str) -> Any:
  for key in keys:
    value = item.get(key)
    if value is not None and value != "":
      return value
  return None


# -------------------------
# 시작 시각 해석
# -------------------------
def _repair_start(raw: str, reference: datetime) -> Optional[datetime]:
  """Second chance for a start that did not validate.

  A date phrase in the string is kept when it lands inside the allowed
  window; otherwise only the clock time survives and the date is inferred.
  """
  clock = find_time_of_day(raw) or extract_clock(raw)
  day = find_relative_date(raw, reference.date())
  if day is not None:
    candidate = combine(day, clock or (reference.hour, reference.minute), reference)
    if validate_distance(candidate, reference).ok:
      return candidate
  if clock is not None:
    return infer_date_from_time(clock[0], clock[1], reference)
  return None


def _resolve_date_field(value: Any, reference: datetime) -> Optional[date]:
  text = _as_text(value)
  if text is None:
    return None
  return try_parse_date(text) or resolve_relative_date(text, reference.date())


def _resolve_start(event: Dict[str, Any], reference: datetime) -> StageOutcome:
  raw = _as_text(event.get("startTime"))
  day = _resolve_date_field(event.get("startDate"), reference)
  clock_text = _as_text(event.get("startClock"))

  if raw is None:
    # separate date / time fields
    tod = parse_time_of_day(clock_text) if clock_text else None
    if day is not None:
      return validate_distance(
          combine(day, tod or (reference.hour, reference.minute), reference),
          reference)
    if tod is not None:
      return StageOutcome.success(infer_date_from_time(tod[0], tod[1], reference))
    return StageOutcome.failure(ReasonCode.UNRESOLVED,
                                f"startDate={event.get('startDate')!r} startClock={clock_text!r}")

  tod = parse_time_of_day(raw)
  if tod is not None:
    if day is not None:
      return validate_distance(combine(day, tod, reference), reference)
    return StageOutcome.success(infer_date_from_time(tod[0], tod[1], reference))

  if VALIDATABLE_DATETIME_RE.match(raw):
    outcome = validate_datetime_string(raw, reference)
  else:
    parsed = parse_time(raw, reference)
    if parsed is not None:
      outcome = validate_distance(parsed, reference)
    else:
      outcome = StageOutcome.failure(ReasonCode.UNRESOLVED, raw)
  if outcome.ok:
    return outcome

  _log_debug(f"[ASSEMBLE] start {raw!r} rejected ({outcome.describe()}), repairing")
  repaired = _repair_start(raw, reference)
  if repaired is None:
    return outcome
  checked = validate_distance(repaired, reference)
  if checked.ok:
    logger.info("Repaired start time %r -> %s", raw, repaired)
  return checked


def _resolve_end(event: Dict[str, Any], start: datetime,
                 reference: datetime) -> Optional[datetime]:
  raw = _as_text(event.get("endTime"))
  if raw is None:
    return None

  tod = parse_time_of_day(raw)
  if tod is not None:
    # a bare clock time is read relative to the start; rolling it past
    # midnight is only kept for a short overnight span
    end = infer_date_from_time(tod[0], tod[1], start)
    if (end.date() != start.date()
        and end - start > timedelta(hours=MAX_OVERNIGHT_END_HOURS)):
      logger.info("Discarding end time %r: %s", raw,
                  ReasonCode.END_NOT_AFTER_START.value)
      return None
    return end

  if VALIDATABLE_DATETIME_RE.match(raw):
    outcome = validate_datetime_string(raw, reference)
  else:
    parsed = parse_time(raw, reference)
    outcome = (validate_distance(parsed, reference) if parsed is not None else
               StageOutcome.failure(ReasonCode.UNRESOLVED, raw))
  if not outcome.ok:
    logger.info("Discarding end time %r: %s", raw, outcome.describe())
    return None
  if outcome.value <= start:
    logger.info("Discarding end time %r: %s", raw,
                ReasonCode.END_NOT_AFTER_START.value)
    return None
  return outcome.value


def _resolve_recurrence(event: Dict[str, Any],
                        reference: datetime) -> Tuple[Optional[RecurrenceRule], bool, str]:
  pattern = _clean_str(event.get("recurringPattern")) or ""
  flagged = _truthy(event.get("isRecurring"))

  rule: Optional[RecurrenceRule] = None
  source = event.get("recurrenceRule")
  if source is None and flagged and pattern:
    source = pattern
  if source is not None:
    outcome = recurrence.normalize_recurrence(source, reference)
    if outcome.ok:
      rule = outcome.value
    else:
      _log_debug(f"[ASSEMBLE] recurrence dropped: {outcome.describe()}")

  if rule is not None and not pattern:
    pattern = recurrence.describe_recurrence(rule)
  return rule, flagged or rule is not None, pattern


def _build_event(candidate: Dict[str, Any],
                 reference: datetime,
                 default_confidence: float) -> StageOutcome:
  normalized = normalize_candidate(candidate)
  if not normalized.ok:
    return normalized
  event: Dict[str, Any] = normalized.value

  start_outcome = _resolve_start(event, reference)
  if not start_outcome.ok:
    return start_outcome
  start: datetime = start_outcome.value

  end = infer_end_time(start, _resolve_end(event, start, reference),
                       event.get("duration"))
  rule, is_recurring, pattern = _resolve_recurrence(event, reference)

  confidence = _clean_confidence(event.get("confidence"))
  extras = {k: v for k, v in event.items() if k not in _RESERVED_KEYS}
  try:
    record = NormalizedEvent(id=generate_record_id("event"),
                             title=event["title"],
                             description=_as_text(event.get("description")),
                             location=_as_text(event.get("location")),
                             start_time=start,
                             end_time=end,
                             is_recurring=is_recurring,
                             recurring_pattern=pattern,
                             recurrence_rule=rule,
                             confidence=default_confidence if confidence is None else confidence,
                             **extras)
  except (ValidationError, TypeError) as exc:
    return StageOutcome.failure(ReasonCode.INVALID_RECORD, str(exc))
  return StageOutcome.success(record)


# -------------------------
# 폴백
# -------------------------
def _fallback_envelope(reason: ReasonCode,
                       raw_text: str,
                       reference: datetime,
                       user_input: Optional[str],
                       drops: Optional[Counter] = None,
                       detail: Optional[str] = None) -> ResultEnvelope[NormalizedEvent]:
  record_conf, envelope_conf = _FALLBACK_CONFIDENCE[reason]
  text = _clean_str(user_input) or raw_text
  record = extract_basic_event(text, reference, record_conf)
  logger.info("Fallback extraction (%s) produced %d record(s)", reason.value,
              1 if record else 0)

  summary = f"fallback: {reason.value}"
  if detail:
    summary += f": {detail}"
  if drops:
    summary += f" (dropped: {summarize_reasons(drops)})"
  return ResultEnvelope[NormalizedEvent](records=[record] if record else [],
                                         summary=summary,
                                         confidence=envelope_conf,
                                         raw_response=raw_text,
                                         user_input=user_input)


def _is_substantial(text: Optional[str]) -> bool:
  return len("".join((text or "").split())) >= MIN_FALLBACK_INPUT_CHARS


def resolve_temporal_extraction(raw: Optional[str],
                                reference: Optional[datetime] = None,
                                user_input: Optional[str] = None) -> ResultEnvelope[NormalizedEvent]:
  """Turn a raw model response into validated calendar events.

  Never raises. When the response holds no usable JSON, or every extracted
  record is unusable, a single lower-confidence event is recovered from the
  user text instead.
  """
  reference = coerce_reference(reference)
  raw_text = raw if isinstance(raw, str) else ""
  state = PipelineState.UNWRAPPING

  try:
    unwrapped = unwrap_response(raw_text)
    if not unwrapped.ok:
      state = PipelineState.FALLBACK
      return _fallback_envelope(ReasonCode.NO_JSON, raw_text, reference, user_input)
    parsed = parse_candidate_payload(unwrapped.value)
    if not parsed.ok:
      state = PipelineState.FALLBACK
      return _fallback_envelope(ReasonCode.PARSE_ERROR, raw_text, reference, user_input,
                                detail=parsed.detail)

    state = PipelineState.NORMALIZING
    candidates, meta = lift_candidates(parsed.value)
    _log_debug(f"[ASSEMBLE] {len(candidates)} candidate(s)")

    envelope_conf = _clean_confidence(meta.get("confidence"))
    if envelope_conf is None:
      envelope_conf = DEFAULT_EVENT_CONFIDENCE

    state = PipelineState.RESOLVING_TIMES
    outcomes = [_build_event(c, reference, envelope_conf) for c in candidates]

    state = PipelineState.VALIDATING
    drops: Counter = Counter()
    events: List[NormalizedEvent] = []
    for outcome in outcomes:
      if outcome.ok:
        events.append(outcome.value)
      else:
        drops[outcome.reason] += 1
        logger.warning("Dropped extracted event: %s", outcome.describe())
    if candidates and not events and _is_substantial(user_input):
      state = PipelineState.FALLBACK
      return _fallback_envelope(ReasonCode.EMPTY_EXTRACTION, raw_text, reference,
                                user_input, drops)

    state = PipelineState.ASSEMBLING
    summary = _clean_str(meta.get("summary")) or f"{len(events)} event(s) extracted"
    if drops:
      summary += f" (dropped: {summarize_reasons(drops)})"
    state = PipelineState.DONE
    return ResultEnvelope[NormalizedEvent](records=events,
                                           summary=summary,
                                           confidence=envelope_conf,
                                           raw_response=raw_text,
                                           user_input=user_input)
  except Exception:
    logger.exception("Event extraction failed in state %s", state.value)
    try:
      return _fallback_envelope(ReasonCode.INTERNAL_ERROR, raw_text, reference, user_input)
    except Exception:
      logger.exception("Fallback extraction failed")
      return ResultEnvelope[NormalizedEvent](records=[],
                                             summary=f"fallback: {ReasonCode.INTERNAL_ERROR.value}",
                                             confidence=ENVELOPE_PARSE_ERROR_CONFIDENCE,
                                             raw_response=raw_text,
                                             user_input=user_input)


# -------------------------
# 지출 / 할 일 / 식사
# -------------------------
def _lift_records(payload: Any, list_keys: Iterable[str],
                  marker_keys: Iterable[str]) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
  if isinstance(payload, list):
    return [item for item in payload if isinstance(item, dict)], {}
  if not isinstance(payload, dict):
    return [], {}
  for key in list_keys:
    value = payload.get(key)
    if isinstance(value, list):
      meta = {k: v for k, v in payload.items() if k != key}
      return [item for item in value if isinstance(item, dict)], meta
    if isinstance(value, dict):
      meta = {k: v for k, v in payload.items() if k != key}
      return [value], meta
  if any(key in payload for key in marker_keys):
    return [payload], {}
  return [], payload


def _resolve_records(kind: str,
                     record_type: type,
                     raw: Optional[str],
                     reference: Optional[datetime],
                     user_input: Optional[str],
                     list_keys: Tuple[str, ...],
                     marker_keys: Tuple[str, ...],
                     build: Callable[[Dict[str, Any], datetime, float], StageOutcome]) -> ResultEnvelope:
  envelope_type = ResultEnvelope[record_type]
  reference = coerce_reference(reference)
  raw_text = raw if isinstance(raw, str) else ""

  outcome = unwrap_response(raw_text)
  if outcome.ok:
    outcome = parse_candidate_payload(outcome.value)
  if not outcome.ok:
    logger.warning("No %s records: %s", kind, outcome.describe())
    return envelope_type(records=[],
                         summary=outcome.describe(),
                         confidence=ENVELOPE_PARSE_ERROR_CONFIDENCE,
                         raw_response=raw_text,
                         user_input=user_input)

  items, meta = _lift_records(outcome.value, list_keys, marker_keys)
  envelope_conf = _clean_confidence(meta.get("confidence"))
  if envelope_conf is None:
    envelope_conf = DEFAULT_SIBLING_CONFIDENCE

  records: List[Any] = []
  drops: Counter = Counter()
  for item in items:
    try:
      built = build(item, reference, envelope_conf)
    except (ValidationError, TypeError, ValueError) as exc:
      built = StageOutcome.failure(ReasonCode.INVALID_RECORD, str(exc))
    if built.ok:
      records.append(built.value)
    else:
      drops[built.reason] += 1
      logger.warning("Dropped %s record: %s", kind, built.describe())

  summary = _clean_str(meta.get("summary")) or f"{len(records)} {kind}(s) extracted"
  if drops:
    summary += f" (dropped: {summarize_reasons(drops)})"
  return envelope_type(records=records,
                       summary=summary,
                       confidence=envelope_conf,
                       raw_response=raw_text,
                       user_input=user_input)


def _record_confidence(item: Dict[str, Any], default: float) -> float:
  confidence = _clean_confidence(item.get("confidence"))
  return default if confidence is None else confidence


def _record_date(value: Any, reference: datetime) -> str:
  text = _as_text(value)
  if text:
    formatted = format_date_string(text, reference.date())
    if formatted and ISO_DATE_RE.match(formatted):
      return formatted
  return reference.date().isoformat()


_INCOME_WORDS = {"income", "收入", "revenue", "salary", "薪水", "薪資", "薪资"}


def _build_expense(item: Dict[str, Any], reference: datetime,
                   default_confidence: float) -> StageOutcome:
  amount = _clean_float(_pick(item, "amount", "price", "cost", "total", "value",
                              "金額", "金额"))
  if amount is None or amount == 0:
    return StageOutcome.failure(ReasonCode.INVALID_RECORD,
                                f"amount {item.get('amount')!r}")
  kind = (_clean_str(item.get("type")) or "").lower()
  record = Expense(id=generate_record_id("expense"),
                   amount=abs(amount),
                   category=_clean_str(_pick(item, "category", "類別", "类别")) or "other",
                   description=_as_text(_pick(item, "description", "desc", "note",
                                              "item", "name", "title")),
                   date=_record_date(_pick(item, "date", "日期"), reference),
                   type="income" if kind in _INCOME_WORDS else "expense",
                   confidence=_record_confidence(item, default_confidence))
  return StageOutcome.success(record)


def resolve_expense_extraction(raw: Optional[str],
                               reference: Optional[datetime] = None,
                               user_input: Optional[str] = None) -> ResultEnvelope[Expense]:
  return _resolve_records("expense", Expense, raw, reference, user_input,
                          ("expenses", "items", "records", "data"),
                          ("amount", "price", "cost"),
                          _build_expense)


_PRIORITY_ALIASES = {
    "high": "high", "urgent": "high", "h": "high", "高": "high", "緊急": "high", "紧急": "high",
    "medium": "medium", "normal": "medium", "m": "medium", "中": "medium",
    "low": "low", "l": "low", "低": "low",
}
_HIGH_PRIORITY_WORDS = ("urgent", "asap", "important", "緊急", "紧急", "重要", "急",
                        "馬上", "马上", "立刻")
_LOW_PRIORITY_WORDS = ("whenever", "someday", "not urgent", "不急", "有空再", "慢慢")


def infer_priority(text: Optional[str]) -> str:
  lowered = (text or "").lower()
  # "不急" contains "急": low markers win
  if any(word in lowered for word in _LOW_PRIORITY_WORDS):
    return "low"
  if any(word in lowered for word in _HIGH_PRIORITY_WORDS):
    return "high"
  return "medium"


def _build_todo(item: Dict[str, Any], reference: datetime,
                default_confidence: float) -> StageOutcome:
  title = _as_text(_pick(item, "title", "task", "name", "content", "todo", "標題", "标题"))
  if not title:
    return StageOutcome.failure(ReasonCode.MISSING_TITLE)
  description = _as_text(_pick(item, "description", "desc", "details", "note"))

  raw_priority = (_clean_str(item.get("priority")) or "").lower()
  priority = _PRIORITY_ALIASES.get(raw_priority) or infer_priority(
      f"{title} {description or ''}")

  due = _as_text(_pick(item, "dueDate", "due_date", "due", "deadline", "date"))
  record = TodoItem(title=title,
                    description=description,
                    priority=priority,
                    due_date=format_date_string(due, reference.date()) if due else None,
                    confidence=_record_confidence(item, default_confidence))
  return StageOutcome.success(record)


def resolve_todo_extraction(raw: Optional[str],
                            reference: Optional[datetime] = None,
                            user_input: Optional[str] = None) -> ResultEnvelope[TodoItem]:
  return _resolve_records("todo", TodoItem, raw, reference, user_input,
                          ("todos", "tasks", "items", "data"),
                          ("title", "task"),
                          _build_todo)


_MEAL_TYPES = {
    "breakfast": "breakfast", "早餐": "breakfast", "早飯": "breakfast", "早饭": "breakfast",
    "lunch": "lunch", "午餐": "lunch", "午飯": "lunch", "午饭": "lunch",
    "dinner": "dinner", "晚餐": "dinner", "晚飯": "dinner", "晚饭": "dinner", "supper": "dinner",
    "snack": "snack", "點心": "snack", "点心": "snack", "零食": "snack", "宵夜": "snack",
}


def infer_meal_type(hour: int, minute: int) -> str:
  minutes = hour * 60 + minute
  if minutes < 10 * 60 + 30:
    return "breakfast"
  if minutes < 14 * 60 + 30:
    return "lunch"
  if 17 * 60 <= minutes < 22 * 60:
    return "dinner"
  return "snack"


def _build_nutrition(value: Any) -> Nutrition:
  if not isinstance(value, dict):
    return Nutrition()
  fields = {}
  for key in ("protein", "carbs", "fat"):
    number = _clean_float(value.get(key))
    fields[key] = number if number is not None and number >= 0 else 0
  return Nutrition(**fields)


def _build_tags(value: Any) -> List[str]:
  if isinstance(value, str):
    value = value.replace("，", ",").split(",")
  if not isinstance(value, list):
    return []
  return [tag for tag in (_as_text(v) for v in value) if tag]


def _build_meal(item: Dict[str, Any], reference: datetime,
                default_confidence: float) -> StageOutcome:
  tod = parse_time_of_day(_as_text(_pick(item, "time", "mealTime", "時間", "时间")) or "")
  if tod is None:
    tod = (reference.hour, reference.minute)

  raw_type = (_clean_str(_pick(item, "mealType", "meal_type", "type")) or "").lower()
  meal_type = _MEAL_TYPES.get(raw_type) or infer_meal_type(*tod)

  calories = _clean_float(_pick(item, "calories", "kcal", "熱量", "热量"))
  record = MealRecord(title=_as_text(_pick(item, "title", "name", "food", "meal")) or "Unknown meal",
                      meal_type=meal_type,
                      calories=calories if calories is not None and calories >= 0 else 0,
                      time=f"{tod[0]:02d}:{tod[1]:02d}",
                      date=_record_date(_pick(item, "date", "日期"), reference),
                      description=_as_text(_pick(item, "description", "desc", "note")),
                      nutrition=_build_nutrition(item.get("nutrition")),
                      tags=_build_tags(item.get("tags")),
                      confidence=_record_confidence(item, default_confidence))
  return StageOutcome.success(record)


def resolve_meal_extraction(raw: Optional[str],
                            reference: Optional[datetime] = None,
                            user_input: Optional[str] = None) -> ResultEnvelope[MealRecord]:
  return _resolve_records("meal", MealRecord, raw, reference, user_input,
                          ("meals", "items", "records", "data"),
                          ("title", "name", "food", "calories", "mealType"),
                          _build_meal)


RESOLVERS: Dict[str, Callable[..., ResultEnvelope]] = {
    "events": resolve_temporal_extraction,
    "expenses": resolve_expense_extraction,
    "todos": resolve_todo_extraction,
    "meals": resolve_meal_extraction,
}
