from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional
import logging
import re

from pydantic import ValidationError

from .config import ISO_DATE_RE, RRULE_UNTIL_RE
from .extraction.schemas import ReasonCode, StageOutcome
from .models import RecurrenceRule
from .utils import _clean_int, _log_debug

logger = logging.getLogger(__name__)

_RRULE_FREQS = {"DAILY", "WEEKLY", "MONTHLY", "YEARLY"}
_FREQ_ALIASES = {
    "DAY": "DAILY",
    "WEEK": "WEEKLY",
    "MONTH": "MONTHLY",
    "YEAR": "YEARLY",
    "ANNUALLY": "YEARLY",
    "每天": "DAILY",
    "每日": "DAILY",
    "每週": "WEEKLY",
    "每周": "WEEKLY",
    "每月": "MONTHLY",
    "每年": "YEARLY",
}
# Integer weekdays follow datetime.weekday(): 0=Monday.
_RRULE_INDEX_TO_WEEKDAY = ["MO", "TU", "WE", "TH", "FR", "SA", "SU"]
_WEEKDAY_NAMES = {
    "MON": "MO", "TUE": "TU", "WED": "WE", "THU": "TH",
    "FRI": "FR", "SAT": "SA", "SUN": "SU",
}
_BYDAY_TOKEN_RE = re.compile(r"^([+-]?\d)?(MO|TU|WE|TH|FR|SA|SU)$")

_FREQ_LABELS = {
    "DAILY": ("day", "days"),
    "WEEKLY": ("week", "weeks"),
    "MONTHLY": ("month", "months"),
    "YEARLY": ("year", "years"),
}
_WEEKDAY_LABELS = {
    "MO": "Monday", "TU": "Tuesday", "WE": "Wednesday", "TH": "Thursday",
    "FR": "Friday", "SA": "Saturday", "SU": "Sunday",
}


def _normalize_int_list(value: Any,
                        min_val: int,
                        max_val: int,
                        allow_neg1: bool = False) -> List[int]:
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, list):
        return []
    out: List[int] = []
    seen: set[int] = set()
    for raw in value:
        iv = _clean_int(raw)
        if iv is None:
            continue
        if allow_neg1 and iv == -1:
            if iv not in seen:
                out.append(iv)
                seen.add(iv)
            continue
        if min_val <= iv <= max_val and iv not in seen:
            out.append(iv)
            seen.add(iv)
    return out


def _normalize_weekday_list(value: Any) -> List[str]:
    """Weekday codes from ``["MO", "tue", "Friday", 0, "1SU"]``; junk is skipped."""
    if isinstance(value, str):
        value = [tok for tok in re.split(r"[,\s]+", value) if tok]
    elif isinstance(value, int) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for raw in value:
        code: Optional[str] = None
        if isinstance(raw, int) and not isinstance(raw, bool):
            if 0 <= raw <= 6:
                code = _RRULE_INDEX_TO_WEEKDAY[raw]
        elif isinstance(raw, str):
            token = raw.strip().upper()
            match = _BYDAY_TOKEN_RE.match(token)
            if match:
                code = match.group(2)
            elif token[:3] in _WEEKDAY_NAMES:
                code = _WEEKDAY_NAMES[token[:3]]
            elif token.isdigit() and 0 <= int(token) <= 6:
                code = _RRULE_INDEX_TO_WEEKDAY[int(token)]
        if code and code not in out:
            out.append(code)
    return out


def _normalize_frequency(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    freq = value.strip().upper()
    freq = _FREQ_ALIASES.get(freq, freq)
    return freq if freq in _RRULE_FREQS else None


def _parse_until(value: Any, reference: datetime) -> Optional[datetime]:
    """``until`` as an aware datetime in the reference zone.

    Accepts ``YYYY-MM-DD``, ISO datetimes and RRULE ``YYYYMMDD[THHMMSS[Z]]``.
    A bare date means the end of that day.
    """
    tz = reference.tzinfo
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=tz)
    if isinstance(value, date):
        return datetime.combine(value, time(23, 59, 59), tzinfo=tz)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None

    match = RRULE_UNTIL_RE.match(raw.upper())
    if match:
        year, month, day, hh, mm, ss, zulu = match.groups()
        try:
            if hh is None:
                return datetime(int(year), int(month), int(day), 23, 59, 59,
                                tzinfo=tz)
            if zulu:
                parsed = datetime(int(year), int(month), int(day), int(hh),
                                  int(mm), int(ss), tzinfo=timezone.utc)
                return parsed.astimezone(tz) if tz else parsed
            return datetime(int(year), int(month), int(day), int(hh), int(mm),
                            int(ss), tzinfo=tz)
        except ValueError:
            return None

    if ISO_DATE_RE.match(raw):
        try:
            day_value = datetime.strptime(raw, "%Y-%m-%d").date()
        except ValueError:
            return None
        return datetime.combine(day_value, time(23, 59, 59), tzinfo=tz)

    candidate = raw.replace(" ", "T", 1)
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz) if tz else parsed


def _rrule_values(rrule: str) -> Optional[Dict[str, str]]:
    raw = rrule.strip()
    if raw.upper().startswith("RRULE:"):
        raw = raw.split(":", 1)[1].strip()
    if not raw:
        return None
    values: Dict[str, str] = {}
    for part in [p.strip() for p in raw.split(";") if p.strip()]:
        if "=" not in part:
            return None
        key, val = part.split("=", 1)
        key = key.strip().upper()
        val = val.strip()
        if not key or not val:
            return None
        values[key] = val
    return values


def _rrule_to_recurrence(rrule: str) -> Optional[Dict[str, Any]]:
    """RRULE text -> the same dict shape a model would send."""
    values = _rrule_values(rrule)
    if values is None:
        return None
    recurrence: Dict[str, Any] = {"frequency": values.get("FREQ")}
    if "INTERVAL" in values:
        recurrence["interval"] = values["INTERVAL"]
    if "BYDAY" in values:
        recurrence["byDay"] = values["BYDAY"].split(",")
    if "BYMONTHDAY" in values:
        recurrence["byMonthDay"] = values["BYMONTHDAY"].split(",")
    if "COUNT" in values:
        recurrence["count"] = values["COUNT"]
    if "UNTIL" in values:
        recurrence["until"] = values["UNTIL"]
    return recurrence


def _first_present(source: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in source and source[key] is not None:
            return source[key]
    return None


def normalize_recurrence(value: Any, reference: datetime) -> StageOutcome:
    """Structured dict or RRULE string -> ``RecurrenceRule``.

    Fails only on a missing or unknown frequency; a bad ``until`` or
    non-positive ``count`` is dropped from the rule instead.
    """
    if isinstance(value, str):
        stripped = value.strip()
        if "=" in stripped:
            recurrence = _rrule_to_recurrence(stripped)
        else:
            # bare frequency word, e.g. "weekly" or "每天"
            recurrence = {"frequency": stripped}
        if recurrence is None:
            return StageOutcome.failure(ReasonCode.INVALID_FREQUENCY,
                                        f"unparsable RRULE {value!r}")
    elif isinstance(value, dict):
        recurrence = value
    else:
        return StageOutcome.failure(ReasonCode.INVALID_FREQUENCY,
                                    "no recurrence")

    freq = _normalize_frequency(
        _first_present(recurrence, "frequency", "freq", "FREQ", "type"))
    if freq is None:
        return StageOutcome.failure(ReasonCode.INVALID_FREQUENCY,
                                    str(_first_present(recurrence, "frequency", "freq")))

    interval = _clean_int(recurrence.get("interval"))
    if interval is None or interval < 1:
        interval = 1

    by_day = _normalize_weekday_list(
        _first_present(recurrence, "byDay", "by_day", "byday", "byweekday",
                       "weekdays"))
    by_month_day = _normalize_int_list(
        _first_present(recurrence, "byMonthDay", "by_month_day", "bymonthday"),
        1,
        31,
        allow_neg1=True)

    end = recurrence.get("end")
    count_raw = _first_present(recurrence, "count")
    until_raw = _first_present(recurrence, "until", "end_date", "endDate")
    if isinstance(end, dict):
        count_raw = end.get("count", count_raw)
        until_raw = end.get("until", until_raw)
    elif isinstance(end, str):
        until_raw = until_raw or end
    elif isinstance(end, int) and not isinstance(end, bool):
        count_raw = count_raw or end

    count = _clean_int(count_raw)
    if count is not None and count <= 0:
        _log_debug(f"[RECURRENCE] dropping count={count_raw!r}")
        count = None

    until: Optional[datetime] = None
    if until_raw is not None:
        until = _parse_until(until_raw, reference)
        if until is None:
            logger.info("Dropping unparsable recurrence until: %r", until_raw)

    try:
        rule = RecurrenceRule(frequency=freq,
                              interval=interval,
                              by_day=by_day,
                              by_month_day=by_month_day,
                              count=count,
                              until=until)
    except ValidationError as exc:
        logger.warning("Recurrence rule rejected: %s", exc)
        return StageOutcome.failure(ReasonCode.INVALID_RECORD, str(exc))
    return StageOutcome.success(rule)


def describe_recurrence(rule: RecurrenceRule) -> str:
    """Short English phrase for a rule, e.g. ``"every 2 weeks on Monday, Friday"``."""
    singular, plural = _FREQ_LABELS[rule.frequency]
    if rule.interval == 1:
        text = f"every {singular}"
    else:
        text = f"every {rule.interval} {plural}"
    if rule.by_day:
        text += " on " + ", ".join(_WEEKDAY_LABELS[d] for d in rule.by_day)
    if rule.by_month_day:
        days = ["last day" if d == -1 else f"day {d}" for d in rule.by_month_day]
        text += " on " + ", ".join(days)
    if rule.count:
        text += f", {rule.count} times"
    elif rule.until:
        text += f", until {rule.until.date().isoformat()}"
    return text
