from __future__ import annotations

import calendar
import logging
from datetime import datetime
from typing import Optional

from ..config import (
    MAX_DISTANCE_DAYS,
    VALID_YEARS_AFTER,
    VALID_YEARS_BEFORE,
    VALIDATABLE_DATETIME_RE,
)
from .schemas import ReasonCode, StageOutcome
from .temporal import parse_time

logger = logging.getLogger(__name__)


def validate_datetime_string(value: Optional[str], reference: datetime) -> StageOutcome:
  """Range/sanity check for ``YYYY-MM-DD HH:mm:ss`` (or ISO) strings.

  The value on success is the parsed datetime.
  """
  if not isinstance(value, str) or not value.strip():
    return StageOutcome.failure(ReasonCode.FORMAT, "empty date-time string")

  match = VALIDATABLE_DATETIME_RE.match(value.strip())
  if not match:
    return StageOutcome.failure(
        ReasonCode.FORMAT,
        f"{value!r} is not YYYY-MM-DD HH:mm:ss or YYYY-MM-DDTHH:mm:ss")

  year, month, day, hour, minute, second = (int(g) for g in match.groups())

  if year < reference.year - VALID_YEARS_BEFORE or year > reference.year + VALID_YEARS_AFTER:
    return StageOutcome.failure(ReasonCode.YEAR_OUT_OF_RANGE, f"year {year}")
  if not 1 <= month <= 12:
    return StageOutcome.failure(ReasonCode.MONTH_OUT_OF_RANGE, f"month {month}")
  days_in_month = calendar.monthrange(year, month)[1]
  if not 1 <= day <= days_in_month:
    return StageOutcome.failure(ReasonCode.DAY_OUT_OF_RANGE,
                                f"day {day} in {year}-{month:02d}")
  if not 0 <= hour <= 23:
    return StageOutcome.failure(ReasonCode.HOUR_OUT_OF_RANGE, f"hour {hour}")
  if not 0 <= minute <= 59:
    return StageOutcome.failure(ReasonCode.MINUTE_OUT_OF_RANGE, f"minute {minute}")
  if not 0 <= second <= 59:
    return StageOutcome.failure(ReasonCode.SECOND_OUT_OF_RANGE, f"second {second}")

  resolved = parse_time(value, reference)
  if resolved is None:
    return StageOutcome.failure(ReasonCode.FORMAT, f"{value!r} could not be resolved")
  return validate_distance(resolved, reference)


def validate_distance(resolved: datetime, reference: datetime) -> StageOutcome:
  distance_days = abs((resolved - reference).total_seconds()) / 86400
  if distance_days > MAX_DISTANCE_DAYS:
    logger.info("Rejecting %s: %.0f days from reference", resolved, distance_days)
    return StageOutcome.failure(ReasonCode.TOO_FAR_FROM_NOW,
                                f"{distance_days:.0f} days from now")
  return StageOutcome.success(resolved)
