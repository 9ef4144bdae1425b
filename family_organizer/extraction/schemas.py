from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class ReasonCode(str, Enum):
  # unwrap / parse
  NO_JSON = "no_json"
  PARSE_ERROR = "parse_error"
  NOT_AN_OBJECT = "not_an_object"
  # key normalization
  MISSING_TITLE = "missing_title"
  MISSING_START = "missing_start"
  # temporal resolution / validation
  UNRESOLVED = "unresolved"
  FORMAT = "format"
  YEAR_OUT_OF_RANGE = "year_out_of_range"
  MONTH_OUT_OF_RANGE = "month_out_of_range"
  DAY_OUT_OF_RANGE = "day_out_of_range"
  HOUR_OUT_OF_RANGE = "hour_out_of_range"
  MINUTE_OUT_OF_RANGE = "minute_out_of_range"
  SECOND_OUT_OF_RANGE = "second_out_of_range"
  TOO_FAR_FROM_NOW = "too_far_from_now"
  END_NOT_AFTER_START = "end_not_after_start"
  # recurrence
  INVALID_FREQUENCY = "invalid_frequency"
  INVALID_UNTIL = "invalid_until"
  # assembling
  INVALID_RECORD = "invalid_record"
  EMPTY_EXTRACTION = "empty_extraction"
  INTERNAL_ERROR = "internal_error"


class PipelineState(str, Enum):
  UNWRAPPING = "unwrapping"
  NORMALIZING = "normalizing"
  RESOLVING_TIMES = "resolving_times"
  VALIDATING = "validating"
  ASSEMBLING = "assembling"
  FALLBACK = "fallback"
  DONE = "done"


class StageOutcome(BaseModel):
  """Result of one pipeline stage: a value, or a reason it has none."""
  model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

  value: Any = None
  reason: Optional[ReasonCode] = None
  detail: Optional[str] = None

  @property
  def ok(self) -> bool:
    return self.reason is None

  @classmethod
  def success(cls, value: Any) -> "StageOutcome":
    return cls(value=value)

  @classmethod
  def failure(cls, reason: ReasonCode,
              detail: Optional[str] = None,
              value: Any = None) -> "StageOutcome":
    return cls(value=value, reason=reason, detail=detail)

  def describe(self) -> str:
    if self.ok:
      return "ok"
    if self.detail:
      return f"{self.reason.value}: {self.detail}"
    return self.reason.value


def summarize_reasons(counts: Dict[ReasonCode, int]) -> str:
  parts = [f"{code.value} x{n}" for code, n in counts.items() if n]
  return ", ".join(parts)
