from __future__ import annotations

import json
import logging
import re
from typing import Optional

from ..utils import _log_debug
from .schemas import ReasonCode, StageOutcome

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_QUOTE_TABLE = str.maketrans({
    "“": '"',
    "”": '"',
    "„": '"',
    "＂": '"',
})


def _balanced_span(text: str, opener: str, closer: str) -> Optional[str]:
  """First balanced ``opener ... closer`` span, ignoring brackets inside strings.

  If the first opener is never closed, falls back to the first opener up to
  the last closer in the text.
  """
  start = text.find(opener)
  if start == -1:
    return None

  depth = 0
  in_string = False
  escaped = False
  for i in range(start, len(text)):
    char = text[i]
    if in_string:
      if escaped:
        escaped = False
      elif char == "\\":
        escaped = True
      elif char == '"':
        in_string = False
      continue
    if char == '"':
      in_string = True
    elif char == opener:
      depth += 1
    elif char == closer:
      depth -= 1
      if depth == 0:
        return text[start:i + 1]

  end = text.rfind(closer)
  if end > start:
    return text[start:end + 1]
  return None


def unwrap_response(text: Optional[str]) -> StageOutcome:
  """Pick the best JSON candidate out of a raw model response."""
  if not isinstance(text, str) or not text.strip():
    return StageOutcome.failure(ReasonCode.NO_JSON, "empty response")

  for match in _FENCE_RE.finditer(text):
    body = match.group(1).strip()
    if body.startswith("{") or body.startswith("["):
      _log_debug("[UNWRAP] fenced block")
      return StageOutcome.success(body)

  span = _balanced_span(text, "{", "}")
  if span is not None:
    _log_debug("[UNWRAP] bare object")
    return StageOutcome.success(span)

  span = _balanced_span(text, "[", "]")
  if span is not None:
    _log_debug("[UNWRAP] bare array")
    return StageOutcome.success(span)

  logger.warning("No JSON found in model response (%d chars)", len(text))
  return StageOutcome.failure(ReasonCode.NO_JSON, "no JSON object in response")


def _repair_json(raw: str) -> str:
  repaired = raw.lstrip("\ufeff").translate(_QUOTE_TABLE)
  return _TRAILING_COMMA_RE.sub(r"\1", repaired)


def parse_candidate_payload(payload: str) -> StageOutcome:
  try:
    return StageOutcome.success(json.loads(payload))
  except Exception:
    pass

  try:
    return StageOutcome.success(json.loads(_repair_json(payload)))
  except json.JSONDecodeError as exc:
    logger.warning("Failed to parse JSON candidate: %s", exc)
    return StageOutcome.failure(ReasonCode.PARSE_ERROR, str(exc))
  except Exception as exc:
    logger.warning("Failed to parse JSON candidate: %r", exc)
    return StageOutcome.failure(ReasonCode.PARSE_ERROR, repr(exc))
