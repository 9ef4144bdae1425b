from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..config import FALLBACK_NO_JSON_CONFIDENCE, FALLBACK_TITLE_MAX_CHARS
from ..models import NormalizedEvent
from ..utils import _log_debug, generate_record_id, normalize_text, truncate_title
from .duration import category_duration
from .relative_dates import resolve_natural_datetime
from .temporal import infer_date_from_time
from .validator import validate_distance

logger = logging.getLogger(__name__)


def extract_basic_event(text: Optional[str],
                        reference: datetime,
                        confidence: float = FALLBACK_NO_JSON_CONFIDENCE) -> Optional[NormalizedEvent]:
  """Best-effort single event straight from user text.

  Used when the model gave nothing structured. Never raises: blank text or
  an internal failure yields ``None``.
  """
  cleaned = normalize_text(text)
  if not cleaned:
    return None

  try:
    start = resolve_natural_datetime(cleaned, reference)
    if start is not None and start <= reference and start.date() == reference.date():
      # "today" at a clock that has already passed
      start = infer_date_from_time(start.hour, start.minute, reference)
    if start is None or start <= reference or not validate_distance(start, reference).ok:
      _log_debug(f"[FALLBACK] no usable date/time cue ({start}), using tomorrow")
      start = reference + timedelta(days=1)
    end = start + category_duration(cleaned)
    return NormalizedEvent(id=generate_record_id("event"),
                           title=truncate_title(cleaned, FALLBACK_TITLE_MAX_CHARS),
                           description=text.strip(),
                           start_time=start,
                           end_time=end,
                           confidence=confidence)
  except Exception as exc:
    logger.warning("Fallback extraction failed for %r: %s", cleaned[:80], exc)
    return None
