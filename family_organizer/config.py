from __future__ import annotations

import os
import re
from zoneinfo import ZoneInfo

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gpt-5-nano")
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

DEFAULT_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Taipei")
DEFAULT_TZ = ZoneInfo(DEFAULT_TIMEZONE)
API_BASE = os.getenv("API_BASE", "/api")

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CANONICAL_DATETIME_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})\s(\d{2}):(\d{2}):(\d{2})")
ISO_NAIVE_DATETIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})$")
VALIDATABLE_DATETIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2}):(\d{2})"
    r"(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?$")
RRULE_UNTIL_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})(?:T(\d{2})(\d{2})(\d{2})(Z)?)?$")
HHMM_RE = re.compile(r"^\d{1,2}:\d{2}$")

# -------------------------
# 신뢰도 기본값
# -------------------------
DEFAULT_EVENT_CONFIDENCE = 0.85
FALLBACK_NO_JSON_CONFIDENCE = 0.5
FALLBACK_EMPTY_CONFIDENCE = 0.4
FALLBACK_PARSE_ERROR_CONFIDENCE = 0.3
ENVELOPE_NO_JSON_CONFIDENCE = 0.3
ENVELOPE_PARSE_ERROR_CONFIDENCE = 0.2
DEFAULT_SIBLING_CONFIDENCE = 0.8

# -------------------------
# 검증/추론 제한
# -------------------------
VALID_YEARS_BEFORE = 1
VALID_YEARS_AFTER = 10
MAX_DISTANCE_DAYS = 365
DEFAULT_DURATION_MINUTES = 60
MAX_OVERNIGHT_END_HOURS = 12
FALLBACK_TITLE_MAX_CHARS = 50
MIN_FALLBACK_INPUT_CHARS = 4
MAX_CANDIDATES = 50

# Fallback-only defaults, keyed by the keyword groups in extraction.duration.
CATEGORY_DURATION_MINUTES = {
    "meeting": 60,
    "meal": 90,
    "exercise": 60,
    "shopping": 120,
    "study": 120,
    "other": 60,
}
