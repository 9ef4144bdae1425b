from __future__ import annotations

import inspect
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from openai import AsyncOpenAI

from .config import (
    EXTRACTION_MODEL,
    LLM_DEBUG,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
)
from .extraction import RESOLVERS
from .models import ResultEnvelope
from .utils import _log_debug, coerce_reference, normalize_text

async_client: Optional[AsyncOpenAI] = AsyncOpenAI(
    api_key=OPENAI_API_KEY, base_url=OPENAI_BASE_URL) if OPENAI_API_KEY else None

ProgressCallback = Callable[[str], Union[None, Awaitable[None]]]


def get_async_client() -> AsyncOpenAI:
  if async_client is None:
    raise RuntimeError("OPENAI_API_KEY is not set")
  return async_client


# -------------------------
# LLM 프롬프트
# -------------------------
EVENTS_SYSTEM_PROMPT_TEMPLATE = """You turn a family member's message into calendar events. Return exactly one JSON object. No explanations.
Reference:
- now: {NOW}
- timezone: {TIMEZONE}
- today is {WEEKDAY}

Output schema:
{
  "events": [
    {
      "title": string,
      "startTime": "YYYY-MM-DD HH:mm:ss",
      "endTime": "YYYY-MM-DD HH:mm:ss" | null,
      "duration": number (minutes) | null,
      "location": string | null,
      "description": string | null,
      "isRecurring": boolean,
      "recurringPattern": string,
      "recurrenceRule": {
        "frequency": "DAILY" | "WEEKLY" | "MONTHLY" | "YEARLY",
        "interval": number,
        "byDay": ["MO","TU","WE","TH","FR","SA","SU"] | null,
        "byMonthDay": [1..31, -1] | null,
        "count": number | null,
        "until": "YYYY-MM-DD" | null
      } | null,
      "confidence": number (0..1)
    }
  ],
  "summary": string,
  "confidence": number (0..1)
}

Rules:
1. Resolve relative dates (tomorrow, next Wednesday, 下週三, 週末) against the reference date.
2. "this <weekday>" that equals today means the same weekday next week.
3. title holds no time or place.
4. Leave endTime null when the message gives no end; never invent one.
5. Use recurrenceRule only when the message repeats; until and count are exclusive.
6. No events → "events": [].
"""

EXPENSES_SYSTEM_PROMPT_TEMPLATE = """You turn a message or receipt text into expense records. Return exactly one JSON object. No explanations.
Reference date: {TODAY} ({TIMEZONE})

Output schema:
{
  "expenses": [
    {
      "amount": number,
      "category": "food" | "transport" | "shopping" | "entertainment" | "health" | "education" | "housing" | "other",
      "description": string,
      "date": "YYYY-MM-DD",
      "type": "expense" | "income",
      "confidence": number (0..1)
    }
  ],
  "summary": string,
  "confidence": number (0..1)
}
"""

TODOS_SYSTEM_PROMPT_TEMPLATE = """You turn a message into to-do items. Return exactly one JSON object. No explanations.
Reference date: {TODAY} ({TIMEZONE})

Output schema:
{
  "todos": [
    {
      "title": string,
      "description": string | null,
      "priority": "low" | "medium" | "high",
      "dueDate": "YYYY-MM-DD" | null,
      "confidence": number (0..1)
    }
  ],
  "summary": string,
  "confidence": number (0..1)
}
"""

MEALS_SYSTEM_PROMPT_TEMPLATE = """You turn a message or food photo description into meal records. Return exactly one JSON object. No explanations.
Reference: {NOW} ({TIMEZONE})

Output schema:
{
  "meals": [
    {
      "title": string,
      "mealType": "breakfast" | "lunch" | "dinner" | "snack",
      "calories": number,
      "time": "HH:MM",
      "date": "YYYY-MM-DD",
      "description": string | null,
      "nutrition": {"protein": number, "carbs": number, "fat": number},
      "tags": [string],
      "confidence": number (0..1)
    }
  ],
  "summary": string,
  "confidence": number (0..1)
}
"""

_PROMPT_TEMPLATES = {
    "events": EVENTS_SYSTEM_PROMPT_TEMPLATE,
    "expenses": EXPENSES_SYSTEM_PROMPT_TEMPLATE,
    "todos": TODOS_SYSTEM_PROMPT_TEMPLATE,
    "meals": MEALS_SYSTEM_PROMPT_TEMPLATE,
}

EXTRACTION_KINDS = tuple(RESOLVERS)


def build_system_prompt(kind: str, reference: datetime) -> str:
  template = _PROMPT_TEMPLATES[kind]
  tz_name = str(reference.tzinfo) if reference.tzinfo else "local"
  return (template.replace("{NOW}", reference.strftime("%Y-%m-%d %H:%M:%S"))
          .replace("{TODAY}", reference.date().isoformat())
          .replace("{WEEKDAY}", reference.strftime("%A"))
          .replace("{TIMEZONE}", tz_name))


def _debug_print(kind: str,
                 input_text: str,
                 system_prompt: str,
                 raw_content: str,
                 latency_ms: Optional[float] = None,
                 model_name: str = "") -> None:
  if not LLM_DEBUG:
    return

  head = system_prompt[:220].replace("\n", "\\n")
  _log_debug(f"[LLM DEBUG] kind: {kind}")
  _log_debug(f"[LLM DEBUG] input_text: {input_text}")
  _log_debug(f"[LLM DEBUG] system_prompt(head): {head}")
  _log_debug(f"[LLM DEBUG] raw_content: {raw_content}")
  if model_name:
    _log_debug(f"[LLM DEBUG] model: {model_name}")
  if latency_ms is not None:
    _log_debug(f"[LLM DEBUG] latency_ms: {latency_ms:.1f} ms")


async def _chat_json_stream(kind: str,
                            system_prompt: str,
                            user_text: str,
                            model_name: Optional[str] = None):
  c = get_async_client()
  model = model_name or EXTRACTION_MODEL
  try:
    return await c.chat.completions.create(
        model=model,
        messages=[
            {
                "role": "system",
                "content": system_prompt
            },
            {
                "role": "user",
                "content": user_text
            },
        ],
        stream=True,
        response_format={"type": "json_object"},
    )
  except Exception as e:
    _log_debug(f"[LLM DEBUG] {kind} stream exception: {repr(e)}")
    raise


async def collect_stream(stream: Any,
                         on_progress: Optional[ProgressCallback] = None) -> str:
  """Accumulate a streamed completion into its full text.

  Each non-empty delta is reported to ``on_progress`` (sync or async) as it
  arrives. Partial text is never parsed here.
  """
  full_content = ""
  async for chunk in stream:
    choices = getattr(chunk, "choices", None)
    if not choices:
      continue
    delta = choices[0].delta.content
    if not delta:
      continue
    full_content += delta
    if on_progress is not None:
      result = on_progress(delta)
      if inspect.isawaitable(result):
        await result
  return full_content


async def extract_from_text(kind: str,
                            text: str,
                            reference: Optional[datetime] = None,
                            on_progress: Optional[ProgressCallback] = None,
                            model_name: Optional[str] = None) -> ResultEnvelope:
  """Call the model for ``kind`` and normalize its final answer.

  Transport errors from the client propagate; content problems never do.
  """
  if kind not in RESOLVERS:
    raise ValueError(f"Unknown extraction kind: {kind}")
  reference = coerce_reference(reference)
  user_text = normalize_text(text)
  system_prompt = build_system_prompt(kind, reference)

  started = time.perf_counter()
  stream = await _chat_json_stream(kind, system_prompt, user_text, model_name)
  raw_content = await collect_stream(stream, on_progress)
  latency_ms = (time.perf_counter() - started) * 1000.0
  _debug_print(kind, user_text, system_prompt, raw_content, latency_ms,
               model_name or EXTRACTION_MODEL)

  return RESOLVERS[kind](raw_content, reference, user_input=user_text)


async def extract_events_from_text(text: str,
                                   reference: Optional[datetime] = None,
                                   on_progress: Optional[ProgressCallback] = None,
                                   model_name: Optional[str] = None) -> ResultEnvelope:
  return await extract_from_text("events", text, reference, on_progress, model_name)


async def extract_expenses_from_text(text: str,
                                     reference: Optional[datetime] = None,
                                     on_progress: Optional[ProgressCallback] = None,
                                     model_name: Optional[str] = None) -> ResultEnvelope:
  return await extract_from_text("expenses", text, reference, on_progress, model_name)


async def extract_todos_from_text(text: str,
                                  reference: Optional[datetime] = None,
                                  on_progress: Optional[ProgressCallback] = None,
                                  model_name: Optional[str] = None) -> ResultEnvelope:
  return await extract_from_text("todos", text, reference, on_progress, model_name)


async def extract_meals_from_text(text: str,
                                  reference: Optional[datetime] = None,
                                  on_progress: Optional[ProgressCallback] = None,
                                  model_name: Optional[str] = None) -> ResultEnvelope:
  return await extract_from_text("meals", text, reference, on_progress, model_name)
