from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from .config import API_BASE
from .extraction import RESOLVERS
from .extraction.normalizer import resolve_timezone
from .llm import EXTRACTION_KINDS, extract_from_text
from .models import ExtractionRequest, NaturalTextRequest, ResultEnvelope

router = APIRouter()
logger = logging.getLogger(__name__)


def _format_sse_event(event_type: str, payload: Dict[str, Any]) -> str:
  body = json.dumps(payload, ensure_ascii=False)
  return f"event: {event_type}\ndata: {body}\n\n"


def _require_kind(kind: str) -> str:
  if kind not in EXTRACTION_KINDS:
    raise HTTPException(status_code=404,
                        detail=f"Unknown extraction kind: {kind}")
  return kind


def _parse_reference(reference: Optional[str],
                     timezone_name: Optional[str]) -> datetime:
  requested = (timezone_name or "").strip()
  tz_name = resolve_timezone(requested)
  if requested and tz_name != requested:
    raise HTTPException(status_code=400,
                        detail=f"Unknown timezone: {timezone_name}")
  tz = ZoneInfo(tz_name)

  raw = (reference or "").strip()
  if not raw:
    return datetime.now(tz).replace(microsecond=0)
  if raw.endswith(("Z", "z")):
    raw = raw[:-1] + "+00:00"
  try:
    parsed = datetime.fromisoformat(raw)
  except ValueError as exc:
    raise HTTPException(status_code=400,
                        detail=f"Invalid reference datetime: {reference}") from exc
  if parsed.tzinfo is None:
    return parsed.replace(tzinfo=tz)
  return parsed.astimezone(tz)


def _dump(envelope: ResultEnvelope) -> Dict[str, Any]:
  return envelope.model_dump(mode="json", by_alias=True)


# -------------------------
# 정규화 전용 (LLM 호출 없음)
# -------------------------
@router.post(f"{API_BASE}/extract/{{kind}}")
def extract_records(kind: str, body: ExtractionRequest):
  resolver = RESOLVERS[_require_kind(kind)]
  reference = _parse_reference(body.reference, body.timezone)
  envelope = resolver(body.response_text, reference, user_input=body.user_input)
  logger.info("extract/%s: %d record(s), confidence=%.2f", kind,
              len(envelope.records), envelope.confidence)
  return _dump(envelope)


# -------------------------
# LLM + 정규화
# -------------------------
@router.post(f"{API_BASE}/nlp/{{kind}}")
async def nlp_extract(kind: str, body: NaturalTextRequest):
  _require_kind(kind)
  if not body.text.strip():
    raise HTTPException(status_code=400, detail="text is empty.")
  reference = _parse_reference(body.reference, body.timezone)
  try:
    envelope = await extract_from_text(kind, body.text, reference)
  except RuntimeError as exc:
    raise HTTPException(status_code=500, detail=str(exc)) from exc
  except Exception as exc:
    logger.exception("NLP extraction failed (%s)", kind)
    raise HTTPException(status_code=502,
                        detail=f"LLM extraction error: {exc}") from exc
  return _dump(envelope)


@router.post(f"{API_BASE}/nlp/{{kind}}/stream")
async def nlp_extract_stream(kind: str, body: NaturalTextRequest, request: Request):
  _require_kind(kind)
  if not body.text.strip():
    raise HTTPException(status_code=400, detail="text is empty.")
  reference = _parse_reference(body.reference, body.timezone)

  async def event_generator():
    stream_queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
    runner_done = asyncio.Event()

    async def _on_progress(delta: str) -> None:
      await stream_queue.put({"type": "chunk", "delta": delta})

    async def _runner():
      try:
        envelope = await extract_from_text(kind, body.text, reference,
                                           on_progress=_on_progress)
        await stream_queue.put({"type": "result", "result": _dump(envelope)})
      except RuntimeError as exc:
        await stream_queue.put({
            "type": "error",
            "status_code": 500,
            "message": str(exc),
        })
      except asyncio.CancelledError:
        raise
      except Exception as exc:
        logger.exception("NLP stream extraction failed (%s)", kind)
        await stream_queue.put({
            "type": "error",
            "status_code": 502,
            "message": f"LLM extraction error: {exc}",
        })
      finally:
        runner_done.set()

    run_task = asyncio.create_task(_runner())
    try:
      yield _format_sse_event("ready", {"type": "ready"})
      while True:
        if await request.is_disconnected():
          break
        try:
          payload = await asyncio.wait_for(stream_queue.get(), timeout=20)
        except asyncio.TimeoutError:
          if runner_done.is_set():
            break
          yield _format_sse_event("ping", {"type": "ping"})
          continue
        event_type = str(payload.get("type") or "message")
        yield _format_sse_event(event_type, payload)
        if event_type in ("result", "error"):
          break
      yield _format_sse_event("done", {"type": "done"})
    finally:
      if not run_task.done():
        run_task.cancel()

  return StreamingResponse(
      event_generator(),
      media_type="text/event-stream",
      headers={
          "Cache-Control": "no-cache",
          "Connection": "keep-alive",
          "X-Accel-Buffering": "no",
      },
  )
