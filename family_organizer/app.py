from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import LLM_DEBUG
from .routes import router

logging.basicConfig(
    level=logging.DEBUG if LLM_DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Family Organizer Extraction")
app.include_router(router)


@app.get("/healthz")
def healthz():
  return {"ok": True}
