"""
AI 응답 → 일정/지출/할 일/식사 레코드 정규화 엔진
"""

from .orchestrator import (
    RESOLVERS,
    resolve_expense_extraction,
    resolve_meal_extraction,
    resolve_temporal_extraction,
    resolve_todo_extraction,
)
from .schemas import PipelineState, ReasonCode, StageOutcome

__all__ = [
    "RESOLVERS",
    "resolve_temporal_extraction",
    "resolve_expense_extraction",
    "resolve_todo_extraction",
    "resolve_meal_extraction",
    "PipelineState",
    "ReasonCode",
    "StageOutcome",
]
