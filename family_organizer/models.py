from __future__ import annotations

from datetime import datetime
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Frequency = Literal["DAILY", "WEEKLY", "MONTHLY", "YEARLY"]
WeekdayCode = Literal["MO", "TU", "WE", "TH", "FR", "SA", "SU"]


class RecurrenceRule(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    by_day: List[WeekdayCode] = Field(default_factory=list)
    by_month_day: List[int] = Field(default_factory=list)
    count: Optional[int] = Field(default=None, ge=1)
    until: Optional[datetime] = None


class NormalizedEvent(BaseModel):
    """Canonical calendar event emitted by the extraction pipeline.

    Keys the pipeline does not recognise are carried as extra fields.
    """
    model_config = ConfigDict(alias_generator=to_camel,
                              populate_by_name=True,
                              extra="allow")

    id: str
    title: str = Field(min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_recurring: bool = False
    recurring_pattern: str = ""
    recurrence_rule: Optional[RecurrenceRule] = None
    confidence: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_order(self) -> "NormalizedEvent":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)


class Expense(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    amount: float = Field(gt=0)
    category: str = "other"
    description: Optional[str] = None
    date: str  # "YYYY-MM-DD"
    type: Literal["income", "expense"] = "expense"
    confidence: float = Field(ge=0.0, le=1.0)


class TodoItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(min_length=1)
    description: Optional[str] = None
    priority: Literal["low", "medium", "high"] = "medium"
    due_date: Optional[str] = None  # "YYYY-MM-DD" when resolvable
    confidence: float = Field(ge=0.0, le=1.0)


class Nutrition(BaseModel):
    protein: float = 0
    carbs: float = 0
    fat: float = 0


class MealRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str
    meal_type: Literal["breakfast", "lunch", "dinner", "snack"] = "snack"
    calories: float = Field(default=0, ge=0)
    time: str  # "HH:MM"
    date: str  # "YYYY-MM-DD"
    description: Optional[str] = None
    nutrition: Optional[Nutrition] = None
    tags: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


RecordT = TypeVar("RecordT")


class ResultEnvelope(BaseModel, Generic[RecordT]):
    model_config = ConfigDict(alias_generator=to_camel,
                              populate_by_name=True,
                              frozen=True)

    records: List[RecordT] = Field(default_factory=list)
    summary: str
    confidence: float = Field(ge=0.0, le=1.0)
    raw_response: str
    user_input: Optional[str] = None


class ExtractionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response_text: str = ""
    user_input: Optional[str] = None
    reference: Optional[str] = None  # ISO datetime, defaults to now
    timezone: Optional[str] = None


class NaturalTextRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str
    reference: Optional[str] = None
    timezone: Optional[str] = None
