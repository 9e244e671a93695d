from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

SizeClass = Literal["small", "medium", "large"]


class ActivityRecord(BaseModel):
    kind: str
    timestamp: datetime
    subject: str = "activity"
    detail: str = "Activity"

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ActivitySet(BaseModel):
    identity: str
    records: tuple[ActivityRecord, ...]
    fetched_at: datetime

    model_config = {"frozen": True}


class CalendarDay(BaseModel):
    date: str
    day_of_week: int
    hours: list[int]

    model_config = {"frozen": True}


class CalendarView(BaseModel):
    days: dict[str, list[int]]
    weeks: list[list[CalendarDay]]

    model_config = {"frozen": True}


class WeekdayCount(BaseModel):
    day: str
    count: int

    model_config = {"frozen": True}


class GridCell(BaseModel):
    day: str
    day_index: int
    hour: int
    count: int

    model_config = {"frozen": True}


class ViewMetadata(BaseModel):
    identity: str
    total: int
    start: Optional[datetime]
    end: Optional[datetime]
    by_kind: dict[str, int]
    average_per_day: float

    model_config = {"frozen": True}


class StructuredViews(BaseModel):
    sample: tuple[ActivityRecord, ...]
    calendar: CalendarView
    weekday_histogram: list[WeekdayCount]
    week_hour_grid: list[GridCell]
    metadata: ViewMetadata

    model_config = {"frozen": True}


class RenderJob(BaseModel):
    views: StructuredViews
    step: int
    style: str = "deathnote"
    size: SizeClass = "medium"

    model_config = {"frozen": True}

    @field_validator("step")
    @classmethod
    def _step_in_range(cls, value: int) -> int:
        if not 1 <= value <= 4:
            raise ValueError("step must be between 1 and 4")
        return value


class ArtifactKind(str, Enum):
    ANIMATED = "animated"
    STATIC = "static"
    # animated encoding was unavailable; only the last frame was delivered
    STATIC_FALLBACK = "static-fallback"


class Artifact(BaseModel):
    data: bytes
    kind: ArtifactKind
    frame_count: int = 1
    media_type: str = "image/webp"

    model_config = {"frozen": True}

    @property
    def degraded(self) -> bool:
        return self.kind is ArtifactKind.STATIC_FALLBACK
