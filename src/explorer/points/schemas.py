"""Pydantic models for engine inputs and analytics results."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

Trend = Literal["improving", "stable", "needs_support", "excelling"]


# --- Inputs ---


class Observation(BaseModel):
    text: str
    student_ids: list[str] = []
    source: str = "teacher_note"


class SuggestionOverrides(BaseModel):
    """Teacher changes applied when accepting a suggestion."""

    student_ids: list[str] | None = None
    skill_id: str | None = None
    points: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.student_ids is None and self.skill_id is None and self.points is None


# --- Suggestions ---


class Alternative(BaseModel):
    skill_id: str
    skill_name: str
    confidence: float


# --- Analytics ---


class SkillBreakdown(BaseModel):
    skill_id: str
    skill_name: str
    emoji: str = ""
    count: int
    points: int
    percentage: float


class TrendClassification(BaseModel):
    trend: Trend
    confidence: Literal["high", "low"]
    recent_daily_average: float
    older_daily_average: float


class DailyPoints(BaseModel):
    day: date
    points: int
    count: int


class StudentAnalytics(BaseModel):
    student_id: str
    student_name: str
    period_start: datetime
    period_end: datetime
    total_points: int
    positive_points: int
    constructive_points: int
    award_count: int
    skill_breakdown: list[SkillBreakdown]
    weekday_distribution: dict[str, int]
    daily_trend: list[DailyPoints]
    class_average: float
    rank: int
    percentile: float
    trend: TrendClassification


class StudentTotal(BaseModel):
    student_id: str
    student_name: str
    total_points: int
    award_count: int


class TableGroupPerformance(BaseModel):
    table_group_id: str
    name: str
    total_points: int
    average_points: float
    member_count: int


class ClassroomAnalytics(BaseModel):
    classroom_id: str
    period_start: datetime
    period_end: datetime
    total_points: int
    award_count: int
    enrolled_count: int
    average_points: float
    student_distribution: list[StudentTotal]
    top_performers: list[StudentTotal]
    needs_support: list[StudentTotal]
    skill_usage: list[SkillBreakdown]
    dominant_skill: SkillBreakdown | None = None
    table_groups: list[TableGroupPerformance] = Field(default_factory=list)


class UsageStats(BaseModel):
    tenant_id: str
    period_days: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_latency_ms: float
    by_request_type: dict[str, int]
