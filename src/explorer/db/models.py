"""ORM models for the Explorer Points engine.

Roster tables (classrooms, learners, table_groups) are owned by the platform
and only read here. Everything else is written by the engine.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from explorer.db.base import Base
from explorer.db.types import JSONType, UTCDateTime, new_id, utcnow


# ---------------------------------------------------------------------------
# Roster (read-only to the engine)
# ---------------------------------------------------------------------------


class Classroom(Base):
    """A classroom and the timezone its school keeps."""

    __tablename__ = "classrooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class Learner(Base):
    """A student on a classroom roster."""

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    first_name: Mapped[str] = mapped_column(String(64), nullable=False)
    last_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    is_enrolled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class TableGroup(Base):
    """A named seating group inside a classroom."""

    __tablename__ = "table_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    member_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)


# ---------------------------------------------------------------------------
# Skill library
# ---------------------------------------------------------------------------


class BehaviourSkill(Base):
    """An awardable behaviour with scoring metadata. Soft-deactivated, never deleted."""

    __tablename__ = "behaviour_skills"
    __table_args__ = (
        Index("ix_behaviour_skills_scope", "tenant_id", "school_id", "classroom_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    is_positive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    default_points: Mapped[int] = mapped_column(Integer, nullable=False)
    min_points: Mapped[int] = mapped_column(Integer, nullable=False)
    max_points: Mapped[int] = mapped_column(Integer, nullable=False)
    age_groups: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    trigger_keywords: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    observation_phrases: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    context_indicators: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    expected_frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="regular")
    auto_suggest_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------


class PointAward(Base):
    """Immutable snapshot of one award to one learner.

    Only the parent notified/viewed flags and the reactions list change after insert.
    """

    __tablename__ = "point_awards"
    __table_args__ = (
        Index("ix_point_awards_student_time", "tenant_id", "student_id", "awarded_at"),
        Index("ix_point_awards_classroom_time", "tenant_id", "classroom_id", "awarded_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str] = mapped_column(String(36), nullable=False)

    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    student_name: Mapped[str] = mapped_column(String(128), nullable=False)

    skill_id: Mapped[str] = mapped_column(String(36), nullable=False)
    skill_name: Mapped[str] = mapped_column(String(128), nullable=False)
    skill_emoji: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    is_positive: Mapped[bool] = mapped_column(Boolean, nullable=False)

    context: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    location: Mapped[str | None] = mapped_column(String(32), nullable=True)

    ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_suggestion_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    awarded_by: Mapped[str] = mapped_column(String(64), nullable=False)
    awarded_by_role: Mapped[str] = mapped_column(String(16), nullable=False, default="teacher")
    group_award_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    parent_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    parent_viewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_viewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    reactions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    awarded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class GroupAward(Base):
    """Summary row for a multi-student award."""

    __tablename__ = "group_awards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    group_type: Mapped[str] = mapped_column(String(32), nullable=False)
    group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    group_name: Mapped[str] = mapped_column(String(128), nullable=False)
    student_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    skill_id: Mapped[str] = mapped_column(String(36), nullable=False)
    skill_name: Mapped[str] = mapped_column(String(128), nullable=False)
    skill_emoji: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    points_per_student: Mapped[int] = mapped_column(Integer, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    is_positive: Mapped[bool] = mapped_column(Boolean, nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_suggestion_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    awarded_by: Mapped[str] = mapped_column(String(64), nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class LearnerPointTotal(Base):
    """Authoritative lifetime positive-point total per learner, one row each."""

    __tablename__ = "learner_point_totals"

    student_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    lifetime_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


class PointSuggestion(Base):
    """Generated award suggestion awaiting a teacher decision."""

    __tablename__ = "point_suggestions"
    __table_args__ = (
        Index("ix_point_suggestions_pending", "tenant_id", "classroom_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str] = mapped_column(String(36), nullable=False)

    observation_source: Mapped[str] = mapped_column(String(32), nullable=False, default="teacher_note")
    observation_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    suggested_student_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    suggested_skill_id: Mapped[str] = mapped_column(String(36), nullable=False)
    suggested_skill_name: Mapped[str] = mapped_column(String(128), nullable=False)
    suggested_points: Mapped[int] = mapped_column(Integer, nullable=False)

    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    detected_behaviours: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    alternatives: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    accepted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    modified_award: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    suggested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Celebrations & streaks
# ---------------------------------------------------------------------------


class Celebration(Base):
    """Milestone celebration, at most one per (student, type, value)."""

    __tablename__ = "celebrations"
    __table_args__ = (
        UniqueConstraint(
            "student_id", "milestone_type", "milestone_value",
            name="uq_celebrations_student_milestone",
        ),
        Index("ix_celebrations_classroom", "tenant_id", "classroom_id", "achieved_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str] = mapped_column(String(36), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)

    milestone_type: Mapped[str] = mapped_column(String(32), nullable=False)
    milestone_value: Mapped[int] = mapped_column(Integer, nullable=False)
    milestone_name: Mapped[str] = mapped_column(String(128), nullable=False)

    title: Mapped[str] = mapped_column(String(128), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)
    animation_type: Mapped[str] = mapped_column(String(16), nullable=False)

    certificate_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    class_announced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    achieved_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class BehaviourStreak(Base):
    """Consecutive-day positive-award streak, one row per learner, never deleted."""

    __tablename__ = "behaviour_streaks"

    student_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    classroom_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    streak_type: Mapped[str] = mapped_column(String(32), nullable=False, default="daily_positive")

    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak_start: Mapped[date] = mapped_column(Date, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak_start: Mapped[date] = mapped_column(Date, nullable=False)
    longest_streak_end: Mapped[date] = mapped_column(Date, nullable=False)

    # School-local calendar day of the last positive award
    last_point_day: Mapped[date] = mapped_column(Date, nullable=False)
    last_point_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    milestones_achieved: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
