"""Skill library: the default behaviour catalog, bounds validation, seeding and custom skills."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from explorer.config import get_settings
from explorer.db.models import BehaviourSkill
from explorer.errors import NotFoundError, ValidationError, require_id
from explorer.points import repository

logger = logging.getLogger(__name__)

SKILL_CATEGORIES = (
    "core_values",
    "social_emotional",
    "academic",
    "self_regulation",
    "physical",
    "creative",
    "collaboration",
    "independence",
    "custom",
)

ALL_AGES = ["toddler", "nursery", "pre_k", "kindergarten", "year_1", "year_2"]

DEFAULT_SKILLS: list[dict] = [
    # Core values & social
    {
        "name": "Kind Hearts",
        "emoji": "\U0001F496",
        "description": "Showed kindness to others",
        "category": "core_values",
        "default_points": 1, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES,
        "trigger_keywords": ["kind", "nice", "caring", "thoughtful", "considerate", "gentle"],
        "observation_phrases": [
            "helped a friend", "shared with", "comforted", "included someone", "said something nice",
        ],
        "context_indicators": ["social interaction", "helping", "empathy"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.8,
        "sort_order": 1,
    },
    {
        "name": "Helping Hands",
        "emoji": "\U0001F91D",
        "description": "Helped someone without being asked",
        "category": "social_emotional",
        "default_points": 1, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES[1:],
        "trigger_keywords": ["help", "assist", "support", "volunteer"],
        "observation_phrases": ["helped without asking", "offered to help", "assisted classmate", "cleaned up"],
        "context_indicators": ["initiative", "unprompted", "helpful"],
        "expected_frequency": "regular",
        "auto_suggest_confidence": 0.85,
        "sort_order": 2,
    },
    {
        "name": "Super Listener",
        "emoji": "\U0001F442",
        "description": "Listened carefully and followed instructions",
        "category": "self_regulation",
        "default_points": 1, "min_points": 1, "max_points": 2,
        "age_groups": ALL_AGES,
        "trigger_keywords": ["listen", "attention", "focus", "follow instructions", "paying attention"],
        "observation_phrases": [
            "listened carefully", "followed directions", "paid attention", "first time listening",
        ],
        "context_indicators": ["carpet time", "instructions", "group activity"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.75,
        "sort_order": 3,
    },
    # Learning
    {
        "name": "Hard Worker",
        "emoji": "\U0001F4AA",
        "description": "Worked hard and tried their best",
        "category": "academic",
        "default_points": 1, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES[1:],
        "trigger_keywords": ["effort", "try", "persevere", "work hard", "persist", "determination"],
        "observation_phrases": [
            "tried really hard", "kept going", "didn't give up", "put in effort", "worked diligently",
        ],
        "context_indicators": ["challenging task", "learning activity", "persistence"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.8,
        "sort_order": 4,
    },
    {
        "name": "Teamwork Star",
        "emoji": "⭐",
        "description": "Worked well with others as a team",
        "category": "collaboration",
        "default_points": 1, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES[2:],
        "trigger_keywords": ["team", "together", "cooperate", "collaborate", "share"],
        "observation_phrases": ["worked together", "cooperated with group", "shared ideas", "took turns"],
        "context_indicators": ["group work", "team activity", "collaborative"],
        "expected_frequency": "regular",
        "auto_suggest_confidence": 0.8,
        "sort_order": 5,
    },
    {
        "name": "Respectful",
        "emoji": "\U0001F64F",
        "description": "Showed respect for others and belongings",
        "category": "core_values",
        "default_points": 1, "min_points": 1, "max_points": 2,
        "age_groups": ALL_AGES[1:],
        "trigger_keywords": ["respect", "polite", "manners", "careful", "considerate"],
        "observation_phrases": [
            "said please and thank you", "treated carefully", "showed respect", "used manners",
        ],
        "context_indicators": ["materials", "classroom", "interactions"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.75,
        "sort_order": 6,
    },
    {
        "name": "Brave Learner",
        "emoji": "\U0001F981",
        "description": "Tried something new or challenging",
        "category": "independence",
        "default_points": 2, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES,
        "trigger_keywords": ["brave", "try new", "challenge", "courage", "risk"],
        "observation_phrases": [
            "tried something new", "faced a fear", "stepped out of comfort zone", "took a risk",
        ],
        "context_indicators": ["new activity", "challenging", "first time"],
        "expected_frequency": "occasional",
        "auto_suggest_confidence": 0.85,
        "sort_order": 7,
    },
    {
        "name": "Creative Mind",
        "emoji": "\U0001F3A8",
        "description": "Showed creativity and imagination",
        "category": "creative",
        "default_points": 1, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES,
        "trigger_keywords": ["creative", "imagine", "invent", "original", "artistic"],
        "observation_phrases": [
            "made something creative", "used imagination", "thought of a new way", "creative solution",
        ],
        "context_indicators": ["art", "building", "problem solving", "play"],
        "expected_frequency": "regular",
        "auto_suggest_confidence": 0.75,
        "sort_order": 8,
    },
    {
        "name": "Problem Solver",
        "emoji": "\U0001F9E9",
        "description": "Solved a problem independently",
        "category": "academic",
        "default_points": 2, "min_points": 1, "max_points": 3,
        "age_groups": ALL_AGES[2:],
        "trigger_keywords": ["solve", "figure out", "work out", "solution", "think"],
        "observation_phrases": ["solved independently", "figured it out", "found a solution", "worked through"],
        "context_indicators": ["challenge", "puzzle", "conflict resolution"],
        "expected_frequency": "occasional",
        "auto_suggest_confidence": 0.8,
        "sort_order": 9,
    },
    # Routines
    {
        "name": "Tidy Up Champion",
        "emoji": "\U0001F9F9",
        "description": "Cleaned up without being asked",
        "category": "independence",
        "default_points": 1, "min_points": 1, "max_points": 2,
        "age_groups": ALL_AGES,
        "trigger_keywords": ["tidy", "clean", "pack away", "organize"],
        "observation_phrases": ["tidied up", "cleaned without asking", "packed away", "kept area clean"],
        "context_indicators": ["transition", "end of activity", "independent"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.85,
        "sort_order": 10,
    },
    {
        "name": "Safe Choices",
        "emoji": "\U0001F6E1️",
        "description": "Made safe choices for self and others",
        "category": "self_regulation",
        "default_points": 1, "min_points": 1, "max_points": 2,
        "age_groups": ALL_AGES,
        "trigger_keywords": ["safe", "careful", "cautious", "sensible"],
        "observation_phrases": ["made a safe choice", "being careful", "keeping others safe", "walking feet"],
        "context_indicators": ["playground", "transitions", "physical activity"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.8,
        "sort_order": 11,
    },
    {
        "name": "Sharing Star",
        "emoji": "\U0001F917",
        "description": "Shared toys or materials with others",
        "category": "social_emotional",
        "default_points": 1, "min_points": 1, "max_points": 2,
        "age_groups": ALL_AGES[:4],
        "trigger_keywords": ["share", "turn", "give", "offer"],
        "observation_phrases": ["shared toys", "took turns", "offered to share", "let friend use"],
        "context_indicators": ["play time", "resources", "materials"],
        "expected_frequency": "frequent",
        "auto_suggest_confidence": 0.85,
        "sort_order": 12,
    },
    # Constructive feedback, off until a school opts in
    {
        "name": "Needs Reminder",
        "emoji": "\U0001F4AD",
        "description": "Needed a reminder about expectations",
        "category": "self_regulation",
        "is_positive": False,
        "default_points": -1, "min_points": -1, "max_points": -1,
        "age_groups": ALL_AGES[2:],
        "trigger_keywords": ["reminder", "redirect", "refocus"],
        "observation_phrases": ["needed reminder", "required redirection", "off task"],
        "context_indicators": ["distraction", "behaviour", "attention"],
        "expected_frequency": "occasional",
        "auto_suggest_confidence": 0.7,
        "is_active": False,
        "sort_order": 100,
    },
]


def validate_skill_bounds(default_points: int, min_points: int, max_points: int, is_positive: bool) -> None:
    """Raise ValidationError unless min <= default <= max and every bound has the skill's sign."""
    if not min_points <= default_points <= max_points:
        raise ValidationError(
            f"skill bounds must satisfy min <= default <= max, got {min_points}/{default_points}/{max_points}"
        )
    bounds = (min_points, default_points, max_points)
    if is_positive and any(p <= 0 for p in bounds):
        raise ValidationError("positive skills must have point bounds above zero")
    if not is_positive and any(p >= 0 for p in bounds):
        raise ValidationError("constructive skills must have point bounds below zero")


def validate_confidence_threshold(value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"auto_suggest_confidence must be within [0, 1], got {value}")


async def initialize_school_skills(
    db: AsyncSession,
    tenant_id: str,
    school_id: str,
    now: datetime | None = None,
) -> list[BehaviourSkill]:
    """Seed the default catalog for a school. Returns the existing skills if already seeded."""
    tenant_id = require_id(tenant_id, "tenant_id")
    school_id = require_id(school_id, "school_id")

    existing = await repository.list_skills(db, tenant_id, school_id)
    if existing:
        return existing

    if now is None:
        now = datetime.now(timezone.utc)

    skills = []
    for entry in DEFAULT_SKILLS:
        data = {"is_positive": True, "is_active": True, **copy.deepcopy(entry)}
        validate_skill_bounds(data["default_points"], data["min_points"], data["max_points"], data["is_positive"])
        skills.append(BehaviourSkill(
            tenant_id=tenant_id,
            school_id=school_id,
            is_system=True,
            is_custom=False,
            created_at=now,
            updated_at=now,
            **data,
        ))

    await repository.add_skills(db, skills)
    await db.commit()
    logger.info("Seeded %d default skills for school %s", len(skills), school_id)
    return skills


async def create_custom_skill(
    db: AsyncSession,
    tenant_id: str,
    school_id: str,
    classroom_id: str,
    created_by: str,
    name: str,
    emoji: str,
    description: str = "",
    default_points: int = 1,
    now: datetime | None = None,
    max_custom: int | None = None,
) -> BehaviourSkill:
    """Create a teacher-defined positive skill for one classroom.

    Keywords are derived from the name; points range from 1 to three times the default.
    """
    tenant_id = require_id(tenant_id, "tenant_id")
    school_id = require_id(school_id, "school_id")
    classroom_id = require_id(classroom_id, "classroom_id")
    created_by = require_id(created_by, "created_by")
    name = require_id(name, "name")

    if max_custom is None:
        max_custom = get_settings().max_custom_skills_per_classroom

    max_points = default_points * 3
    validate_skill_bounds(default_points, 1, max_points, True)

    count = await repository.count_custom_skills(db, tenant_id, classroom_id)
    if count >= max_custom:
        raise ValidationError(f"maximum of {max_custom} custom skills per classroom reached")

    if now is None:
        now = datetime.now(timezone.utc)

    skill = BehaviourSkill(
        tenant_id=tenant_id,
        school_id=school_id,
        classroom_id=classroom_id,
        name=name,
        emoji=emoji,
        description=description,
        category="custom",
        is_positive=True,
        default_points=default_points,
        min_points=1,
        max_points=max_points,
        age_groups=list(ALL_AGES),
        trigger_keywords=name.lower().split(),
        observation_phrases=[],
        context_indicators=[],
        expected_frequency="regular",
        auto_suggest_confidence=0.7,
        is_active=True,
        sort_order=100 + count,
        is_system=False,
        is_custom=True,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    await repository.add_skills(db, [skill])
    await db.commit()
    logger.info("Custom skill %r created in classroom %s by %s", name, classroom_id, created_by)
    return skill


async def set_skill_active(
    db: AsyncSession,
    skill_id: str,
    is_active: bool,
    now: datetime | None = None,
) -> BehaviourSkill:
    """Soft-activate or deactivate a skill. Skills are never deleted."""
    skill = await repository.get_skill(db, require_id(skill_id, "skill_id"))
    if skill is None:
        raise NotFoundError("skill", skill_id)
    if skill.is_active == is_active:
        return skill

    await repository.set_skill_activation(db, skill, is_active, now or datetime.now(timezone.utc))
    await db.commit()
    logger.info("Skill %s %s", skill_id, "activated" if is_active else "deactivated")
    return skill


async def list_classroom_skills(
    db: AsyncSession,
    tenant_id: str,
    school_id: str,
    classroom_id: str,
    include_inactive: bool = False,
) -> list[BehaviourSkill]:
    """School-wide skills plus the classroom's custom ones, in display order."""
    return await repository.list_skills(
        db,
        require_id(tenant_id, "tenant_id"),
        require_id(school_id, "school_id"),
        require_id(classroom_id, "classroom_id"),
        active_only=not include_inactive,
    )
