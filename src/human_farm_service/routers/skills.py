"""Skill catalogue endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from human_farm_service.catalog import ALL_SKILLS, SKILL_CATEGORIES, TASK_CATEGORIES

router = APIRouter()


@router.get("/skills")
async def list_skills() -> dict[str, Any]:
    """Skill categories, the flat skill list, and the task categories."""
    return {
        "categories": {name: list(skills) for name, skills in SKILL_CATEGORIES.items()},
        "all_skills": list(ALL_SKILLS),
        "task_categories": list(TASK_CATEGORIES),
    }
