"""Skill catalogue endpoint tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import create_task, register_agent


@pytest.mark.unit
async def test_skills_catalogue(client):
    """GET /skills returns categories, the flat list, and task categories."""
    response = await client.get("/skills")
    assert response.status_code == 200
    data = response.json()

    assert "photography" in data["categories"]["professional"]
    flat = {skill for skills in data["categories"].values() for skill in skills}
    assert set(data["all_skills"]) == flat
    assert "pickups_deliveries" in data["task_categories"]


@pytest.mark.unit
async def test_task_categories_match_creation_rules(client):
    """Every advertised task category is accepted by task creation."""
    agent = await register_agent(client)
    categories = (await client.get("/skills")).json()["task_categories"]
    for category in categories:
        response = await create_task(client, agent["api_key"], category=category)
        assert response.status_code == 201, category
