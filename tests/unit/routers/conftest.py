"""Router test fixtures: temp config, temp database, and marketplace helpers."""

from __future__ import annotations

import os
import uuid
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from human_farm_service.app import create_app
from human_farm_service.config import clear_settings_cache
from human_farm_service.core.lifespan import lifespan
from human_farm_service.core.state import reset_app_state
from tests.helpers import ADMIN_SECRET, write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database."""
    config_path = write_config(tmp_path)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Authorization header carrying the admin secret."""
    return {"Authorization": f"Bearer {ADMIN_SECRET}"}


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------
def api_key_headers(api_key: str) -> dict[str, str]:
    """Agent credential header."""
    return {"X-API-Key": api_key}


def bearer_headers(token: str) -> dict[str, str]:
    """Session token header."""
    return {"Authorization": f"Bearer {token}"}


async def register_agent(client: AsyncClient, name: str = "Courier Bot") -> dict[str, str]:
    """Register an API-only agent. Returns {"agent_id", "api_key"}."""
    response = await client.post("/agents/register", json={"name": name})
    assert response.status_code == 201
    data = response.json()
    return {"agent_id": data["agent_id"], "api_key": data["api_key"]}


async def register_human(
    client: AsyncClient,
    *,
    verify: bool = True,
    email: str | None = None,
    **profile: Any,
) -> dict[str, str]:
    """Register an operator and optionally verify their email. Returns {"user_id", "token"}."""
    body: dict[str, Any] = {
        "type": "human",
        "email": email or f"op-{uuid.uuid4().hex[:10]}@example.com",
        "password": "correct horse battery",
        "display_name": "Test Operator",
        "hourly_rate_usd": 30,
        "location_city": "Lisbon",
        "location_country": "Portugal",
        "skills": ["photography", "pickups"],
    }
    body.update(profile)
    response = await client.post("/auth/register", json=body)
    assert response.status_code == 201, response.text
    data = response.json()
    if verify:
        verify_response = await client.post(
            "/auth/verify-email", json={"token": data["verification_token"]}
        )
        assert verify_response.status_code == 200
    return {"user_id": data["user"]["id"], "token": data["token"]}


# ---------------------------------------------------------------------------
# Task lifecycle helpers
# ---------------------------------------------------------------------------
async def create_task(client: AsyncClient, api_key: str, **overrides: Any) -> Any:
    """Create a task via POST /tasks and return the response."""
    body: dict[str, Any] = {
        "title": "Pick up a parcel",
        "description": "Collect a parcel from the post office and deliver it.",
        "category": "pickups_deliveries",
        "budget_usd": 50,
        "deadline": "2030-01-01T12:00:00Z",
        "proof_requirements": ["photo of delivered parcel"],
    }
    body.update(overrides)
    return await client.post("/tasks", json=body, headers=api_key_headers(api_key))


async def apply_to_task(client: AsyncClient, token: str, task_id: str, **body: Any) -> Any:
    """Apply via POST /tasks/{task_id}/apply."""
    return await client.post(
        f"/tasks/{task_id}/apply", json=body, headers=bearer_headers(token)
    )


async def assign_task(client: AsyncClient, api_key: str, task_id: str, human_id: str) -> Any:
    """Assign via POST /tasks/{task_id}/assign."""
    return await client.post(
        f"/tasks/{task_id}/assign",
        json={"human_id": human_id},
        headers=api_key_headers(api_key),
    )


async def submit_completion(
    client: AsyncClient,
    token: str,
    task_id: str,
    proof_data: Any = None,
) -> Any:
    """Submit proof via POST /tasks/{task_id}/complete."""
    body = {"proof_data": proof_data if proof_data is not None else {"photo": "ipfs://proof"}}
    return await client.post(
        f"/tasks/{task_id}/complete", json=body, headers=bearer_headers(token)
    )


async def agent_action(
    client: AsyncClient, api_key: str, task_id: str, action: str, **body: Any
) -> Any:
    """POST /tasks/{task_id}/{action} as the agent."""
    return await client.post(
        f"/tasks/{task_id}/{action}", json=body, headers=api_key_headers(api_key)
    )


async def record_escrow(
    client: AsyncClient, api_key: str, task_id: str, action: str, tx_hash: str, **body: Any
) -> Any:
    """POST /escrow as the owning agent."""
    payload: dict[str, Any] = {"task_id": task_id, "action": action, "tx_hash": tx_hash}
    payload.update(body)
    return await client.post("/escrow", json=payload, headers=api_key_headers(api_key))


async def setup_assigned_task(client: AsyncClient) -> dict[str, str]:
    """Create a task, have one operator apply, and assign them.

    Returns {"task_id", "agent_id", "api_key", "human_id", "token"}.
    """
    agent = await register_agent(client)
    human = await register_human(client)
    task_resp = await create_task(client, agent["api_key"])
    task_id = task_resp.json()["id"]
    apply_resp = await apply_to_task(client, human["token"], task_id)
    assert apply_resp.status_code == 201
    assign_resp = await assign_task(client, agent["api_key"], task_id, human["user_id"])
    assert assign_resp.status_code == 200
    return {
        "task_id": task_id,
        "agent_id": agent["agent_id"],
        "api_key": agent["api_key"],
        "human_id": human["user_id"],
        "token": human["token"],
    }


async def setup_task_in_review(client: AsyncClient) -> dict[str, str]:
    """Advance a task to pending_review. Same return shape as setup_assigned_task."""
    ctx = await setup_assigned_task(client)
    response = await submit_completion(client, ctx["token"], ctx["task_id"])
    assert response.status_code == 200
    return ctx
