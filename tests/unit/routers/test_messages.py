"""Task message thread tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import (
    api_key_headers,
    apply_to_task,
    bearer_headers,
    create_task,
    register_agent,
    register_human,
    setup_assigned_task,
)


async def _post(client, headers, task_id, content, **extra):
    body = {"task_id": task_id, "content": content, **extra}
    return await client.post("/messages", json=body, headers=headers)


class TestMessageAccess:
    """Who may read and write a task's messages: MSG-01 to MSG-05."""

    @pytest.mark.unit
    async def test_msg_01_requires_credentials(self, client):
        """MSG-01: Anonymous reads and writes are 401."""
        ctx = await setup_assigned_task(client)
        read = await client.get("/messages", params={"task_id": ctx["task_id"]})
        write = await client.post("/messages", json={"task_id": ctx["task_id"], "content": "hi"})
        assert read.status_code == 401
        assert write.status_code == 401

    @pytest.mark.unit
    async def test_msg_02_task_id_required(self, client):
        """MSG-02: Both endpoints need a task_id."""
        ctx = await setup_assigned_task(client)
        headers = api_key_headers(ctx["api_key"])
        read = await client.get("/messages", headers=headers)
        write = await client.post("/messages", json={"content": "hi"}, headers=headers)
        assert read.status_code == 400
        assert write.status_code == 400
        assert write.json()["error"] == "INVALID_PAYLOAD"

    @pytest.mark.unit
    async def test_msg_03_unknown_task(self, client):
        """MSG-03: An unknown task is 404."""
        agent = await register_agent(client)
        response = await client.get(
            "/messages",
            params={"task_id": "does-not-exist"},
            headers=api_key_headers(agent["api_key"]),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "TASK_NOT_FOUND"

    @pytest.mark.unit
    async def test_msg_04_unassigned_applicant_forbidden(self, client):
        """MSG-04: An applicant who was not assigned cannot read or post."""
        agent = await register_agent(client)
        chosen = await register_human(client)
        passed_over = await register_human(client)
        task_id = (await create_task(client, agent["api_key"])).json()["id"]
        await apply_to_task(client, chosen["token"], task_id)
        await apply_to_task(client, passed_over["token"], task_id)
        await client.post(
            f"/tasks/{task_id}/assign",
            json={"human_id": chosen["user_id"]},
            headers=api_key_headers(agent["api_key"]),
        )

        headers = bearer_headers(passed_over["token"])
        read = await client.get("/messages", params={"task_id": task_id}, headers=headers)
        write = await _post(client, headers, task_id, "Can I help?")
        assert read.status_code == 403
        assert write.status_code == 403
        assert write.json()["error"] == "FORBIDDEN"

    @pytest.mark.unit
    async def test_msg_05_other_agent_forbidden(self, client):
        """MSG-05: Another agent cannot read the thread."""
        ctx = await setup_assigned_task(client)
        stranger = await register_agent(client, name="Nosy Bot")
        response = await client.get(
            "/messages",
            params={"task_id": ctx["task_id"]},
            headers=api_key_headers(stranger["api_key"]),
        )
        assert response.status_code == 403


class TestMessageThread:
    """Posting and reading: MSG-06 to MSG-10."""

    @pytest.mark.unit
    async def test_msg_06_conversation_oldest_first(self, client):
        """MSG-06: Both parties post, and the thread reads back in posting order."""
        ctx = await setup_assigned_task(client)
        agent_headers = api_key_headers(ctx["api_key"])
        human_headers = bearer_headers(ctx["token"])

        first = await _post(client, agent_headers, ctx["task_id"], "Parcel is at desk 3")
        assert first.status_code == 201
        assert first.json()["sender_id"] == ctx["agent_id"]
        await _post(client, human_headers, ctx["task_id"], "On my way")
        await _post(client, agent_headers, ctx["task_id"], "Thanks")

        response = await client.get(
            "/messages", params={"task_id": ctx["task_id"]}, headers=human_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["task_id"] == ctx["task_id"]
        assert [m["content"] for m in data["messages"]] == [
            "Parcel is at desk 3",
            "On my way",
            "Thanks",
        ]
        assert [m["sender_type"] for m in data["messages"]] == ["agent", "human", "agent"]
        assert data["messages"][0]["sender_name"] == "Courier Bot"
        assert data["messages"][1]["sender_name"] == "Test Operator"

    @pytest.mark.unit
    async def test_msg_07_detail_counts_messages(self, client):
        """MSG-07: Task detail reports how many messages were posted."""
        ctx = await setup_assigned_task(client)
        await _post(client, api_key_headers(ctx["api_key"]), ctx["task_id"], "Hello")
        await _post(client, bearer_headers(ctx["token"]), ctx["task_id"], "Hi")

        detail = (await client.get(f"/tasks/{ctx['task_id']}")).json()
        assert detail["messages_count"] == 2

    @pytest.mark.unit
    async def test_msg_08_attachments_stored(self, client):
        """MSG-08: Attachments default to empty and round-trip when given."""
        ctx = await setup_assigned_task(client)
        headers = bearer_headers(ctx["token"])
        plain = await _post(client, headers, ctx["task_id"], "No photo yet")
        assert plain.json()["attachments"] == []

        await _post(client, headers, ctx["task_id"], "Photo", attachments=["ipfs://photo-1"])
        messages = (
            await client.get("/messages", params={"task_id": ctx["task_id"]}, headers=headers)
        ).json()["messages"]
        assert messages[1]["attachments"] == ["ipfs://photo-1"]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "extra",
        [
            {"content": ""},
            {"content": "   "},
            {"content": 42},
            {"content": "x" * 5001},
            {"content": "ok", "attachments": "ipfs://photo"},
            {"content": "ok", "attachments": [1, 2]},
        ],
    )
    async def test_msg_09_invalid_message_body(self, client, extra):
        """MSG-09: Empty, oversized or malformed messages are 400 and not stored."""
        ctx = await setup_assigned_task(client)
        headers = api_key_headers(ctx["api_key"])
        response = await client.post(
            "/messages", json={"task_id": ctx["task_id"], **extra}, headers=headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"

        detail = (await client.get(f"/tasks/{ctx['task_id']}")).json()
        assert detail["messages_count"] == 0

    @pytest.mark.unit
    async def test_msg_10_requires_json_body(self, client):
        """MSG-10: A non-JSON body on POST /messages is 415."""
        ctx = await setup_assigned_task(client)
        response = await client.post(
            "/messages",
            content=b"content=hi",
            headers={"Content-Type": "text/plain", **api_key_headers(ctx["api_key"])},
        )
        assert response.status_code == 415
