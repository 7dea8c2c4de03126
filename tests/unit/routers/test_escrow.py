"""Escrow configuration, payment status and event recording tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import (
    agent_action,
    create_task,
    record_escrow,
    register_agent,
    setup_assigned_task,
    setup_task_in_review,
)

DEPOSIT_TX = "0x" + "a" * 64
RELEASE_TX = "0x" + "b" * 64


class TestEscrowConfig:
    """GET /escrow: CFG-01 to CFG-04."""

    @pytest.mark.unit
    async def test_cfg_01_contract_configuration(self, client):
        """CFG-01: Without task_id the contract configuration is returned."""
        response = await client.get("/escrow")
        assert response.status_code == 200
        data = response.json()
        assert data["contract"] == "0xBeb9e10F41e516008313456923B57deE199af65E"
        assert data["chain_id"] == 84532
        assert data["tokens"]["USDC"]["decimals"] == 6

    @pytest.mark.unit
    async def test_cfg_02_payment_status_for_new_task(self, client):
        """CFG-02: A new task awaits its deposit and exposes its bytes32 id."""
        agent = await register_agent(client)
        task_id = (await create_task(client, agent["api_key"])).json()["id"]

        response = await client.get("/escrow", params={"task_id": task_id})
        assert response.status_code == 200
        data = response.json()
        assert data["payment_status"] == "pending_deposit"
        assert data["deposit_tx_hash"] is None
        assert data["bytes32_task_id"].startswith("0x")
        assert len(data["bytes32_task_id"]) == 66

    @pytest.mark.unit
    async def test_cfg_03_unknown_task(self, client):
        """CFG-03: Payment status for a missing task is 404."""
        response = await client.get("/escrow", params={"task_id": "missing"})
        assert response.status_code == 404
        assert response.json()["error"] == "TASK_NOT_FOUND"

    @pytest.mark.unit
    async def test_cfg_04_bytes32_id_is_stable(self, client):
        """CFG-04: The derived id does not change between calls."""
        agent = await register_agent(client)
        task_id = (await create_task(client, agent["api_key"])).json()["id"]
        first = (await client.get("/escrow", params={"task_id": task_id})).json()
        second = (await client.get("/escrow", params={"task_id": task_id})).json()
        assert first["bytes32_task_id"] == second["bytes32_task_id"]


class TestEscrowEvents:
    """POST /escrow: ESC-01 to ESC-12."""

    @pytest.mark.unit
    async def test_esc_01_deposit_then_release(self, client):
        """ESC-01: Deposit escrows funds; release completes task and payment together."""
        ctx = await setup_task_in_review(client)

        deposit = await record_escrow(
            client,
            ctx["api_key"],
            ctx["task_id"],
            "deposit",
            DEPOSIT_TX,
            payment_amount_wei="50000000",
        )
        assert deposit.status_code == 200
        assert deposit.json()["payment_status"] == "escrowed"
        assert deposit.json()["status"] == "pending_review"

        status = (await client.get("/escrow", params={"task_id": ctx["task_id"]})).json()
        assert status["deposit_tx_hash"] == DEPOSIT_TX
        assert status["payment_token"] == "USDC"
        assert status["payment_amount_wei"] == "50000000"
        assert status["escrow_task_id"] == status["bytes32_task_id"]

        release = await record_escrow(client, ctx["api_key"], ctx["task_id"], "release", RELEASE_TX)
        assert release.status_code == 200
        assert release.json()["status"] == "completed"
        assert release.json()["payment_status"] == "released"

        task = (await client.get(f"/tasks/{ctx['task_id']}")).json()
        assert task["status"] == "completed"
        assert task["payment_status"] == "released"
        assert task["release_tx_hash"] == RELEASE_TX
        assert task["completed_at"] is not None

    @pytest.mark.unit
    async def test_esc_02_release_before_deposit(self, client):
        """ESC-02: Release without a deposit is refused and nothing changes."""
        ctx = await setup_task_in_review(client)
        response = await record_escrow(
            client, ctx["api_key"], ctx["task_id"], "release", RELEASE_TX
        )
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATUS"

        status = (await client.get("/escrow", params={"task_id": ctx["task_id"]})).json()
        assert status["payment_status"] == "pending_deposit"
        assert status["release_tx_hash"] is None
        assert status["status"] == "pending_review"

    @pytest.mark.unit
    async def test_esc_03_unknown_action(self, client):
        """ESC-03: An unknown action is 400 and does not touch the task."""
        ctx = await setup_assigned_task(client)
        response = await record_escrow(client, ctx["api_key"], ctx["task_id"], "burn", DEPOSIT_TX)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ACTION"

        status = (await client.get("/escrow", params={"task_id": ctx["task_id"]})).json()
        assert status["payment_status"] == "pending_deposit"
        assert status["deposit_tx_hash"] is None

    @pytest.mark.unit
    @pytest.mark.parametrize("missing", ["task_id", "action", "tx_hash"])
    async def test_esc_04_missing_field(self, client, missing):
        """ESC-04: task_id, action and tx_hash are required."""
        ctx = await setup_assigned_task(client)
        body = {"task_id": ctx["task_id"], "action": "deposit", "tx_hash": DEPOSIT_TX}
        del body[missing]
        response = await client.post("/escrow", json=body, headers={"X-API-Key": ctx["api_key"]})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"

    @pytest.mark.unit
    async def test_esc_05_other_agent_forbidden(self, client):
        """ESC-05: Another agent cannot record events on the task."""
        ctx = await setup_assigned_task(client)
        intruder = await register_agent(client)
        response = await record_escrow(
            client, intruder["api_key"], ctx["task_id"], "deposit", DEPOSIT_TX
        )
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_esc_06_operator_forbidden(self, client):
        """ESC-06: The assigned operator cannot record events either."""
        ctx = await setup_assigned_task(client)
        response = await client.post(
            "/escrow",
            json={"task_id": ctx["task_id"], "action": "deposit", "tx_hash": DEPOSIT_TX},
            headers={"Authorization": f"Bearer {ctx['token']}"},
        )
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_esc_07_admin_secret_allowed(self, client, admin_headers):
        """ESC-07: The admin secret can record events for any task."""
        ctx = await setup_assigned_task(client)
        response = await client.post(
            "/escrow",
            json={"task_id": ctx["task_id"], "action": "deposit", "tx_hash": DEPOSIT_TX},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["payment_status"] == "escrowed"

    @pytest.mark.unit
    async def test_esc_08_no_credentials(self, client):
        """ESC-08: Anonymous event recording is 401."""
        ctx = await setup_assigned_task(client)
        response = await client.post(
            "/escrow",
            json={"task_id": ctx["task_id"], "action": "deposit", "tx_hash": DEPOSIT_TX},
        )
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_esc_09_refund_cancels(self, client):
        """ESC-09: A refund cancels the task and marks the payment refunded."""
        ctx = await setup_assigned_task(client)
        await record_escrow(client, ctx["api_key"], ctx["task_id"], "deposit", DEPOSIT_TX)
        response = await record_escrow(client, ctx["api_key"], ctx["task_id"], "refund", RELEASE_TX)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["payment_status"] == "refunded"

    @pytest.mark.unit
    async def test_esc_10_double_deposit(self, client):
        """ESC-10: A second deposit is refused."""
        ctx = await setup_assigned_task(client)
        await record_escrow(client, ctx["api_key"], ctx["task_id"], "deposit", DEPOSIT_TX)
        response = await record_escrow(
            client, ctx["api_key"], ctx["task_id"], "deposit", "0x" + "c" * 64
        )
        assert response.status_code == 409

        status = (await client.get("/escrow", params={"task_id": ctx["task_id"]})).json()
        assert status["deposit_tx_hash"] == DEPOSIT_TX

    @pytest.mark.unit
    async def test_esc_11_unsupported_token(self, client):
        """ESC-11: Deposits in a token the contract does not accept are refused."""
        ctx = await setup_assigned_task(client)
        response = await record_escrow(
            client, ctx["api_key"], ctx["task_id"], "deposit", DEPOSIT_TX, payment_token="DOGE"
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_TOKEN"

    @pytest.mark.unit
    async def test_esc_12_dispute_freezes_escrow(self, client):
        """ESC-12: Disputing escrowed work moves the payment to disputed; release resolves it."""
        ctx = await setup_task_in_review(client)
        await record_escrow(client, ctx["api_key"], ctx["task_id"], "deposit", DEPOSIT_TX)

        dispute = await agent_action(client, ctx["api_key"], ctx["task_id"], "dispute")
        assert dispute.json()["payment_status"] == "disputed"

        release = await record_escrow(client, ctx["api_key"], ctx["task_id"], "release", RELEASE_TX)
        assert release.status_code == 200
        assert release.json()["status"] == "completed"
        assert release.json()["payment_status"] == "released"
