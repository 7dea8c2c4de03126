"""Shared test helpers: config files and direct store fixtures."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

JWT_SECRET = "test-jwt-secret-0123456789abcdef0123456789abcdef"
ADMIN_SECRET = "test-admin-secret"


def write_config(
    tmp_path: Path,
    *,
    admin_secret: str | None = ADMIN_SECRET,
    max_body_size: int = 1048576,
    default_limit: int = 20,
    max_limit: int = 100,
) -> Path:
    """Write a complete config.yaml under tmp_path and return its path."""
    db_path = tmp_path / "test.db"
    log_dir = tmp_path / "logs"
    admin_line = f'"{admin_secret}"' if admin_secret is not None else "null"
    config_content = f"""\
service:
  name: "human-farm"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8000
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
request:
  max_body_size: {max_body_size}
auth:
  jwt_secret: "{JWT_SECRET}"
  token_ttl_seconds: 3600
  verification_ttl_seconds: 3600
  admin_secret: {admin_line}
escrow:
  contract_address: "0xBeb9e10F41e516008313456923B57deE199af65E"
  chain_id: 84532
  chain_name: "Base Sepolia"
  rpc_url: "https://sepolia.base.org"
  explorer_url: "https://sepolia.basescan.org"
  default_token: "USDC"
  tokens:
    - symbol: "USDC"
      address: "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
      decimals: 6
    - symbol: "ETH"
      address: "0x0000000000000000000000000000000000000000"
      decimals: 18
listing:
  default_limit: {default_limit}
  max_limit: {max_limit}
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


def iso(moment: datetime) -> str:
    """Format a datetime the way the service stores timestamps."""
    return moment.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def user_row(user_id: str, user_type: str, **overrides: Any) -> dict[str, Any]:
    """A users row ready for UserStore.create_account."""
    now = iso(datetime.now(UTC))
    row: dict[str, Any] = {
        "id": user_id,
        "type": user_type,
        "email": f"{user_id}@example.com",
        "password_hash": None,
        "email_verified": True,
        "email_verified_at": now,
        "wallet_address": None,
        "twitter_username": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def human_profile_row(user_id: str, **overrides: Any) -> dict[str, Any]:
    """A human_profiles row."""
    row: dict[str, Any] = {
        "user_id": user_id,
        "display_name": f"Operator {user_id}",
        "bio": "",
        "avatar_url": None,
        "hourly_rate_usd": 25.0,
        "location_city": "Berlin",
        "location_country": "Germany",
        "skills": ["photography"],
        "verification_level": 1,
        "total_tasks": 0,
        "avg_rating": None,
        "is_active": True,
    }
    row.update(overrides)
    return row


def agent_profile_row(user_id: str, **overrides: Any) -> dict[str, Any]:
    """An agent_profiles row."""
    row: dict[str, Any] = {
        "user_id": user_id,
        "name": f"Agent {user_id}",
        "description": "",
        "api_key": f"hf_{uuid.uuid4().hex}",
        "total_tasks": 0,
        "total_spent_usd": 0.0,
    }
    row.update(overrides)
    return row


def points_row(user_id: str, referred_by: str | None = None) -> dict[str, Any]:
    """A user_points row."""
    return {
        "user_id": user_id,
        "referred_by": referred_by,
        "referral_code": user_id.replace("-", "")[:8],
        "updated_at": iso(datetime.now(UTC)),
    }


def task_row(task_id: str, agent_id: str, **overrides: Any) -> dict[str, Any]:
    """A tasks row ready for TaskStore.insert_task."""
    now = datetime.now(UTC)
    row: dict[str, Any] = {
        "id": task_id,
        "agent_id": agent_id,
        "human_id": None,
        "title": f"Task {task_id}",
        "description": "Pick up a parcel",
        "category": "pickups_deliveries",
        "status": "open",
        "budget_usd": 50.0,
        "platform_fee_usd": 2.5,
        "deadline": iso(now + timedelta(days=2)),
        "location_required": False,
        "location_lat": None,
        "location_lng": None,
        "location_address": None,
        "proof_requirements": ["photo"],
        "payment_status": "pending_deposit",
        "escrow_contract_address": None,
        "escrow_task_id": None,
        "payment_token": None,
        "payment_amount_wei": None,
        "payment_chain_id": None,
        "deposit_tx_hash": None,
        "release_tx_hash": None,
        "created_at": iso(now),
        "updated_at": iso(now),
        "assigned_at": None,
        "completed_at": None,
    }
    row.update(overrides)
    return row
