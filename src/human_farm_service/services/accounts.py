"""Account registration, login, email verification, and wallets."""

from __future__ import annotations

import math
import re
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.logging import get_logger
from human_farm_service.services.authenticator import (
    VERIFY_EMAIL_PURPOSE,
    hash_password,
    verify_password,
)
from human_farm_service.services.user_store import DuplicateEmailError

if TYPE_CHECKING:
    from human_farm_service.services.authenticator import Authenticator, Principal
    from human_farm_service.services.user_store import UserStore

WALLET_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MIN_PASSWORD_LENGTH = 8
_MAX_NAME_LENGTH = 100


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _generate_api_key() -> str:
    return f"hf_{uuid.uuid4().hex}"


def _referral_code_for(user_id: str) -> str:
    return user_id.replace("-", "")[:8]


def _require_string(data: dict[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Missing required field: {field_name}",
            400,
            {},
        )
    return value.strip()


def _optional_string(data: dict[str, Any], field_name: str) -> str | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError("INVALID_PAYLOAD", f"Field '{field_name}' must be a string", 400, {})
    return value.strip()


class AccountManager:
    """Creates human and agent accounts and manages their credentials."""

    def __init__(self, user_store: UserStore, authenticator: Authenticator) -> None:
        self._user_store = user_store
        self._authenticator = authenticator
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse_human_profile(self, data: dict[str, Any], user_id: str) -> dict[str, Any]:
        display_name = _require_string(data, "display_name")
        if len(display_name) > _MAX_NAME_LENGTH:
            raise ServiceError("INVALID_PAYLOAD", "display_name is too long", 400, {})

        rate = data.get("hourly_rate_usd")
        if (
            isinstance(rate, bool)
            or not isinstance(rate, (int, float))
            or not math.isfinite(rate)
            or rate <= 0
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "hourly_rate_usd must be a positive number",
                400,
                {},
            )

        skills = data.get("skills", [])
        if skills is None:
            skills = []
        if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
            raise ServiceError("INVALID_PAYLOAD", "skills must be a list of strings", 400, {})

        return {
            "user_id": user_id,
            "display_name": display_name,
            "bio": _optional_string(data, "bio") or "",
            "avatar_url": None,
            "hourly_rate_usd": float(rate),
            "location_city": _require_string(data, "location_city"),
            "location_country": _require_string(data, "location_country"),
            "skills": skills,
            "verification_level": 0,
            "total_tasks": 0,
            "avg_rating": None,
            "is_active": True,
        }

    def _resolve_referral(
        self, data: dict[str, Any], user_id: str, created_at: str
    ) -> dict[str, Any] | None:
        code = _optional_string(data, "referral_code")
        if not code:
            return None
        referrer_id = self._user_store.get_user_id_by_referral_code(code)
        if referrer_id is None:
            # Unknown codes are ignored rather than failing registration.
            self._logger.info("Unknown referral code", extra={"referral_code": code})
            return None
        return {
            "id": str(uuid.uuid4()),
            "referrer_id": referrer_id,
            "referred_id": user_id,
            "referral_code": code.lower(),
            "created_at": created_at,
        }

    # ------------------------------------------------------------------
    # Public methods
    # ------------------------------------------------------------------

    def register(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Register a human operator or an agent with email and password.

        Error precedence:
        1. INVALID_PAYLOAD: missing/invalid email, password, type, or profile field
        2. EMAIL_EXISTS: email already registered
        """
        user_type = data.get("type")
        if user_type not in ("human", "agent"):
            raise ServiceError("INVALID_PAYLOAD", "type must be 'human' or 'agent'", 400, {})

        email = _require_string(data, "email").lower()
        if _EMAIL_RE.match(email) is None:
            raise ServiceError("INVALID_PAYLOAD", "email is not a valid address", 400, {})

        password = data.get("password")
        if not isinstance(password, str) or len(password) < _MIN_PASSWORD_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"password must be at least {_MIN_PASSWORD_LENGTH} characters",
                400,
                {},
            )

        user_id = str(uuid.uuid4())
        now = _now_iso()

        human_profile: dict[str, Any] | None = None
        agent_profile: dict[str, Any] | None = None
        if user_type == "human":
            human_profile = self._parse_human_profile(data, user_id)
        else:
            agent_profile = {
                "user_id": user_id,
                "name": _require_string(data, "name"),
                "description": _optional_string(data, "description") or "",
                "api_key": _generate_api_key(),
                "total_tasks": 0,
                "total_spent_usd": 0.0,
            }

        referral = self._resolve_referral(data, user_id, now)
        user = {
            "id": user_id,
            "type": user_type,
            "email": email,
            "password_hash": hash_password(password),
            "email_verified": False,
            "email_verified_at": None,
            "wallet_address": None,
            "twitter_username": None,
            "created_at": now,
            "updated_at": now,
        }
        points = {
            "user_id": user_id,
            "referred_by": referral["referrer_id"] if referral is not None else None,
            "referral_code": _referral_code_for(user_id),
            "updated_at": now,
        }

        try:
            self._user_store.create_account(user, human_profile, agent_profile, points, referral)
        except DuplicateEmailError as exc:
            raise ServiceError("EMAIL_EXISTS", "Email is already registered", 409, {}) from exc

        self._logger.info(
            "Account registered",
            extra={"user_id": user_id, "user_type": user_type, "referred": referral is not None},
        )

        result: dict[str, Any] = {
            "user": {"id": user_id, "email": email, "type": user_type},
            "token": self._authenticator.issue_session_token(user),
            "referral_code": points["referral_code"],
        }
        if human_profile is not None:
            result["profile"] = human_profile
            result["verification_token"] = self._authenticator.issue_verification_token(user)
        if agent_profile is not None:
            result["profile"] = {
                "user_id": user_id,
                "name": agent_profile["name"],
                "description": agent_profile["description"],
            }
            result["api_key"] = agent_profile["api_key"]
        return result

    def register_agent(self, data: dict[str, Any]) -> dict[str, Any]:
        """Register an API-only agent account (no email or password)."""
        name = _require_string(data, "name")
        user_id = str(uuid.uuid4())
        now = _now_iso()
        api_key = _generate_api_key()
        user = {
            "id": user_id,
            "type": "agent",
            "email": None,
            "password_hash": None,
            "email_verified": False,
            "email_verified_at": None,
            "wallet_address": None,
            "twitter_username": None,
            "created_at": now,
            "updated_at": now,
        }
        agent_profile = {
            "user_id": user_id,
            "name": name,
            "description": _optional_string(data, "description") or "",
            "api_key": api_key,
            "total_tasks": 0,
            "total_spent_usd": 0.0,
        }
        points = {
            "user_id": user_id,
            "referred_by": None,
            "referral_code": _referral_code_for(user_id),
            "updated_at": now,
        }
        self._user_store.create_account(user, None, agent_profile, points, None)
        self._logger.info("Agent registered", extra={"user_id": user_id})
        return {"agent_id": user_id, "api_key": api_key, "name": name}

    def login(self, data: dict[str, Any]) -> dict[str, Any]:
        """Exchange email and password for a session token."""
        email = _require_string(data, "email")
        password = data.get("password")
        if not isinstance(password, str) or not password:
            raise ServiceError("INVALID_PAYLOAD", "Missing required field: password", 400, {})

        user = self._user_store.get_user_by_email(email)
        if (
            user is None
            or user["password_hash"] is None
            or not verify_password(password, user["password_hash"])
        ):
            raise ServiceError("INVALID_CREDENTIALS", "Invalid email or password", 401, {})

        return {
            "user": {
                "id": user["id"],
                "email": user["email"],
                "type": user["type"],
                "email_verified": user["email_verified"],
            },
            "token": self._authenticator.issue_session_token(user),
        }

    def verify_email(self, token: str) -> dict[str, Any]:
        """Mark the token's user as verified. The token's email must still match."""
        claims = self._authenticator.decode_token(token, VERIFY_EMAIL_PURPOSE)
        user = self._user_store.get_user(claims["sub"])
        if user is None or user["email"] != claims.get("email"):
            raise ServiceError("INVALID_TOKEN", "Invalid or expired token", 401, {})

        if not user["email_verified"]:
            self._user_store.mark_email_verified(user["id"], _now_iso())
            self._logger.info("Email verified", extra={"user_id": user["id"]})
        return {"user_id": user["id"], "email_verified": True}

    def get_wallet(self, principal: Principal) -> dict[str, Any]:
        """Return the caller's wallet address (or null)."""
        user = self._user_store.get_user(principal.user_id)
        if user is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return {"wallet_address": user["wallet_address"]}

    def set_wallet(self, principal: Principal, data: dict[str, Any]) -> dict[str, Any]:
        """Store an EVM wallet address for the caller."""
        address = data.get("wallet_address")
        if not isinstance(address, str) or WALLET_ADDRESS_RE.match(address) is None:
            raise ServiceError("INVALID_WALLET", "Invalid wallet address", 400, {})
        self._user_store.set_wallet_address(principal.user_id, address, _now_iso())
        return {"wallet_address": address}
