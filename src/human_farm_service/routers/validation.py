"""Shared request validation helpers for marketplace routers."""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Any

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from human_farm_service.services.authenticator import Authenticator, Principal


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    if raw_body == b"":
        return {}
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an Authorization header, or None if absent."""
    if authorization is None:
        return None

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :]
    if not token:
        raise ServiceError(
            "UNAUTHORIZED",
            "Bearer token must not be empty",
            401,
            {},
        )

    return token


def get_authenticator() -> Authenticator:
    state = get_app_state()
    if state.authenticator is None:
        msg = "Authenticator not initialized"
        raise RuntimeError(msg)
    return state.authenticator


def require_principal(request: Request) -> Principal:
    """Resolve the caller; missing credentials are a 401."""
    bearer = extract_bearer_token(request.headers.get("authorization"))
    api_key = request.headers.get("x-api-key")
    return get_authenticator().require_principal(bearer, api_key)


def is_admin_request(request: Request) -> bool:
    """Check whether the request carries the admin secret as its bearer token."""
    authorization = request.headers.get("authorization")
    if authorization is None or not authorization.startswith("Bearer "):
        return False
    return get_authenticator().is_admin(authorization[len("Bearer ") :])


def parse_int_param(request: Request, name: str, *, minimum: int) -> int | None:
    """Read an optional integer query parameter with a lower bound."""
    raw = request.query_params.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc
    if value < minimum:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be >= {minimum}", 400, {})
    return value


def parse_float_param(request: Request, name: str) -> float | None:
    """Read an optional finite numeric query parameter."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be a number", 400, {}) from exc
    if not math.isfinite(value):
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be a finite number", 400, {})
    return value
