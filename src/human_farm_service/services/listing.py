"""Filtered, paginated views over tasks and the operator directory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.services.lifecycle import TASK_STATUSES

if TYPE_CHECKING:
    from human_farm_service.services.task_store import TaskStore
    from human_farm_service.services.user_store import UserStore

RECENT_REVIEWS_LIMIT = 10

_PUBLIC_HUMAN_FIELDS: tuple[str, ...] = (
    "user_id",
    "display_name",
    "bio",
    "avatar_url",
    "hourly_rate_usd",
    "location_city",
    "location_country",
    "skills",
    "verification_level",
    "total_tasks",
    "avg_rating",
    "is_active",
    "wallet_address",
    "twitter_username",
)


def display_name_for(profile: dict[str, Any] | None, user: dict[str, Any]) -> str:
    """Pick the best public name: profile name, @twitter, short wallet, then a generic label."""
    if profile is not None and profile.get("display_name"):
        return str(profile["display_name"])
    if user.get("twitter_username"):
        return f"@{user['twitter_username']}"
    wallet = user.get("wallet_address")
    if wallet:
        return f"{wallet[:6]}...{wallet[-4:]}"
    return f"Operator {user['id'][:8]}"


class ListingService:
    """
    Read-side queries for browsing.

    Filters are applied before pagination, so ``total`` always counts the
    filtered set and a page is short only at the end of the results.
    """

    def __init__(
        self,
        task_store: TaskStore,
        user_store: UserStore,
        default_limit: int,
        max_limit: int,
    ) -> None:
        self._task_store = task_store
        self._user_store = user_store
        self._default_limit = default_limit
        self._max_limit = max_limit

    def _page(self, limit: int | None, offset: int | None) -> tuple[int, int]:
        resolved_limit = self._default_limit if limit is None else min(limit, self._max_limit)
        resolved_offset = 0 if offset is None else offset
        return resolved_limit, resolved_offset

    def list_tasks(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        agent_id: str | None = None,
        human_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        """Tasks newest first, with agent/operator names and application counts."""
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Unknown status filter: {status}",
                400,
                {"allowed": list(TASK_STATUSES)},
            )

        resolved_limit, resolved_offset = self._page(limit, offset)
        filters = {
            "status": status,
            "category": category,
            "agent_id": agent_id,
            "human_id": human_id,
        }
        return {
            "tasks": self._task_store.list_tasks(filters, resolved_limit, resolved_offset),
            "total": self._task_store.count_tasks(filters),
            "limit": resolved_limit,
            "offset": resolved_offset,
        }

    def list_humans(
        self,
        *,
        skills: list[str] | None = None,
        location: str | None = None,
        max_rate: float | None = None,
        min_rating: float | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        """Active, verified operators matching every supplied filter."""
        resolved_limit, resolved_offset = self._page(limit, offset)
        needle = location.lower() if location else None
        wanted_skills = set(skills or [])

        matches: list[dict[str, Any]] = []
        for human in self._user_store.list_public_humans():
            if max_rate is not None and human["hourly_rate_usd"] > max_rate:
                continue
            if min_rating is not None and (
                human["avg_rating"] is None or human["avg_rating"] < min_rating
            ):
                continue
            if needle is not None and (
                needle not in human["location_city"].lower()
                and needle not in human["location_country"].lower()
            ):
                continue
            if wanted_skills and wanted_skills.isdisjoint(human["skills"]):
                continue
            matches.append({field: human[field] for field in _PUBLIC_HUMAN_FIELDS})

        return {
            "humans": matches[resolved_offset : resolved_offset + resolved_limit],
            "total": len(matches),
            "limit": resolved_limit,
            "offset": resolved_offset,
        }

    def get_human(self, user_id: str) -> dict[str, Any]:
        """Public operator profile with recent reviews and completed-task counts."""
        user = self._user_store.get_user(user_id)
        if user is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        if not user["email_verified"]:
            raise ServiceError("USER_NOT_FOUND", "This profile is not yet activated", 404, {})

        profile = self._user_store.get_human_profile(user_id)

        task_stats: dict[str, int] = {}
        for category in self._task_store.completed_categories_for_human(user_id):
            task_stats[category] = task_stats.get(category, 0) + 1

        return {
            "user_id": user["id"],
            "display_name": display_name_for(profile, user),
            "bio": profile["bio"] if profile is not None else None,
            "avatar_url": profile["avatar_url"] if profile is not None else None,
            "hourly_rate_usd": profile["hourly_rate_usd"] if profile is not None else 0,
            "location_city": profile["location_city"] if profile is not None else None,
            "location_country": profile["location_country"] if profile is not None else None,
            "skills": profile["skills"] if profile is not None else [],
            # A verified email counts as level 1 until a higher level is granted.
            "verification_level": max(
                profile["verification_level"] if profile is not None else 0, 1
            ),
            "total_tasks": profile["total_tasks"] if profile is not None else 0,
            "avg_rating": profile["avg_rating"] if profile is not None else None,
            "is_active": profile["is_active"] if profile is not None else True,
            "wallet_address": user["wallet_address"],
            "twitter_username": user["twitter_username"],
            "member_since": user["created_at"],
            "reviews": self._task_store.list_reviews_for(user_id, RECENT_REVIEWS_LIMIT),
            "task_stats": [
                {"category": category, "count": count} for category, count in task_stats.items()
            ],
        }
