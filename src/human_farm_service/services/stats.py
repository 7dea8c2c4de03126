"""Aggregate counters for the earn pages and the admin dashboard."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from human_farm_service.core.exceptions import ServiceError
from human_farm_service.services.lifecycle import PAYMENT_STATUSES, TASK_STATUSES

if TYPE_CHECKING:
    from human_farm_service.services.authenticator import Principal
    from human_farm_service.services.task_store import TaskStore
    from human_farm_service.services.user_store import UserStore

REFERRAL_MILESTONES: tuple[int, ...] = (5, 10, 15, 20)
USER_GROWTH_DAYS = 30


class StatsService:
    """Computes aggregates by scanning exported columns in memory."""

    def __init__(self, task_store: TaskStore, user_store: UserStore) -> None:
        self._task_store = task_store
        self._user_store = user_store

    def public_stats(self) -> dict[str, Any]:
        points = self._user_store.export_points()
        tasks_by_status = self._task_store.count_tasks_by_status()
        return {
            "total_points_distributed": round(sum(row["total_points"] for row in points)),
            "contributors": sum(1 for row in points if row["submissions_count"] > 0),
            "total_users": self._user_store.count_verified_users(),
            "total_tasks": sum(tasks_by_status.values()),
            "completed_tasks": tasks_by_status.get("completed", 0),
            "open_tasks": tasks_by_status.get("open", 0),
        }

    def admin_stats(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Referral, task, payment and growth figures for operators of the platform.

        ``user_growth`` maps each registration date (YYYY-MM-DD) within the
        last 30 days to the number of users who registered that day.
        """
        current = now if now is not None else datetime.now(UTC)
        points = self._user_store.export_points()
        registration_dates = self._user_store.user_registration_dates()
        total_users = len(registration_dates)

        referral_counts = [row["referral_count"] for row in points]
        total_referrals = self._user_store.count_referrals()
        avg_referrals = total_referrals / total_users if total_users > 0 else 0.0

        cutoff = (current - timedelta(days=USER_GROWTH_DAYS)).isoformat().replace("+00:00", "Z")
        user_growth: dict[str, int] = {}
        for created_at in sorted(registration_dates):
            if created_at < cutoff:
                continue
            day = created_at.split("T")[0]
            user_growth[day] = user_growth.get(day, 0) + 1

        tasks_by_status = {status: 0 for status in TASK_STATUSES}
        tasks_by_status.update(self._task_store.count_tasks_by_status())
        payments_by_status = {status: 0 for status in PAYMENT_STATUSES}
        payments_by_status.update(self._task_store.count_tasks_by_payment_status())

        budgets = self._task_store.export_budget_columns()

        return {
            "total_users": total_users,
            "users_with_referrals": sum(1 for count in referral_counts if count > 0),
            "total_referrals": total_referrals,
            "avg_referrals": round(avg_referrals, 2),
            "milestones": {
                f"reached_{milestone}": sum(1 for count in referral_counts if count >= milestone)
                for milestone in REFERRAL_MILESTONES
            },
            "tasks_by_status": tasks_by_status,
            "payments_by_status": payments_by_status,
            "total_budget_usd": round(sum(budget for budget, _fee in budgets), 2),
            "total_fees_usd": round(sum(fee for _budget, fee in budgets), 2),
            "user_growth": user_growth,
            "generated_at": current.isoformat(timespec="seconds").replace("+00:00", "Z"),
        }

    def user_stats(self, principal: Principal) -> dict[str, Any]:
        """The caller's own points, referral code and referrals, with their leaderboard rank."""
        user = self._user_store.get_user(principal.user_id)
        points = self._user_store.get_points(principal.user_id)
        if user is None or points is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})

        position, ranked_users = self._user_store.points_rank(principal.user_id)
        referrals = self._user_store.list_referrals_by(principal.user_id)
        return {
            "stats": {
                "total_points": points["total_points"],
                "submissions_count": points["submissions_count"],
                "referral_points": points["referral_points"],
                "referral_count": points["referral_count"],
            },
            "referral_code": points["referral_code"],
            "email": user["email"],
            "email_verified": user["email_verified"],
            "twitter_username": user["twitter_username"],
            "referrals": [
                {"id": referral["id"], "created_at": referral["created_at"]}
                for referral in referrals
            ],
            "leaderboard_position": position,
            "total_users": ranked_users,
        }
