"""SQLite-backed storage for users, profiles, points, and referrals."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from human_farm_service.services.database import Database


class DuplicateEmailError(Exception):
    """Raised when a user is registered with an email that already exists."""


class UserStore:
    """Persistence for accounts and their human/agent profiles."""

    _USER_COLUMNS: tuple[str, ...] = (
        "id",
        "type",
        "email",
        "password_hash",
        "email_verified",
        "email_verified_at",
        "wallet_address",
        "twitter_username",
        "created_at",
        "updated_at",
    )
    _HUMAN_COLUMNS: tuple[str, ...] = (
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
    )
    _AGENT_COLUMNS: tuple[str, ...] = (
        "user_id",
        "name",
        "description",
        "api_key",
        "total_tasks",
        "total_spent_usd",
    )

    def __init__(self, database: Database) -> None:
        self._database = database

    @staticmethod
    def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
        return (
            f"INSERT INTO {table} ("  # nosec B608
            + ", ".join(columns)
            + ") VALUES ("
            + ", ".join("?" for _ in columns)
            + ")"
        )

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        user = {column: row[column] for column in self._USER_COLUMNS}
        user["email_verified"] = bool(user["email_verified"])
        return user

    def _row_to_human(self, row: sqlite3.Row) -> dict[str, Any]:
        profile = {column: row[column] for column in self._HUMAN_COLUMNS}
        profile["skills"] = json.loads(profile["skills"])
        profile["is_active"] = bool(profile["is_active"])
        return profile

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def create_account(
        self,
        user: dict[str, Any],
        human_profile: dict[str, Any] | None,
        agent_profile: dict[str, Any] | None,
        points: dict[str, Any],
        referral: dict[str, Any] | None,
    ) -> None:
        """Insert a user, its profile, its points row and an optional referral atomically."""
        try:
            with self._database.transaction() as conn:
                user_row = dict(user)
                user_row["email_verified"] = int(bool(user_row["email_verified"]))
                conn.execute(
                    self._insert_sql("users", self._USER_COLUMNS),
                    tuple(user_row[column] for column in self._USER_COLUMNS),
                )
                if human_profile is not None:
                    human_row = dict(human_profile)
                    human_row["skills"] = json.dumps(human_row["skills"])
                    human_row["is_active"] = int(bool(human_row["is_active"]))
                    conn.execute(
                        self._insert_sql("human_profiles", self._HUMAN_COLUMNS),
                        tuple(human_row[column] for column in self._HUMAN_COLUMNS),
                    )
                if agent_profile is not None:
                    conn.execute(
                        self._insert_sql("agent_profiles", self._AGENT_COLUMNS),
                        tuple(agent_profile[column] for column in self._AGENT_COLUMNS),
                    )
                conn.execute(
                    "INSERT INTO user_points (user_id, total_points, submissions_count, "
                    "referral_points, referral_count, referred_by, referral_code, updated_at) "
                    "VALUES (?, 0, 0, 0, 0, ?, ?, ?)",
                    (
                        points["user_id"],
                        points["referred_by"],
                        points["referral_code"],
                        points["updated_at"],
                    ),
                )
                if referral is not None:
                    conn.execute(
                        "INSERT INTO referrals (id, referrer_id, referred_id, referral_code, "
                        "created_at) VALUES (?, ?, ?, ?, ?)",
                        (
                            referral["id"],
                            referral["referrer_id"],
                            referral["referred_id"],
                            referral["referral_code"],
                            referral["created_at"],
                        ),
                    )
                    conn.execute(
                        "UPDATE user_points SET referral_count = referral_count + 1, "
                        "updated_at = ? WHERE user_id = ?",
                        (referral["created_at"], referral["referrer_id"]),
                    )
        except sqlite3.IntegrityError as exc:
            if "users.email" in str(exc):
                raise DuplicateEmailError("Email is already registered") from exc
            raise

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user by ID."""
        row = self._database.fetchone(
            "SELECT " + ", ".join(self._USER_COLUMNS) + " FROM users WHERE id = ?",  # nosec B608
            (user_id,),
        )
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        """Fetch a user by email (case-insensitive)."""
        row = self._database.fetchone(
            "SELECT "
            + ", ".join(self._USER_COLUMNS)
            + " FROM users WHERE lower(email) = lower(?)",  # nosec B608
            (email,),
        )
        if row is None:
            return None
        return self._row_to_user(row)

    def mark_email_verified(self, user_id: str, verified_at: str) -> int:
        """Flag a user's email as verified."""
        return self._database.execute(
            "UPDATE users SET email_verified = 1, email_verified_at = ?, updated_at = ? "
            "WHERE id = ?",
            (verified_at, verified_at, user_id),
        )

    def set_wallet_address(self, user_id: str, wallet_address: str, updated_at: str) -> int:
        """Store the user's wallet address."""
        return self._database.execute(
            "UPDATE users SET wallet_address = ?, updated_at = ? WHERE id = ?",
            (wallet_address, updated_at, user_id),
        )

    def user_registration_dates(self) -> list[str]:
        """Return the created_at timestamp of every user."""
        rows = self._database.fetchall("SELECT created_at FROM users")
        return [str(row[0]) for row in rows]

    def count_verified_users(self) -> int:
        """Count users with a verified email."""
        value = self._database.scalar("SELECT COUNT(*) FROM users WHERE email_verified = 1")
        return int(value) if isinstance(value, int) else 0

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_human_profile(self, user_id: str) -> dict[str, Any] | None:
        """Fetch an operator profile."""
        row = self._database.fetchone(
            "SELECT "
            + ", ".join(self._HUMAN_COLUMNS)
            + " FROM human_profiles WHERE user_id = ?",  # nosec B608
            (user_id,),
        )
        if row is None:
            return None
        return self._row_to_human(row)

    def get_agent_by_api_key(self, api_key: str) -> dict[str, Any] | None:
        """Resolve an API key to its agent profile."""
        row = self._database.fetchone(
            "SELECT "
            + ", ".join(self._AGENT_COLUMNS)
            + " FROM agent_profiles WHERE api_key = ?",  # nosec B608
            (api_key,),
        )
        if row is None:
            return None
        return dict(row)

    def list_public_humans(self) -> list[dict[str, Any]]:
        """
        All active operators whose email is verified, best rated first.

        Each item joins the profile with the non-sensitive user fields.
        """
        rows = self._database.fetchall(
            "SELECT "
            + ", ".join(f"hp.{column}" for column in self._HUMAN_COLUMNS)
            + ", u.wallet_address, u.twitter_username, u.created_at "
            "FROM human_profiles hp JOIN users u ON u.id = hp.user_id "
            "WHERE hp.is_active = 1 AND u.email_verified = 1 "
            "ORDER BY hp.avg_rating IS NULL, hp.avg_rating DESC, "
            "hp.total_tasks DESC, hp.user_id"
        )
        humans: list[dict[str, Any]] = []
        for row in rows:
            human = self._row_to_human(row)
            human["wallet_address"] = row["wallet_address"]
            human["twitter_username"] = row["twitter_username"]
            human["created_at"] = row["created_at"]
            humans.append(human)
        return humans

    # ------------------------------------------------------------------
    # Points and referrals
    # ------------------------------------------------------------------

    def get_points(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user's points row."""
        row = self._database.fetchone(
            "SELECT user_id, total_points, submissions_count, referral_points, referral_count, "
            "referred_by, referral_code, updated_at FROM user_points WHERE user_id = ?",
            (user_id,),
        )
        if row is None:
            return None
        return dict(row)

    def get_user_id_by_referral_code(self, referral_code: str) -> str | None:
        """Resolve a referral code to the user who owns it."""
        value = self._database.scalar(
            "SELECT user_id FROM user_points WHERE referral_code = ?",
            (referral_code.lower(),),
        )
        return value if isinstance(value, str) else None

    def export_points(self) -> list[dict[str, Any]]:
        """Return the points and referral counters of every user."""
        rows = self._database.fetchall(
            "SELECT total_points, submissions_count, referral_count FROM user_points"
        )
        return [
            {
                "total_points": float(row[0]),
                "submissions_count": int(row[1]),
                "referral_count": int(row[2]),
            }
            for row in rows
        ]

    def count_referrals(self) -> int:
        """Count recorded referrals."""
        value = self._database.scalar("SELECT COUNT(*) FROM referrals")
        return int(value) if isinstance(value, int) else 0

    def list_referrals_by(self, referrer_id: str) -> list[dict[str, Any]]:
        """Referrals credited to a user, newest first."""
        rows = self._database.fetchall(
            "SELECT id, referred_id, referral_code, created_at FROM referrals "
            "WHERE referrer_id = ? ORDER BY created_at DESC, rowid DESC",
            (referrer_id,),
        )
        return [dict(row) for row in rows]

    def points_rank(self, user_id: str) -> tuple[int | None, int]:
        """
        Return (leaderboard position, number of ranked users).

        Position is 1 + the number of users with strictly more points, so
        tied users share a position. It is None when the user has no points row.
        """
        row = self._database.fetchone(
            "SELECT "
            "(SELECT COUNT(*) FROM user_points o WHERE o.total_points > p.total_points) "
            "AS ahead, (SELECT COUNT(*) FROM user_points) AS ranked "
            "FROM user_points p WHERE p.user_id = ?",
            (user_id,),
        )
        if row is None:
            value = self._database.scalar("SELECT COUNT(*) FROM user_points")
            return None, int(value) if isinstance(value, int) else 0
        return int(row["ahead"]) + 1, int(row["ranked"])
