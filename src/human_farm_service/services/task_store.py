"""SQLite-backed storage for tasks, applications, completions, reviews, and messages."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from human_farm_service.services.database import Database


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate id."""


class DuplicateApplicationError(Exception):
    """Raised when an operator applies twice to the same task."""


class TaskStore:
    """Persistence for the task aggregate. All writes that span tables are atomic."""

    _TASK_COLUMNS: tuple[str, ...] = (
        "id",
        "agent_id",
        "human_id",
        "title",
        "description",
        "category",
        "status",
        "budget_usd",
        "platform_fee_usd",
        "deadline",
        "location_required",
        "location_lat",
        "location_lng",
        "location_address",
        "proof_requirements",
        "payment_status",
        "escrow_contract_address",
        "escrow_task_id",
        "payment_token",
        "payment_amount_wei",
        "payment_chain_id",
        "deposit_tx_hash",
        "release_tx_hash",
        "created_at",
        "updated_at",
        "assigned_at",
        "completed_at",
    )
    _TASK_COLUMNS_SQL = ", ".join(f"t.{column}" for column in _TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        "INSERT INTO tasks ("
        + ", ".join(_TASK_COLUMNS)
        + ") VALUES ("
        + ", ".join("?" for _ in _TASK_COLUMNS)
        + ")"
    )
    _TASK_LIST_SQL = (
        "SELECT "
        + _TASK_COLUMNS_SQL
        + ", ap.name AS agent_name, hp.display_name AS human_name, "
        "(SELECT COUNT(*) FROM task_applications a WHERE a.task_id = t.id) "
        "AS applications_count "
        "FROM tasks t "
        "LEFT JOIN agent_profiles ap ON ap.user_id = t.agent_id "
        "LEFT JOIN human_profiles hp ON hp.user_id = t.human_id"
    )
    _COMPLETION_COLUMNS_SQL = "id, task_id, human_id, proof_data, status, submitted_at, review_note"

    def __init__(self, database: Database) -> None:
        self._database = database

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        task["location_required"] = bool(task["location_required"])
        task["proof_requirements"] = json.loads(task["proof_requirements"])
        return task

    @staticmethod
    def _row_to_completion(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "task_id": row["task_id"],
            "human_id": row["human_id"],
            "proof_data": json.loads(row["proof_data"]),
            "status": row["status"],
            "submitted_at": row["submitted_at"],
            "review_note": row["review_note"],
        }

    @staticmethod
    def _filters_to_where(filters: dict[str, Any]) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        for column in ("status", "category", "agent_id", "human_id"):
            value = filters.get(column)
            if value is not None:
                clauses.append(f"t.{column} = ?")
                params.append(value)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        row = dict(task_data)
        row["proof_requirements"] = json.dumps(row["proof_requirements"])
        row["location_required"] = int(bool(row["location_required"]))
        values = tuple(row[column] for column in self._TASK_COLUMNS)
        try:
            with self._database.transaction() as conn:
                conn.execute(self._TASK_INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(f"A task with id={task_data['id']} already exists") from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self._database.fetchone(
            f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks t WHERE t.id = ?",  # nosec B608
            (task_id,),
        )
        if row is None:
            return None
        return self._row_to_task(row)

    def get_task_with_names(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task joined with agent/operator names and its application and message counts."""
        row = self._database.fetchone(self._TASK_LIST_SQL + " WHERE t.id = ?", (task_id,))
        if row is None:
            return None
        task = self._row_to_task(row)
        task["agent_name"] = row["agent_name"]
        task["human_name"] = row["human_name"]
        task["applications_count"] = int(row["applications_count"])
        task["messages_count"] = self.count_messages(task_id)
        return task

    def _conditional_update(
        self,
        conn: sqlite3.Connection,
        task_id: str,
        updates: dict[str, Any],
        expected_status: str | None,
        expected_payment_status: str | None,
    ) -> int:
        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = "UPDATE tasks SET " + set_clause + " WHERE id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        if expected_payment_status is not None:
            query += " AND payment_status = ?"
            params.append(expected_payment_status)
        return int(conn.execute(query, params).rowcount)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected_payment_status: str | None,
    ) -> int:
        """Update task columns guarded by the expected status pair; return affected rows."""
        if len(updates) == 0:
            return 0
        with self._database.transaction() as conn:
            return self._conditional_update(
                conn, task_id, updates, expected_status, expected_payment_status
            )

    def list_tasks(self, filters: dict[str, Any], limit: int, offset: int) -> list[dict[str, Any]]:
        """List tasks newest first, with names and application counts."""
        where, params = self._filters_to_where(filters)
        query = self._TASK_LIST_SQL + where + " ORDER BY t.created_at DESC, t.id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        tasks: list[dict[str, Any]] = []
        for row in self._database.fetchall(query, params):
            task = self._row_to_task(row)
            task["agent_name"] = row["agent_name"]
            task["human_name"] = row["human_name"]
            task["applications_count"] = int(row["applications_count"])
            tasks.append(task)
        return tasks

    def count_tasks(self, filters: dict[str, Any] | None = None) -> int:
        """Count tasks matching the same filters list_tasks accepts."""
        where, params = self._filters_to_where(filters or {})
        value = self._database.scalar("SELECT COUNT(*) FROM tasks t" + where, params)
        return int(value) if isinstance(value, int) else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by lifecycle status."""
        rows = self._database.fetchall("SELECT status, COUNT(*) FROM tasks GROUP BY status")
        return {str(row[0]): int(row[1]) for row in rows}

    def count_tasks_by_payment_status(self) -> dict[str, int]:
        """Count tasks grouped by payment status."""
        rows = self._database.fetchall(
            "SELECT payment_status, COUNT(*) FROM tasks GROUP BY payment_status"
        )
        return {str(row[0]): int(row[1]) for row in rows}

    def export_budget_columns(self) -> list[tuple[float, float]]:
        """Return (budget_usd, platform_fee_usd) for every task."""
        rows = self._database.fetchall("SELECT budget_usd, platform_fee_usd FROM tasks")
        return [(float(row[0]), float(row[1])) for row in rows]

    def completed_categories_for_human(self, human_id: str) -> list[str]:
        """Return the category of every completed task performed by the operator."""
        rows = self._database.fetchall(
            "SELECT category FROM tasks WHERE human_id = ? AND status = 'completed' "
            "ORDER BY completed_at",
            (human_id,),
        )
        return [str(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def insert_application(self, application: dict[str, Any]) -> None:
        """Insert an application; the (task_id, human_id) constraint rejects duplicates."""
        try:
            with self._database.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO task_applications (
                        id, task_id, human_id, message, proposed_rate, status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        application["id"],
                        application["task_id"],
                        application["human_id"],
                        application["message"],
                        application["proposed_rate"],
                        application["status"],
                        application["created_at"],
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateApplicationError("Already applied to this task") from exc
            raise

    def get_application(self, task_id: str, human_id: str) -> dict[str, Any] | None:
        """Fetch one operator's application to a task."""
        row = self._database.fetchone(
            "SELECT id, task_id, human_id, message, proposed_rate, status, created_at "
            "FROM task_applications WHERE task_id = ? AND human_id = ?",
            (task_id, human_id),
        )
        if row is None:
            return None
        return dict(row)

    def list_applications(self, task_id: str) -> list[dict[str, Any]]:
        """List applications newest first, with the applicant's public profile fields."""
        rows = self._database.fetchall(
            "SELECT a.id, a.task_id, a.human_id, a.message, a.proposed_rate, a.status, "
            "a.created_at, hp.display_name, hp.hourly_rate_usd, hp.avg_rating "
            "FROM task_applications a "
            "LEFT JOIN human_profiles hp ON hp.user_id = a.human_id "
            "WHERE a.task_id = ? ORDER BY a.created_at DESC, a.id DESC",
            (task_id,),
        )
        return [dict(row) for row in rows]

    def assign_task(
        self,
        task_id: str,
        human_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str,
        expected_payment_status: str,
    ) -> int:
        """Assign the operator and settle every application for the task in one transaction."""
        with self._database.transaction() as conn:
            changed = self._conditional_update(
                conn, task_id, updates, expected_status, expected_payment_status
            )
            if changed == 0:
                return 0
            conn.execute(
                "UPDATE task_applications SET status = 'rejected' "
                "WHERE task_id = ? AND human_id != ?",
                (task_id, human_id),
            )
            conn.execute(
                "UPDATE task_applications SET status = 'accepted' "
                "WHERE task_id = ? AND human_id = ?",
                (task_id, human_id),
            )
            return changed

    # ------------------------------------------------------------------
    # Completions and reviews
    # ------------------------------------------------------------------

    def submit_completion(
        self,
        completion: dict[str, Any],
        updates: dict[str, Any],
        *,
        expected_status: str,
        expected_payment_status: str,
    ) -> int:
        """Record a completion and move the task to review atomically."""
        with self._database.transaction() as conn:
            changed = self._conditional_update(
                conn, completion["task_id"], updates, expected_status, expected_payment_status
            )
            if changed == 0:
                return 0
            conn.execute(
                "INSERT INTO task_completions ("
                + self._COMPLETION_COLUMNS_SQL
                + ") VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    completion["id"],
                    completion["task_id"],
                    completion["human_id"],
                    json.dumps(completion["proof_data"]),
                    completion["status"],
                    completion["submitted_at"],
                    None,
                ),
            )
            return changed

    def approve_task(
        self,
        task_id: str,
        human_id: str,
        updates: dict[str, Any],
        review: dict[str, Any] | None,
        *,
        expected_status: str,
        expected_payment_status: str,
    ) -> int:
        """Complete the task, approve its completions, credit the operator, record a review."""
        with self._database.transaction() as conn:
            changed = self._conditional_update(
                conn, task_id, updates, expected_status, expected_payment_status
            )
            if changed == 0:
                return 0
            conn.execute(
                "UPDATE task_completions SET status = 'approved' "
                "WHERE task_id = ? AND status = 'pending'",
                (task_id,),
            )
            conn.execute(
                "UPDATE human_profiles SET total_tasks = total_tasks + 1 WHERE user_id = ?",
                (human_id,),
            )
            if review is not None:
                conn.execute(
                    "INSERT INTO reviews (id, task_id, reviewer_id, reviewee_id, rating, content, "
                    "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        review["id"],
                        review["task_id"],
                        review["reviewer_id"],
                        review["reviewee_id"],
                        review["rating"],
                        review["content"],
                        review["created_at"],
                    ),
                )
                conn.execute(
                    "UPDATE human_profiles SET avg_rating = "
                    "(SELECT AVG(rating) FROM reviews WHERE reviewee_id = ?) WHERE user_id = ?",
                    (human_id, human_id),
                )
            return changed

    def reject_completion(
        self,
        task_id: str,
        updates: dict[str, Any],
        note: str | None,
        *,
        expected_status: str,
        expected_payment_status: str,
    ) -> int:
        """Reject pending completions and send the task back to the operator."""
        with self._database.transaction() as conn:
            changed = self._conditional_update(
                conn, task_id, updates, expected_status, expected_payment_status
            )
            if changed == 0:
                return 0
            conn.execute(
                "UPDATE task_completions SET status = 'rejected', review_note = ? "
                "WHERE task_id = ? AND status = 'pending'",
                (note, task_id),
            )
            return changed

    def get_latest_completion(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the most recent completion for a task."""
        row = self._database.fetchone(
            "SELECT "
            + self._COMPLETION_COLUMNS_SQL
            + " FROM task_completions WHERE task_id = ? "
            "ORDER BY submitted_at DESC, rowid DESC LIMIT 1",
            (task_id,),
        )
        if row is None:
            return None
        return self._row_to_completion(row)

    def list_reviews_for(self, reviewee_id: str, limit: int) -> list[dict[str, Any]]:
        """Most recent reviews written about an operator."""
        rows = self._database.fetchall(
            "SELECT id, task_id, reviewer_id, reviewee_id, rating, content, created_at "
            "FROM reviews WHERE reviewee_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (reviewee_id, limit),
        )
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def insert_message(self, message: dict[str, Any]) -> None:
        """Insert a message posted on a task."""
        with self._database.transaction() as conn:
            conn.execute(
                "INSERT INTO messages (id, task_id, sender_id, content, attachments, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    message["id"],
                    message["task_id"],
                    message["sender_id"],
                    message["content"],
                    json.dumps(message["attachments"]),
                    message["created_at"],
                ),
            )

    def list_messages(self, task_id: str) -> list[dict[str, Any]]:
        """
        Messages on a task, oldest first.

        Each message carries the sender's account type and the raw agent
        name or operator display name, either of which may be None.
        """
        rows = self._database.fetchall(
            "SELECT m.id, m.task_id, m.sender_id, m.content, m.attachments, m.created_at, "
            "u.type AS sender_type, ap.name AS agent_name, hp.display_name AS human_name "
            "FROM messages m "
            "LEFT JOIN users u ON u.id = m.sender_id "
            "LEFT JOIN agent_profiles ap ON ap.user_id = m.sender_id "
            "LEFT JOIN human_profiles hp ON hp.user_id = m.sender_id "
            "WHERE m.task_id = ? ORDER BY m.created_at, m.rowid",
            (task_id,),
        )
        return [
            {
                "id": row["id"],
                "task_id": row["task_id"],
                "sender_id": row["sender_id"],
                "content": row["content"],
                "attachments": json.loads(row["attachments"]),
                "created_at": row["created_at"],
                "sender_type": row["sender_type"],
                "agent_name": row["agent_name"],
                "human_name": row["human_name"],
            }
            for row in rows
        ]

    def count_messages(self, task_id: str) -> int:
        """Count messages posted on a task."""
        value = self._database.scalar("SELECT COUNT(*) FROM messages WHERE task_id = ?", (task_id,))
        return int(value) if isinstance(value, int) else 0
