"""SQLite-backed storage for tasks, bids, progress updates, reviews and profiles."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_market_service.services.change_feed import ChangeEvent

if TYPE_CHECKING:
    from task_market_service.services.change_feed import ChangeFeed


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class DuplicateBidError(Exception):
    """Raised when a user already has a bid on the task."""


class DuplicateReviewError(Exception):
    """Raised when the reviewer already reviewed the task."""


class ReviewGateClosedError(Exception):
    """Raised when a review requires a prior review that does not exist."""


class TaskStateConflictError(Exception):
    """Raised when a conditional write finds the task or bid in another state."""


class MarketStore:
    """
    SQLite-backed storage for the marketplace.

    Money columns hold integer cents. Multi-row lifecycle writes
    (bid acceptance, assignment reversal, gated review insert) run in a
    single BEGIN IMMEDIATE transaction so concurrent callers serialize on
    the database write lock.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "title",
        "description",
        "status",
        "created_by",
        "assigned_to",
        "budget_cents",
        "payment_status",
        "payment_intent_id",
        "payout_status",
        "payout_id",
        "archived",
        "hidden_by_admin",
        "hidden_reason",
        "hidden_at",
        "created_at",
        "updated_at",
        "accepted_at",
        "completed_at",
    )
    _BID_COLUMNS: tuple[str, ...] = (
        "bid_id",
        "task_id",
        "user_id",
        "amount_cents",
        "message",
        "status",
        "created_at",
        "updated_at",
    )
    _PROGRESS_COLUMNS: tuple[str, ...] = (
        "update_id",
        "task_id",
        "user_id",
        "message",
        "image_url",
        "update_type",
        "created_at",
    )
    _REVIEW_COLUMNS: tuple[str, ...] = (
        "review_id",
        "task_id",
        "reviewer_id",
        "reviewee_id",
        "rating",
        "comment",
        "created_at",
    )
    _PROFILE_COLUMNS: tuple[str, ...] = (
        "user_id",
        "full_name",
        "email",
        "is_helper",
        "iban",
        "paypal_email",
        "updated_at",
    )

    def __init__(self, db_path: str, change_feed: ChangeFeed | None = None) -> None:
        self._lock = RLock()
        self._change_feed = change_feed
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    created_by TEXT NOT NULL,
                    assigned_to TEXT,
                    budget_cents INTEGER,
                    payment_status TEXT NOT NULL DEFAULT 'none',
                    payment_intent_id TEXT,
                    payout_status TEXT NOT NULL DEFAULT 'none',
                    payout_id TEXT,
                    archived INTEGER NOT NULL DEFAULT 0,
                    hidden_by_admin INTEGER NOT NULL DEFAULT 0,
                    hidden_reason TEXT,
                    hidden_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    accepted_at TEXT,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
                    message TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(task_id, user_id)
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_one_accepted
                    ON bids(task_id) WHERE status = 'accepted';

                CREATE TABLE IF NOT EXISTS progress_updates (
                    update_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    message TEXT,
                    image_url TEXT,
                    update_type TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_progress_task
                    ON progress_updates(task_id, created_at);

                CREATE TABLE IF NOT EXISTS reviews (
                    review_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    reviewer_id TEXT NOT NULL,
                    reviewee_id TEXT NOT NULL,
                    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    comment TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE(task_id, reviewer_id)
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY,
                    full_name TEXT,
                    email TEXT,
                    is_helper INTEGER NOT NULL DEFAULT 0,
                    iban TEXT,
                    paypal_email TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS platform_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_dict(row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
        return {column: row[column] for column in columns}

    def _rollback(self) -> None:
        with contextlib.suppress(sqlite3.Error):
            self._db.execute("ROLLBACK")

    def _publish(self, table: str, operation: str, task_id: str, record: dict[str, Any]) -> None:
        if self._change_feed is not None:
            self._change_feed.publish(ChangeEvent(table, operation, task_id, record))

    def _select_task(self, task_id: str) -> dict[str, Any] | None:
        columns_sql = ", ".join(self._TASK_COLUMNS)
        row = self._db.execute(
            f"SELECT {columns_sql} FROM tasks WHERE task_id = ?",  # nosec B608
            (task_id,),
        ).fetchone()
        return None if row is None else self._row_to_dict(row, self._TASK_COLUMNS)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(task_data[column] for column in self._TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        query = (
            f"INSERT INTO tasks ({', '.join(self._TASK_COLUMNS)}) "  # nosec B608
            f"VALUES ({placeholders})"
        )

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(query, values)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateTaskError(
                        f"A task with task_id={task_data['task_id']} already exists"
                    ) from exc
                raise
            except Exception:
                self._rollback()
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            return self._select_task(task_id)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """
        Update task columns and return the number of affected rows.

        `expected_status` and `expected` turn the write into a conditional
        update; zero affected rows means another writer got there first.
        """
        if len(updates) == 0:
            return 0

        conditions = dict(expected) if expected is not None else {}
        if any(column not in self._TASK_COLUMNS for column in (*updates, *conditions)):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        for column, value in conditions.items():
            if value is None:
                query += f" AND {column} IS NULL"
            else:
                query += f" AND {column} = ?"
                params.append(value)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
            changed = int(cursor.rowcount)
            updated = self._select_task(task_id) if changed > 0 else None
        if updated is not None:
            self._publish("tasks", "UPDATE", task_id, updated)
        return changed

    def delete_task(self, task_id: str, *, created_by: str, expected_status: str) -> int:
        """Hard-delete a task (and, by cascade, its bids, updates and reviews)."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                cursor = self._db.execute(
                    "DELETE FROM tasks WHERE task_id = ? AND created_by = ? AND status = ?",
                    (task_id, created_by, expected_status),
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise
        return int(cursor.rowcount)

    def list_tasks(
        self,
        status: str | None,
        created_by: str | None,
        assigned_to: str | None,
        *,
        include_archived: bool,
        include_hidden: bool,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        query = f"SELECT {', '.join(self._TASK_COLUMNS)} FROM tasks"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if created_by is not None:
            clauses.append("created_by = ?")
            params.append(created_by)
        if assigned_to is not None:
            clauses.append("assigned_to = ?")
            params.append(assigned_to)
        if not include_archived:
            clauses.append("archived = 0")
        if not include_hidden:
            clauses.append("hidden_by_admin = 0")

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(row, self._TASK_COLUMNS) for row in rows]

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def insert_bid(self, bid_data: dict[str, Any]) -> None:
        """Insert a pending bid. One bid per (task, user)."""
        values = tuple(bid_data[column] for column in self._BID_COLUMNS)

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    """
                    INSERT INTO bids (
                        bid_id, task_id, user_id, amount_cents, message, status,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateBidError("This user already bid on this task") from exc
                raise
            except Exception:
                self._rollback()
                raise
        self._publish("bids", "INSERT", bid_data["task_id"], dict(bid_data))

    def get_bid(self, bid_id: str, task_id: str) -> dict[str, Any] | None:
        """Fetch a bid by bid_id and task_id."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._BID_COLUMNS)} FROM bids "  # nosec B608
                "WHERE bid_id = ? AND task_id = ?",
                (bid_id, task_id),
            ).fetchone()
        return None if row is None else self._row_to_dict(row, self._BID_COLUMNS)

    def get_bids_for_task(self, task_id: str, user_id: str | None = None) -> list[dict[str, Any]]:
        """Fetch bids for a task in submission order, optionally for one user."""
        query = (
            f"SELECT {', '.join(self._BID_COLUMNS)} FROM bids WHERE task_id = ?"  # nosec B608
        )
        params: list[object] = [task_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY created_at, rowid"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(row, self._BID_COLUMNS) for row in rows]

    def get_accepted_bid(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the accepted bid of a task, if any."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._BID_COLUMNS)} FROM bids "  # nosec B608
                "WHERE task_id = ? AND status = 'accepted'",
                (task_id,),
            ).fetchone()
        return None if row is None else self._row_to_dict(row, self._BID_COLUMNS)

    def count_bids(self, task_id: str) -> int:
        """Count bids on a task."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM bids WHERE task_id = ?", (task_id,)
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def accept_bid(
        self,
        task_id: str,
        bid_id: str,
        *,
        accepted_at: str,
        progress_update: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """
        Atomically accept one bid and resolve the rest.

        In one transaction: move the task open -> in_progress (conditional on
        status='open'), record the assignee and budget, accept the chosen bid,
        reject every other bid and append the system progress entry.

        Returns the bids that were pending before and are now rejected.

        Raises:
            TaskStateConflictError: The task is no longer open or the bid is
                no longer pending.
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")

                bid_row = self._db.execute(
                    "SELECT user_id, amount_cents, status FROM bids "
                    "WHERE bid_id = ? AND task_id = ?",
                    (bid_id, task_id),
                ).fetchone()
                if bid_row is None or bid_row["status"] != "pending":
                    self._rollback()
                    raise TaskStateConflictError(f"Bid {bid_id} is no longer pending")

                cursor = self._db.execute(
                    """
                    UPDATE tasks
                    SET status = 'in_progress', assigned_to = ?, budget_cents = ?,
                        accepted_at = ?, updated_at = ?
                    WHERE task_id = ? AND status = 'open'
                    """,
                    (
                        bid_row["user_id"],
                        bid_row["amount_cents"],
                        accepted_at,
                        accepted_at,
                        task_id,
                    ),
                )
                if cursor.rowcount == 0:
                    self._rollback()
                    raise TaskStateConflictError(f"Task {task_id} is no longer open")

                losers = self._db.execute(
                    f"SELECT {', '.join(self._BID_COLUMNS)} FROM bids "  # nosec B608
                    "WHERE task_id = ? AND bid_id != ? AND status = 'pending' "
                    "ORDER BY created_at, rowid",
                    (task_id, bid_id),
                ).fetchall()

                self._db.execute(
                    "UPDATE bids SET status = 'accepted', updated_at = ? WHERE bid_id = ?",
                    (accepted_at, bid_id),
                )
                self._db.execute(
                    "UPDATE bids SET status = 'rejected', updated_at = ? "
                    "WHERE task_id = ? AND bid_id != ? AND status != 'rejected'",
                    (accepted_at, task_id, bid_id),
                )
                self._insert_progress_row(progress_update)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                raise TaskStateConflictError(f"Task {task_id} already has an accepted bid") from exc
            except TaskStateConflictError:
                raise
            except Exception:
                self._rollback()
                raise

            updated = self._select_task(task_id)

        if updated is not None:
            self._publish("tasks", "UPDATE", task_id, updated)
        return [self._row_to_dict(row, self._BID_COLUMNS) for row in losers]

    def revert_assignment(self, task_id: str, helper_id: str, *, reverted_at: str) -> None:
        """
        Atomically return an in-progress task to the open pool.

        Conditional on the task still being in_progress, assigned to
        `helper_id` with no pending or paid checkout. The payment status goes
        back to none, the intent id is cleared and the accepted bid becomes
        rejected.

        Raises:
            TaskStateConflictError: The conditions no longer hold.
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                cursor = self._db.execute(
                    """
                    UPDATE tasks
                    SET status = 'open', assigned_to = NULL, accepted_at = NULL,
                        payment_status = 'none', payment_intent_id = NULL, updated_at = ?
                    WHERE task_id = ? AND status = 'in_progress' AND assigned_to = ?
                        AND payment_status NOT IN ('pending', 'paid')
                    """,
                    (reverted_at, task_id, helper_id),
                )
                if cursor.rowcount == 0:
                    self._rollback()
                    raise TaskStateConflictError(f"Task {task_id} assignment changed")

                self._db.execute(
                    "UPDATE bids SET status = 'rejected', updated_at = ? "
                    "WHERE task_id = ? AND status = 'accepted'",
                    (reverted_at, task_id),
                )
                self._db.commit()
            except TaskStateConflictError:
                raise
            except Exception:
                self._rollback()
                raise

            updated = self._select_task(task_id)

        if updated is not None:
            self._publish("tasks", "UPDATE", task_id, updated)

    # ------------------------------------------------------------------
    # Progress updates
    # ------------------------------------------------------------------

    def _insert_progress_row(self, update: dict[str, Any]) -> None:
        self._db.execute(
            """
            INSERT INTO progress_updates (
                update_id, task_id, user_id, message, image_url, update_type, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            tuple(update[column] for column in self._PROGRESS_COLUMNS),
        )

    def insert_progress_update(self, update: dict[str, Any]) -> None:
        """Append a progress update."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._insert_progress_row(update)
                self._db.commit()
            except Exception:
                self._rollback()
                raise

    def get_progress_updates(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch the progress timeline of a task, oldest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(self._PROGRESS_COLUMNS)} FROM progress_updates "  # nosec B608
                "WHERE task_id = ? ORDER BY created_at, rowid",
                (task_id,),
            ).fetchall()
        return [self._row_to_dict(row, self._PROGRESS_COLUMNS) for row in rows]

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review: dict[str, Any], *, requires_review_by: str | None) -> None:
        """
        Insert a review.

        When `requires_review_by` is set, the insert only happens if that
        user already reviewed the same task; the check and the insert share
        one write transaction.

        Raises:
            ReviewGateClosedError: The required prior review is missing.
            DuplicateReviewError: The reviewer already reviewed this task.
        """
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                if requires_review_by is not None:
                    prior = self._db.execute(
                        "SELECT 1 FROM reviews WHERE task_id = ? AND reviewer_id = ?",
                        (review["task_id"], requires_review_by),
                    ).fetchone()
                    if prior is None:
                        self._rollback()
                        raise ReviewGateClosedError(
                            f"Task {review['task_id']} has no review by {requires_review_by}"
                        )
                self._db.execute(
                    """
                    INSERT INTO reviews (
                        review_id, task_id, reviewer_id, reviewee_id, rating, comment, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    tuple(review[column] for column in self._REVIEW_COLUMNS),
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateReviewError("This user already reviewed this task") from exc
                raise
            except ReviewGateClosedError:
                raise
            except Exception:
                self._rollback()
                raise

    def get_reviews_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch all reviews of a task, oldest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(self._REVIEW_COLUMNS)} FROM reviews "  # nosec B608
                "WHERE task_id = ? ORDER BY created_at, rowid",
                (task_id,),
            ).fetchall()
        return [self._row_to_dict(row, self._REVIEW_COLUMNS) for row in rows]

    def get_review(self, task_id: str, reviewer_id: str) -> dict[str, Any] | None:
        """Fetch the review a user left on a task."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._REVIEW_COLUMNS)} FROM reviews "  # nosec B608
                "WHERE task_id = ? AND reviewer_id = ?",
                (task_id, reviewer_id),
            ).fetchone()
        return None if row is None else self._row_to_dict(row, self._REVIEW_COLUMNS)

    def list_tasks_awaiting_review(self, user_id: str) -> list[dict[str, Any]]:
        """
        Completed tasks on which `user_id` still owes a review.

        Posters owe a review on every completed task they created. Helpers
        owe one only once the poster has reviewed.
        """
        task_columns = ", ".join(f"t.{column}" for column in self._TASK_COLUMNS)
        query = f"""
            SELECT {task_columns} FROM tasks t
            WHERE t.status = 'completed'
              AND NOT EXISTS (
                  SELECT 1 FROM reviews r WHERE r.task_id = t.task_id AND r.reviewer_id = ?
              )
              AND (
                  t.created_by = ?
                  OR (
                      t.assigned_to = ?
                      AND EXISTS (
                          SELECT 1 FROM reviews r
                          WHERE r.task_id = t.task_id AND r.reviewer_id = t.created_by
                      )
                  )
              )
            ORDER BY t.completed_at DESC, t.rowid DESC
        """  # nosec B608
        with self._lock:
            rows = self._db.execute(query, (user_id, user_id, user_id)).fetchall()
        return [self._row_to_dict(row, self._TASK_COLUMNS) for row in rows]

    # ------------------------------------------------------------------
    # Profiles and platform settings
    # ------------------------------------------------------------------

    def upsert_profile(self, profile: dict[str, Any]) -> None:
        """Create or replace a user's profile."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    """
                    INSERT INTO profiles (
                        user_id, full_name, email, is_helper, iban, paypal_email, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        full_name = excluded.full_name,
                        email = excluded.email,
                        is_helper = excluded.is_helper,
                        iban = excluded.iban,
                        paypal_email = excluded.paypal_email,
                        updated_at = excluded.updated_at
                    """,
                    tuple(profile[column] for column in self._PROFILE_COLUMNS),
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user's profile."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._PROFILE_COLUMNS)} FROM profiles "  # nosec B608
                "WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return None if row is None else self._row_to_dict(row, self._PROFILE_COLUMNS)

    def get_setting(self, key: str) -> str | None:
        """Read a platform setting."""
        with self._lock:
            row = self._db.execute(
                "SELECT value FROM platform_settings WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else str(row["value"])

    def set_setting(self, key: str, value: str, updated_at: str) -> None:
        """Write a platform setting."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    """
                    INSERT INTO platform_settings (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value, updated_at),
                )
                self._db.commit()
            except Exception:
                self._rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
