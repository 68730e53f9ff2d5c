"""SQLite store for delegations, the offline queue, credits and routing profiles."""

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from uuid import uuid4

import aiosqlite

from modelgate.billing.credits import CreditAccount, CreditLedger
from modelgate.core.errors import InvalidTransitionError, LedgerError
from modelgate.core.logging import get_logger
from modelgate.dispatch.types import (
    TRANSITIONS,
    Delegation,
    DelegationStatus,
    DispatchResult,
    QueuedTask,
)
from modelgate.profiles.profile import ProfileStore

logger = get_logger("storage.store")


def _adapt_datetime(dt: datetime) -> str:
    return dt.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Delegations handed to remote models; status only moves forward
CREATE TABLE IF NOT EXISTS delegations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    strategy TEXT NOT NULL,
    context_summary TEXT NOT NULL,
    task_description TEXT NOT NULL,
    suggested_question TEXT NOT NULL,
    user_message TEXT NOT NULL,
    cloud_instruction TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    result TEXT,  -- JSON object
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_delegations_status
    ON delegations(status, updated_at);

-- Offline queue, one row per (user, dedup key)
CREATE TABLE IF NOT EXISTS offline_queue (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    dedup_key TEXT NOT NULL,
    user_message TEXT NOT NULL,
    context_summary TEXT NOT NULL,
    task_description TEXT NOT NULL,
    suggested_question TEXT NOT NULL,
    strategy TEXT NOT NULL,
    queued_at DATETIME NOT NULL,
    duplicate_count INTEGER NOT NULL DEFAULT 1,
    UNIQUE (user_id, dedup_key)
);

-- Credit ledger
CREATE TABLE IF NOT EXISTS credit_accounts (
    user_id TEXT PRIMARY KEY,
    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
    monthly_used INTEGER NOT NULL DEFAULT 0,
    monthly_quota INTEGER NOT NULL DEFAULT 0,
    plan TEXT NOT NULL DEFAULT 'free',
    updated_at DATETIME
);

-- One row per charge; reference makes a charge apply at most once
CREATE TABLE IF NOT EXISTS credit_usage (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    reference TEXT UNIQUE,
    amount INTEGER NOT NULL,
    created_at DATETIME NOT NULL
);

-- Routing profiles (keys live in the secret store)
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    mode TEXT NOT NULL,
    preferred_provider TEXT NOT NULL,
    preferred_model TEXT NOT NULL,
    auto_fallback INTEGER NOT NULL DEFAULT 1,
    updated_at DATETIME
);
"""

DELEGATION_COLUMNS = (
    "id, user_id, strategy, context_summary, task_description, suggested_question, "
    "user_message, cloud_instruction, status, created_at, updated_at, result, error"
)

QUEUE_COLUMNS = (
    "id, user_id, user_message, context_summary, task_description, strategy, "
    "queued_at, duplicate_count, suggested_question"
)


def _delegation_from_row(row) -> Delegation:
    return Delegation(
        id=row[0],
        user_id=row[1],
        strategy=row[2],
        context_summary=row[3],
        task_description=row[4],
        suggested_question=row[5],
        user_message=row[6],
        cloud_instruction=row[7],
        status=DelegationStatus(row[8]),
        created_at=row[9],
        updated_at=row[10],
        result=DispatchResult.from_dict(json.loads(row[11])) if row[11] else None,
        error=row[12],
    )


def _task_from_row(row) -> QueuedTask:
    return QueuedTask(
        id=row[0],
        user_id=row[1],
        user_message=row[2],
        context_summary=row[3],
        task_description=row[4],
        strategy=row[5],
        queued_at=row[6],
        duplicate_count=row[7],
        suggested_question=row[8],
    )


class SQLiteStore(ProfileStore, CreditLedger):
    """aiosqlite-backed persistence shared by every component."""

    def __init__(self, db_path: Path, signup_credits: int = 0):
        self.db_path = db_path
        self.signup_credits = signup_credits
        self._conn: aiosqlite.Connection | None = None
        # Serializes multi-statement writes on the shared connection
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Store not connected. Call connect() first.")
        return self._conn

    # Delegations

    async def insert_delegation(self, delegation: Delegation) -> None:
        async with self._write_lock:
            await self.conn.execute(
                f"INSERT INTO delegations ({DELEGATION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    delegation.id,
                    delegation.user_id,
                    delegation.strategy,
                    delegation.context_summary,
                    delegation.task_description,
                    delegation.suggested_question,
                    delegation.user_message,
                    delegation.cloud_instruction,
                    delegation.status.value,
                    delegation.created_at,
                    delegation.updated_at,
                    json.dumps(delegation.result.to_dict()) if delegation.result else None,
                    delegation.error,
                ),
            )
            await self.conn.commit()

    async def get_delegation(self, delegation_id: str) -> Delegation | None:
        async with self.conn.execute(
            f"SELECT {DELEGATION_COLUMNS} FROM delegations WHERE id = ?", (delegation_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return _delegation_from_row(row) if row else None

    async def list_delegations(
        self, status: DelegationStatus | None = None, user_id: str | None = None
    ) -> list[Delegation]:
        query = f"SELECT {DELEGATION_COLUMNS} FROM delegations"
        clauses = []
        values: list = []
        if status is not None:
            clauses.append("status = ?")
            values.append(status.value)
        if user_id is not None:
            clauses.append("user_id = ?")
            values.append(user_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at"

        results = []
        async with self.conn.execute(query, values) as cursor:
            async for row in cursor:
                results.append(_delegation_from_row(row))
        return results

    async def transition_delegation(
        self,
        delegation_id: str,
        expected: DelegationStatus,
        new: DelegationStatus,
        result: DispatchResult | None = None,
        error: str | None = None,
    ) -> datetime:
        """Compare-and-swap the delegation status.

        Returns:
            The new ``updated_at`` timestamp

        Raises:
            InvalidTransitionError: the move is not forward, or the row is no
                longer in ``expected`` status
        """
        if new not in TRANSITIONS[expected]:
            raise InvalidTransitionError(
                f"Delegation {delegation_id}: {expected.value} -> {new.value} not allowed"
            )

        now = datetime.now()
        async with self._write_lock:
            cursor = await self.conn.execute(
                """UPDATE delegations
                   SET status = ?, updated_at = ?, result = COALESCE(?, result), error = COALESCE(?, error)
                   WHERE id = ? AND status = ?""",
                (
                    new.value,
                    now,
                    json.dumps(result.to_dict()) if result else None,
                    error,
                    delegation_id,
                    expected.value,
                ),
            )
            await self.conn.commit()
        if cursor.rowcount != 1:
            raise InvalidTransitionError(
                f"Delegation {delegation_id} is no longer {expected.value}"
            )
        return now

    async def fail_stale_delegations(self, cutoff: datetime, error: str) -> int:
        """Fail every delegation stuck in dispatching since before ``cutoff``."""
        async with self._write_lock:
            cursor = await self.conn.execute(
                """UPDATE delegations SET status = ?, updated_at = ?, error = ?
                   WHERE status = ? AND updated_at < ?""",
                (
                    DelegationStatus.FAILED.value,
                    datetime.now(),
                    error,
                    DelegationStatus.DISPATCHING.value,
                    cutoff,
                ),
            )
            await self.conn.commit()
        return cursor.rowcount

    async def purge_delegations(self, cutoff: datetime) -> int:
        """Delete terminal delegations last touched before ``cutoff``."""
        async with self._write_lock:
            cursor = await self.conn.execute(
                "DELETE FROM delegations WHERE status IN (?, ?) AND updated_at < ?",
                (DelegationStatus.COMPLETED.value, DelegationStatus.FAILED.value, cutoff),
            )
            await self.conn.commit()
        return cursor.rowcount

    # Offline queue

    async def enqueue_task(self, task: QueuedTask) -> tuple[QueuedTask, bool]:
        """Insert a task or merge it into the existing one with the same key.

        Returns:
            (stored task, True if a new row was created)
        """
        key = task.dedup_key
        async with self._write_lock:
            async with self.conn.execute(
                f"SELECT {QUEUE_COLUMNS} FROM offline_queue WHERE user_id = ? AND dedup_key = ?",
                (task.user_id, key),
            ) as cursor:
                row = await cursor.fetchone()

            if row:
                existing = _task_from_row(row)
                existing.duplicate_count += task.duplicate_count
                if len(task.context_summary) > len(existing.context_summary):
                    existing.context_summary = task.context_summary
                await self.conn.execute(
                    "UPDATE offline_queue SET duplicate_count = ?, context_summary = ? WHERE id = ?",
                    (existing.duplicate_count, existing.context_summary, existing.id),
                )
                await self.conn.commit()
                return existing, False

            await self.conn.execute(
                """INSERT INTO offline_queue
                   (id, user_id, dedup_key, user_message, context_summary, task_description,
                    suggested_question, strategy, queued_at, duplicate_count)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    task.id,
                    task.user_id,
                    key,
                    task.user_message,
                    task.context_summary,
                    task.task_description,
                    task.suggested_question,
                    task.strategy,
                    task.queued_at,
                    task.duplicate_count,
                ),
            )
            await self.conn.commit()
            return task, True

    async def list_queued(self, user_id: str | None = None) -> list[QueuedTask]:
        query = f"SELECT {QUEUE_COLUMNS} FROM offline_queue"
        values: tuple = ()
        if user_id is not None:
            query += " WHERE user_id = ?"
            values = (user_id,)
        query += " ORDER BY queued_at"

        results = []
        async with self.conn.execute(query, values) as cursor:
            async for row in cursor:
                results.append(_task_from_row(row))
        return results

    async def queued_users(self) -> list[str]:
        async with self.conn.execute(
            "SELECT DISTINCT user_id FROM offline_queue ORDER BY user_id"
        ) as cursor:
            return [row[0] async for row in cursor]

    async def count_queued(self, user_id: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM offline_queue"
        values: tuple = ()
        if user_id is not None:
            query += " WHERE user_id = ?"
            values = (user_id,)
        async with self.conn.execute(query, values) as cursor:
            row = await cursor.fetchone()
            return row[0]

    async def update_queued(self, task: QueuedTask, absorbed: list[str] | None = None) -> bool:
        """Persist a task's merged duplicate count and context summary.

        Rows listed in ``absorbed`` were merged into ``task`` and are deleted
        in the same commit.
        """
        async with self._write_lock:
            try:
                cursor = await self.conn.execute(
                    "UPDATE offline_queue SET duplicate_count = ?, context_summary = ? WHERE id = ?",
                    (task.duplicate_count, task.context_summary, task.id),
                )
                updated = cursor.rowcount > 0
                if updated:
                    await self.conn.executemany(
                        "DELETE FROM offline_queue WHERE id = ?", [(i,) for i in absorbed or []]
                    )
            except Exception:
                await self.conn.rollback()
                raise
            await self.conn.commit()
            return updated

    async def remove_queued(self, task_id: str) -> bool:
        async with self._write_lock:
            cursor = await self.conn.execute("DELETE FROM offline_queue WHERE id = ?", (task_id,))
            await self.conn.commit()
        return cursor.rowcount > 0

    async def clear_queue(self, user_id: str | None = None) -> int:
        async with self._write_lock:
            if user_id is None:
                cursor = await self.conn.execute("DELETE FROM offline_queue")
            else:
                cursor = await self.conn.execute("DELETE FROM offline_queue WHERE user_id = ?", (user_id,))
            await self.conn.commit()
        return cursor.rowcount

    # Credit ledger

    async def _ensure_account(self, user_id: str) -> None:
        await self.conn.execute(
            """INSERT OR IGNORE INTO credit_accounts (user_id, balance, updated_at)
               VALUES (?, ?, ?)""",
            (user_id, self.signup_credits, datetime.now()),
        )

    async def _read_account(self, user_id: str) -> CreditAccount:
        async with self.conn.execute(
            """SELECT user_id, balance, monthly_used, monthly_quota, plan
               FROM credit_accounts WHERE user_id = ?""",
            (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise LedgerError(f"No credit account for {user_id}")
        return CreditAccount(
            user_id=row[0],
            balance=row[1],
            monthly_used=row[2],
            monthly_quota=row[3],
            plan=row[4],
        )

    async def get_account(self, user_id: str) -> CreditAccount:
        """Account for ``user_id``, created with signup credits on first access."""
        async with self._write_lock:
            await self._ensure_account(user_id)
            await self.conn.commit()
            return await self._read_account(user_id)

    async def set_balance(self, user_id: str, balance: int) -> None:
        if balance < 0:
            raise LedgerError(f"Balance cannot be negative: {balance}")
        async with self._write_lock:
            await self._ensure_account(user_id)
            await self.conn.execute(
                "UPDATE credit_accounts SET balance = ?, updated_at = ? WHERE user_id = ?",
                (balance, datetime.now(), user_id),
            )
            await self.conn.commit()

    async def deduct(self, user_id: str, amount: int, reference: str | None = None) -> int:
        """Subtract ``amount`` clamped at zero; a repeated ``reference`` is a no-op."""
        async with self._write_lock:
            # The usage row and the balance change commit together or not at all
            try:
                await self._ensure_account(user_id)
                cursor = await self.conn.execute(
                    """INSERT OR IGNORE INTO credit_usage (id, user_id, reference, amount, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (str(uuid4()), user_id, reference, amount, datetime.now()),
                )
                already_applied = cursor.rowcount == 0
                if not already_applied:
                    await self.conn.execute(
                        """UPDATE credit_accounts
                           SET balance = MAX(0, balance - ?), monthly_used = monthly_used + ?,
                               updated_at = ?
                           WHERE user_id = ?""",
                        (amount, amount, datetime.now(), user_id),
                    )
            except Exception:
                await self.conn.rollback()
                raise
            await self.conn.commit()

            if already_applied:
                logger.info(f"Charge {reference} for {user_id} already applied")
            return (await self._read_account(user_id)).balance

    async def add(self, user_id: str, amount: int) -> int:
        async with self._write_lock:
            await self._ensure_account(user_id)
            await self.conn.execute(
                "UPDATE credit_accounts SET balance = balance + ?, updated_at = ? WHERE user_id = ?",
                (amount, datetime.now(), user_id),
            )
            await self.conn.commit()
            return (await self._read_account(user_id)).balance

    async def usage_total(self, user_id: str) -> int:
        async with self.conn.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM credit_usage WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0]

    # Routing profiles

    async def get_profile(self, user_id: str) -> dict | None:
        async with self.conn.execute(
            """SELECT user_id, mode, preferred_provider, preferred_model, auto_fallback, updated_at
               FROM user_profiles WHERE user_id = ?""",
            (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return {
                    "user_id": row[0],
                    "mode": row[1],
                    "preferred_provider": row[2],
                    "preferred_model": row[3],
                    "auto_fallback": bool(row[4]),
                    "updated_at": row[5].isoformat() if row[5] else None,
                }
        return None

    async def save_profile(self, data: dict) -> None:
        updated_at = data.get("updated_at")
        async with self._write_lock:
            await self.conn.execute(
                """INSERT INTO user_profiles
                   (user_id, mode, preferred_provider, preferred_model, auto_fallback, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       mode = excluded.mode,
                       preferred_provider = excluded.preferred_provider,
                       preferred_model = excluded.preferred_model,
                       auto_fallback = excluded.auto_fallback,
                       updated_at = excluded.updated_at""",
                (
                    data["user_id"],
                    data["mode"],
                    data["preferred_provider"],
                    data["preferred_model"],
                    int(bool(data.get("auto_fallback", True))),
                    datetime.fromisoformat(updated_at) if updated_at else datetime.now(),
                ),
            )
            await self.conn.commit()
