"""
Offline queue.

Durable, per-user queue of delegated work that could not be sent while the
network was down. Entries are keyed by (user, dedup key), so repeated
requests collapse into one task with a duplicate count, and replay never
makes more remote calls than there are unique keys.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import uuid4

from modelgate.core.logging import get_logger
from modelgate.dispatch.types import DelegationContent, QueuedTask
from modelgate.offline import notify
from modelgate.offline.notify import NotificationSink
from modelgate.storage.store import SQLiteStore

logger = get_logger("offline.queue")

# Replays one task; True only when the dispatch completed
ReplayFn = Callable[[QueuedTask], Awaitable[bool]]


@dataclass
class DrainReport:
    dispatched: int = 0
    failed: int = 0
    deduplicated_from: int = 0

    def merge(self, other: "DrainReport") -> None:
        self.dispatched += other.dispatched
        self.failed += other.failed
        self.deduplicated_from += other.deduplicated_from


def merge_duplicates(tasks: list[QueuedTask]) -> tuple[list[QueuedTask], list[QueuedTask]]:
    """Collapse tasks sharing a dedup key.

    The first task per key survives and absorbs the others' counts.

    Returns:
        (unique tasks, redundant tasks to delete)
    """
    seen: dict[str, QueuedTask] = {}
    redundant = []
    for task in tasks:
        existing = seen.get(task.dedup_key)
        if existing is None:
            seen[task.dedup_key] = task
            continue
        redundant.append(task)
        existing.duplicate_count += task.duplicate_count
        if len(task.context_summary) > len(existing.context_summary):
            existing.context_summary = task.context_summary
    return list(seen.values()), redundant


class OfflineQueue:
    """Enqueue while offline, drain on recovery."""

    def __init__(self, store: SQLiteStore, sink: NotificationSink | None = None):
        self.store = store
        self.sink = sink or NotificationSink()
        self._drain_lock = asyncio.Lock()

    async def enqueue(
        self,
        user_id: str,
        user_message: str,
        content: DelegationContent,
        strategy: str,
    ) -> tuple[QueuedTask, bool]:
        """Queue a delegation for later.

        Returns:
            (stored task, True when a new entry was created)
        """
        task = QueuedTask(
            id=f"q-{uuid4().hex[:12]}",
            user_id=user_id,
            user_message=user_message,
            context_summary=content.context_summary,
            task_description=content.task_description,
            suggested_question=content.suggested_question,
            strategy=strategy,
        )
        stored, created = await self.store.enqueue_task(task)

        if not created:
            logger.info(
                f"Merged duplicate task for {user_id} into {stored.id} "
                f"(count={stored.duplicate_count})"
            )
            return stored, False

        unique = await self.store.count_queued(user_id)
        logger.info(f"Queued task {stored.id} for {user_id} ({unique} waiting)")
        if unique == 1:
            await self.sink.notify(notify.offline_detected(user_id))
        await self.sink.notify(notify.task_queued(stored, unique))
        return stored, True

    async def pending(self, user_id: str | None = None) -> list[QueuedTask]:
        return await self.store.list_queued(user_id)

    async def count(self, user_id: str | None = None) -> int:
        return await self.store.count_queued(user_id)

    async def clear(self, user_id: str | None = None) -> int:
        count = await self.store.clear_queue(user_id)
        logger.info(f"Cleared {count} queued task(s)")
        return count

    async def drain(self, replay: ReplayFn) -> DrainReport:
        """Replay every queued task once.

        Users drain concurrently; each user's tasks run sequentially so their
        notifications arrive in order. A drain already in progress makes
        this call a no-op.
        """
        if self._drain_lock.locked():
            logger.info("Drain already in progress, skipping")
            return DrainReport()

        async with self._drain_lock:
            users = await self.store.queued_users()
            if not users:
                return DrainReport()

            logger.info(f"Draining offline queue for {len(users)} user(s)")
            reports = await asyncio.gather(*(self._drain_user(user, replay) for user in users))

        total = DrainReport()
        for report in reports:
            total.merge(report)
        logger.info(
            f"Drain finished: dispatched={total.dispatched} failed={total.failed} "
            f"from {total.deduplicated_from} request(s)"
        )
        return total

    async def _drain_user(self, user_id: str, replay: ReplayFn) -> DrainReport:
        tasks, redundant = merge_duplicates(await self.store.list_queued(user_id))
        if redundant:
            survivors = {t.dedup_key: t for t in tasks}
            absorbed: dict[str, list[str]] = {}
            for task in redundant:
                absorbed.setdefault(task.dedup_key, []).append(task.id)
            for key, ids in absorbed.items():
                await self.store.update_queued(survivors[key], ids)
            logger.info(f"Collapsed {len(redundant)} duplicate task(s) for {user_id}")
        if not tasks:
            return DrainReport()

        report = DrainReport(deduplicated_from=sum(t.duplicate_count for t in tasks))
        await self.sink.notify(notify.online_recovered(user_id, len(tasks), report.deduplicated_from))

        for task in tasks:
            try:
                completed = await replay(task)
            except Exception as e:
                logger.error(f"Replay of {task.id} failed: {e}", exc_info=True)
                completed = False

            if completed:
                await self.store.remove_queued(task.id)
                report.dispatched += 1
            else:
                report.failed += 1

        await self.sink.notify(
            notify.task_dispatched(user_id, report.dispatched, report.failed, report.deduplicated_from)
        )
        return report
