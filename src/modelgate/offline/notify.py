"""User notifications for offline queueing and recovery.

Delivery is best-effort per channel: one failing channel never blocks the
others, and a notification failure never fails the caller.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from modelgate.core.logging import get_logger
from modelgate.dispatch.types import QueuedTask

logger = get_logger("offline.notify")


class NotificationType(Enum):
    OFFLINE_DETECTED = "offline_detected"
    TASK_QUEUED = "task_queued"
    ONLINE_RECOVERED = "online_recovered"
    TASK_DISPATCHED = "task_dispatched"


class Channel(Enum):
    POPUP = "popup"
    PUSH = "push"
    CHAT = "chat"


ALL_CHANNELS = (Channel.POPUP, Channel.PUSH, Channel.CHAT)


@dataclass
class Notification:
    type: NotificationType
    title: str
    body: str
    user_id: str | None = None
    channels: tuple[Channel, ...] = ALL_CHANNELS
    task_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


ChannelHandler = Callable[[Notification], Awaitable[None]]


class NotificationSink:
    """Fans a notification out to the registered channel handlers."""

    def __init__(self, handlers: dict[Channel, ChannelHandler] | None = None):
        self._handlers: dict[Channel, ChannelHandler] = dict(handlers or {})

    def register(self, channel: Channel, handler: ChannelHandler) -> None:
        self._handlers[channel] = handler
        logger.debug(f"Registered notification channel: {channel.value}")

    async def notify(self, notification: Notification) -> None:
        targets = [
            (channel, self._handlers[channel])
            for channel in notification.channels
            if channel in self._handlers
        ]
        if not targets:
            logger.debug(f"No handlers for {notification.type.value} notification")
            return

        results = await asyncio.gather(
            *(handler(notification) for _, handler in targets),
            return_exceptions=True,
        )
        for (channel, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"{channel.value} notification failed: {result}")


def offline_detected(user_id: str) -> Notification:
    return Notification(
        type=NotificationType.OFFLINE_DETECTED,
        user_id=user_id,
        title="Offline",
        body=(
            "You are not connected to the internet right now.\n"
            "Requests that need a cloud model will be queued and sent automatically "
            "once the connection is back."
        ),
    )


def task_queued(task: QueuedTask, unique_count: int) -> Notification:
    dupe_note = (
        f"\n(The same request was detected {task.duplicate_count} times and merged into one.)"
        if task.duplicate_count > 1
        else ""
    )
    return Notification(
        type=NotificationType.TASK_QUEUED,
        user_id=task.user_id,
        task_id=task.id,
        title="Offline - task waiting",
        body=(
            "You are not connected to the internet right now.\n\n"
            f"Task: {task.task_description}\n"
            f"Context: {task.context_summary}\n\n"
            "This task needs a cloud model and will be processed automatically "
            f"when the connection is back.{dupe_note}\n"
            f"Unique tasks waiting: {unique_count}"
        ),
    )


def online_recovered(user_id: str, unique: int, total_events: int) -> Notification:
    merged = total_events - unique
    dedup_note = (
        f"\n({merged} duplicate event(s) were merged; {unique} task(s) will be processed.)"
        if merged > 0
        else ""
    )
    return Notification(
        type=NotificationType.ONLINE_RECOVERED,
        user_id=user_id,
        title="Back online - processing tasks",
        body=(
            "The internet connection is back.\n\n"
            f"Sending {unique} waiting task(s) to the cloud model.{dedup_note}\n"
            "Please wait a moment..."
        ),
    )


def task_dispatched(user_id: str, dispatched: int, failed: int, deduplicated_from: int) -> Notification:
    processed = dispatched + failed
    dedup_note = (
        f"\n({processed} processed out of {deduplicated_from} original request(s) after merging duplicates.)"
        if deduplicated_from > processed
        else ""
    )
    if failed:
        body = (
            "Waiting tasks processed.\n\n"
            f"Succeeded: {dispatched}\nFailed: {failed}{dedup_note}\n\n"
            "Failed tasks will be retried."
        )
    else:
        body = f"All {dispatched} waiting task(s) were processed.{dedup_note}"
    return Notification(
        type=NotificationType.TASK_DISPATCHED,
        user_id=user_id,
        title="Waiting tasks processed",
        body=body,
    )


def task_result(user_id: str, task_id: str, response: str) -> Notification:
    """Answer for a replayed task, delivered in the chat."""
    return Notification(
        type=NotificationType.TASK_DISPATCHED,
        user_id=user_id,
        task_id=task_id,
        channels=(Channel.CHAT,),
        title="Answer to your queued request",
        body=response,
    )
