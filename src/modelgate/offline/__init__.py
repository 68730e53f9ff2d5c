"""Offline queueing, network monitoring and recovery notifications."""

from modelgate.offline.monitor import NetworkMonitor, ReachabilityProbe
from modelgate.offline.notify import Channel, Notification, NotificationSink, NotificationType
from modelgate.offline.queue import DrainReport, OfflineQueue

__all__ = [
    "Channel",
    "DrainReport",
    "NetworkMonitor",
    "Notification",
    "NotificationSink",
    "NotificationType",
    "OfflineQueue",
    "ReachabilityProbe",
]
