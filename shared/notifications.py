"""
Download progress notifications.
Keeps in-flight download notifications per user scope, in memory.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from shared.constants import NOTIFICATION_REMOVE_DELAY
from shared.models import DownloadNotification, NotificationStatus

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, DownloadNotification], None]


class DownloadNotificationCenter:
    """
    Tracks download notifications for each scope (user id).
    Completed notifications are dropped NOTIFICATION_REMOVE_DELAY seconds
    after completion; errored ones stay until removed.
    """

    def __init__(self, remove_delay: float = NOTIFICATION_REMOVE_DELAY,
                 clock: Callable[[], float] = time.time):
        self._notifications: Dict[str, Dict[str, DownloadNotification]] = {}
        self._lock = threading.Lock()
        self._on_change_callbacks: List[ChangeCallback] = []
        self._remove_delay = remove_delay
        self._clock = clock

    def add_download(self, scope: str, download_id: str, title: str) -> DownloadNotification:
        notification = DownloadNotification(id=download_id, title=title)
        with self._lock:
            self._notifications.setdefault(scope, {})[download_id] = notification
        self._notify_change(scope, notification)
        return notification

    def update_progress(self, scope: str, download_id: str, progress: float) -> Optional[DownloadNotification]:
        """Set progress (capped at 100); unknown ids are ignored."""
        with self._lock:
            notification = self._notifications.get(scope, {}).get(download_id)
            if notification is None:
                return None
            notification.progress = min(float(progress), 100.0)
        self._notify_change(scope, notification)
        return notification

    def complete_download(self, scope: str, download_id: str) -> Optional[DownloadNotification]:
        with self._lock:
            notification = self._notifications.get(scope, {}).get(download_id)
            if notification is None:
                return None
            notification.status = NotificationStatus.COMPLETED
            notification.progress = 100.0
            notification.completed_at = self._clock()
        self._notify_change(scope, notification)
        return notification

    def fail_download(self, scope: str, download_id: str) -> Optional[DownloadNotification]:
        with self._lock:
            notification = self._notifications.get(scope, {}).get(download_id)
            if notification is None:
                return None
            notification.status = NotificationStatus.ERROR
        self._notify_change(scope, notification)
        return notification

    def remove_notification(self, scope: str, download_id: str) -> bool:
        with self._lock:
            return self._notifications.get(scope, {}).pop(download_id, None) is not None

    def list(self, scope: str) -> List[DownloadNotification]:
        """Current notifications for a scope, oldest first."""
        with self._lock:
            self._expire(scope)
            return list(self._notifications.get(scope, {}).values())

    def _expire(self, scope: str) -> None:
        now = self._clock()
        scope_items = self._notifications.get(scope, {})
        expired = [
            download_id
            for download_id, n in scope_items.items()
            if n.status == NotificationStatus.COMPLETED
            and n.completed_at is not None
            and now - n.completed_at >= self._remove_delay
        ]
        for download_id in expired:
            scope_items.pop(download_id, None)

    def add_change_callback(self, callback: ChangeCallback) -> None:
        """Register a callback to be called when a notification changes."""
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def remove_change_callback(self, callback: ChangeCallback) -> None:
        if callback in self._on_change_callbacks:
            self._on_change_callbacks.remove(callback)

    def _notify_change(self, scope: str, notification: DownloadNotification) -> None:
        for callback in self._on_change_callbacks:
            try:
                callback(scope, notification)
            except Exception as e:
                logger.error(f"Error in download notification callback: {e}")
