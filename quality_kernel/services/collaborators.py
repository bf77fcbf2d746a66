"""
Collaborator protocols for the quality services.

Responsibility:
    Narrow interfaces for the two side effects the workflow needs beyond
    the record store: attachment blob storage and best-effort
    notifications.  Production adapters live outside the kernel; the
    in-memory implementations here back tests and local runs.

Failure modes:
    - ObjectStorage implementations raise ObjectStorageError.
    - Notifier implementations raise NotificationError.  Services treat
      notification as best effort: see ``notify_best_effort``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from quality_kernel.exceptions import NotificationError


@runtime_checkable
class ObjectStorage(Protocol):
    """Blob storage for NCR attachments."""

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return a retrievable URL."""
        ...

    def delete(self, key: str) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget notification sink."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...


class InMemoryObjectStorage:
    """Dict-backed ObjectStorage."""

    def __init__(self, base_url: str = "memory://attachments"):
        self.base_url = base_url.rstrip("/")
        self.blobs: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str) -> str:
        with self._lock:
            self.blobs[key] = (data, content_type)
        return f"{self.base_url}/{key}"

    def delete(self, key: str) -> None:
        with self._lock:
            self.blobs.pop(key, None)


class NullNotifier:
    """Drops every notification."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        return None


@dataclass(frozen=True)
class Notification:
    event: str
    payload: dict[str, Any]


class RecordingNotifier:
    """Keeps every notification in memory, in order."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []
        self._lock = threading.Lock()

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append(Notification(event, dict(payload)))

    def events(self) -> list[str]:
        return [n.event for n in self.sent]


def notify_best_effort(
    notifier: Notifier,
    event: str,
    payload: dict[str, Any],
    logger: logging.Logger,
) -> bool:
    """Deliver a notification; log and swallow delivery failures.

    Returns True when the notifier accepted the event.
    """
    try:
        notifier.notify(event, payload)
    except NotificationError as exc:
        logger.warning(
            "notification_failed",
            extra={"event": event, "reason": exc.reason},
        )
        return False
    return True
