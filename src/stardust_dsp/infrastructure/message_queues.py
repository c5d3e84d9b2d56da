"""Topic queue stored in the document store, so queued jobs survive restarts."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from stardust_dsp.application.ports import DocumentStore, Filter, QueuedMessage
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)

QUEUE_COLLECTION = "queueMessages"


@dataclass
class DocumentStoreMessageQueue:
    """At-least-once delivery: pulled messages are leased until acked, nacked or expired."""

    store: DocumentStore
    lease_seconds: int = 300
    clock: Callable[[], datetime] = utc_now
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def publish(self, topic: str, payload: Mapping[str, Any]) -> str:
        message_id = uuid.uuid4().hex
        self.store.set(
            QUEUE_COLLECTION,
            message_id,
            {
                "topic": topic,
                "payload": dict(payload),
                "status": "ready",
                "attempts": 0,
                "sequence": time.time_ns(),
                "publishedAt": self.clock().isoformat(),
                "leasedUntil": None,
                "notBefore": None,
            },
        )
        LOGGER.debug("message_published", extra={"topic": topic, "message_id": message_id})
        return message_id

    def pull(self, topic: str, max_messages: int = 10) -> list[QueuedMessage]:
        with self._lock:
            self._release_expired(topic)
            now = self.clock().isoformat()
            ready = [
                item
                for item in self.store.query(
                    QUEUE_COLLECTION,
                    [Filter("topic", "==", topic), Filter("status", "==", "ready")],
                    order_by="sequence",
                )
                if not item.data.get("notBefore") or item.data["notBefore"] <= now
            ][:max_messages]
            leased_until = (self.clock() + timedelta(seconds=self.lease_seconds)).isoformat()
            messages: list[QueuedMessage] = []
            for item in ready:
                attempts = int(item.data.get("attempts") or 0) + 1
                self.store.update(
                    QUEUE_COLLECTION,
                    item.key,
                    {"status": "leased", "attempts": attempts, "leasedUntil": leased_until},
                )
                messages.append(QueuedMessage(item.key, topic, dict(item.data["payload"]), attempts))
            return messages

    def ack(self, message: QueuedMessage) -> None:
        self.store.delete(QUEUE_COLLECTION, message.message_id)

    def nack(self, message: QueuedMessage, delay_seconds: float = 0.0) -> None:
        not_before = (self.clock() + timedelta(seconds=delay_seconds)).isoformat() if delay_seconds > 0 else None
        self.store.update(
            QUEUE_COLLECTION,
            message.message_id,
            {"status": "ready", "leasedUntil": None, "notBefore": not_before},
        )

    def seconds_until_ready(self) -> float | None:
        """Seconds until the earliest deferred message is due, or None when nothing is deferred."""

        deferred = [
            item.data["notBefore"]
            for item in self.store.query(QUEUE_COLLECTION, [Filter("status", "==", "ready")])
            if item.data.get("notBefore")
        ]
        if not deferred:
            return None
        due = datetime.fromisoformat(min(deferred))
        return max((due - self.clock()).total_seconds(), 0.0)

    def pending(self, topic: str | None = None) -> dict[str, int]:
        """Count of queued (ready or leased) messages per topic."""

        filters = [Filter("topic", "==", topic)] if topic else []
        counts: dict[str, int] = {}
        for item in self.store.query(QUEUE_COLLECTION, filters):
            counts[item.data["topic"]] = counts.get(item.data["topic"], 0) + 1
        return counts

    def _release_expired(self, topic: str) -> None:
        expired = self.store.query(
            QUEUE_COLLECTION,
            [
                Filter("topic", "==", topic),
                Filter("status", "==", "leased"),
                Filter("leasedUntil", "<", self.clock().isoformat()),
            ],
        )
        for item in expired:
            LOGGER.warning("message_lease_expired", extra={"topic": topic, "message_id": item.key})
            self.store.update(QUEUE_COLLECTION, item.key, {"status": "ready", "leasedUntil": None})
