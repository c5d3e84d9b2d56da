"""Queue worker that drives ingestion stages with bounded redelivery."""

from __future__ import annotations

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.application.ports import MessageQueue, QueuedMessage
from stardust_dsp.domain.policies import DEFAULT_RETRY_POLICY, RetryPolicy

LOGGER = logging.getLogger(__name__)


class StageHandler(Protocol):
    def handle(self, payload: dict[str, Any]) -> StageOutcome:
        """Process one job payload."""

    def on_exhausted(self, payload: dict[str, Any], detail: str) -> None:
        """Called once redelivery for a transient failure has run out."""


@dataclass
class PipelineWorker:
    """Pulls each topic in registration order and acks, nacks or gives up per outcome."""

    queue: MessageQueue
    handlers: dict[str, StageHandler]
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    max_concurrency: int = 4
    batch_size: int = 10
    sleep: Callable[[float], None] = time.sleep
    totals: Counter = field(default_factory=Counter)

    def run_once(self) -> Counter:
        """One pass over every registered topic; returns outcome counts for the pass."""

        counts: Counter = Counter()
        for topic, handler in self.handlers.items():
            messages = self.queue.pull(topic, max_messages=self.batch_size)
            if not messages:
                continue
            safe_concurrency = max(1, min(self.max_concurrency, len(messages)))
            with ThreadPoolExecutor(max_workers=safe_concurrency) as executor:
                futures = [executor.submit(self._dispatch, topic, handler, message) for message in messages]
                for future in as_completed(futures):
                    counts[future.result()] += 1
        self.totals.update(counts)
        return counts

    def drain(self, max_rounds: int = 100) -> Counter:
        """Run passes until the queues are quiet or ``max_rounds`` is reached.

        A quiet pass with redeliveries still backing off waits for the earliest one.
        """

        summary: Counter = Counter()
        for _ in range(max_rounds):
            counts = self.run_once()
            if not counts:
                wait = self.queue.seconds_until_ready()
                if wait is None:
                    break
                LOGGER.info("stage_redelivery_wait", extra={"wait_seconds": wait})
                self.sleep(wait)
                continue
            summary.update(counts)
        return summary

    def _dispatch(self, topic: str, handler: StageHandler, message: QueuedMessage) -> str:
        delivery_id = message.payload.get("deliveryId")
        try:
            outcome = handler.handle(dict(message.payload))
        except Exception as error:  # noqa: BLE001
            LOGGER.exception(
                "stage_handler_crashed",
                extra={"topic": topic, "delivery_id": delivery_id, "attempt": message.attempts},
            )
            outcome = StageOutcome.transient(delivery_id, str(error) or type(error).__name__)

        if not outcome.should_retry:
            self.queue.ack(message)
            LOGGER.info(
                "stage_outcome",
                extra={"topic": topic, "delivery_id": delivery_id, "outcome": outcome.kind.value},
            )
            return outcome.kind.value

        if self.retry_policy.exhausted(message.attempts):
            LOGGER.error(
                "stage_retries_exhausted",
                extra={"topic": topic, "delivery_id": delivery_id, "attempt": message.attempts},
            )
            try:
                handler.on_exhausted(dict(message.payload), outcome.detail or "")
            finally:
                self.queue.ack(message)
            return "exhausted"

        backoff = self.retry_policy.backoff_seconds(message.attempts)
        LOGGER.warning(
            "stage_retry_scheduled",
            extra={
                "topic": topic,
                "delivery_id": delivery_id,
                "attempt": message.attempts,
                "backoff_seconds": backoff,
            },
        )
        self.queue.nack(message, delay_seconds=backoff)
        return "retried"
