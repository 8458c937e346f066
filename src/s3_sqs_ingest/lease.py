# src/s3_sqs_ingest/lease.py

import logging
import time
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .clients import QueueMessage, SQSQueueClient

logger = logging.getLogger(__name__)

# Renew once this share of the visibility timeout has elapsed.
EXTENSION_THRESHOLD = 0.9


class VisibilityExtender:
    """
    Keeps an in-flight SQS message invisible while its object is processed.

    `extend_if_needed` is called from the processing loop itself, once per
    line, never from a timer thread: a worker that stops making progress stops
    renewing, and the message returns to the queue when its lease runs out.
    """

    def __init__(
        self,
        queue: "SQSQueueClient",
        message: "QueueMessage",
        visibility_timeout: int,
        started_at: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._queue = queue
        self._message = message
        self._visibility_timeout = visibility_timeout
        self._clock = clock
        self.started_at = clock() if started_at is None else started_at
        self.extension_count = 0

    @property
    def threshold_seconds(self) -> float:
        return self._visibility_timeout * EXTENSION_THRESHOLD

    def extend_if_needed(self) -> bool:
        """Renews the lease when 90% of it has elapsed; returns True if renewed."""
        now = self._clock()
        elapsed = now - self.started_at
        if elapsed < self.threshold_seconds:
            return False

        logger.info(
            "Increasing the visibility timeout",
            extra={
                "message_id": self._message.message_id,
                "visibility_timeout": self._visibility_timeout,
                "elapsed_seconds": round(elapsed, 2),
            },
        )
        self._queue.change_message_visibility(self._message, self._visibility_timeout)
        self.started_at = self._clock()
        self.extension_count += 1
        return True
