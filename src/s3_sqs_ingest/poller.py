# src/s3_sqs_ingest/poller.py

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from .clients import QueueMessage, SQSQueueClient
from .exceptions import QueueServiceError, get_error_context, is_retryable_error

logger = logging.getLogger(__name__)


@dataclass
class PollerStats:
    polling_started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_count: int = 0
    received_message_count: int = 0
    deleted_message_count: int = 0
    last_message_received_at: datetime | None = None


# Returns True to stop polling.
BeforeRequest = Callable[[PollerStats], bool]
MessageHandlerFn = Callable[[QueueMessage], bool]


class QueuePoller:
    """
    Long-polls one SQS queue, one message at a time.

    The handler's return value decides the message's fate: True deletes it,
    False leaves it to reappear once its visibility timeout expires.
    """

    def __init__(
        self,
        queue: SQSQueueClient,
        wait_time_seconds: int | None = None,
        visibility_timeout: int | None = None,
    ):
        self.queue = queue
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout = visibility_timeout
        self._before_request: list[BeforeRequest] = []

    def before_request(self, callback: BeforeRequest) -> None:
        self._before_request.append(callback)

    def _should_stop(self, stats: PollerStats) -> bool:
        return any(callback(stats) for callback in self._before_request)

    def poll(self, handler: MessageHandlerFn) -> PollerStats:
        """
        Polls until a before_request callback asks to stop. Raises
        QueueServiceError when receiving from or deleting on the queue fails.
        """
        stats = PollerStats()
        while not self._should_stop(stats):
            stats.request_count += 1
            message = self.queue.receive_message(
                wait_time_seconds=self.wait_time_seconds,
                visibility_timeout=self.visibility_timeout,
            )
            if message is None:
                continue

            stats.received_message_count += 1
            stats.last_message_received_at = datetime.now(timezone.utc)
            if self._handle(handler, message):
                self.queue.delete_message(message)
                stats.deleted_message_count += 1

        logger.info(
            "Stopped polling",
            extra={
                "queue_url": self.queue.queue_url,
                "request_count": stats.request_count,
                "received_message_count": stats.received_message_count,
                "deleted_message_count": stats.deleted_message_count,
            },
        )
        return stats

    def _handle(self, handler: MessageHandlerFn, message: QueueMessage) -> bool:
        started = time.monotonic()
        try:
            succeeded = handler(message)
        except QueueServiceError as e:
            # A failed lease extension; the message will be redelivered.
            logger.warning(
                "SQS error while handling message, it will be retried",
                extra={"message_id": message.message_id, **get_error_context(e)},
            )
            return False
        except Exception as e:
            logger.exception(
                "Error in poller block, message will be retried",
                extra={"message_id": message.message_id, "retryable": is_retryable_error(e)},
            )
            return False

        logger.info(
            "Handled message",
            extra={
                "message_id": message.message_id,
                "succeeded": succeeded,
                "duration_seconds": round(time.monotonic() - started, 3),
            },
        )
        return succeeded
