# src/s3_sqs_ingest/worker.py

"""
Message handling, poll loops and the worker pool.

Per message:

    RECEIVED -> PARSING -> no actionable records -> DELETE
                        -> per record: DOWNLOADING -> PROCESSING
                           -> remove staged file -> optional S3 delete
                        -> all records succeeded -> DELETE
                        -> any record failed -> RETAINED

RETAINED is simply the absence of a delete call: SQS redelivers the message
once its visibility timeout lapses, and the whole object is processed again.
"""

import logging
import os
import threading
import time
from typing import Callable

from .backoff import run_with_backoff
from .clients import DownloadOutcome, QueueMessage, S3Client, SQSQueueClient
from .config import AppConfig
from .decoders import DecoderRegistry
from .exceptions import S3Error
from .lease import VisibilityExtender
from .notifications import get_object_folder, parse_notifications
from .poller import PollerStats, QueuePoller
from .processor import FileProcessor
from .schemas import S3EventNotificationRecord
from .security import staging_path
from .sinks import RecordSink

logger = logging.getLogger(__name__)


def remove_staged_file(path: str) -> None:
    """Best-effort removal; failures are logged and never raised."""
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(
            "Problem cleaning up the staged file",
            extra={"path": path, "error": str(e)},
        )


class MessageHandler:
    """Processes every object referenced by one SQS message."""

    def __init__(
        self,
        config: AppConfig,
        queue: SQSQueueClient,
        s3_client: S3Client,
        decoders: DecoderRegistry,
        sink: RecordSink,
        stop_event: threading.Event,
    ):
        self._config = config
        self._queue = queue
        self._s3 = s3_client
        self._decoders = decoders
        self._stop_event = stop_event
        self._processor = FileProcessor(sink, stop_event, key_prefix=config.s3_key_prefix)

    def handle(self, message: QueueMessage) -> bool:
        """Returns True when the message may be deleted from the queue."""
        notifications = parse_notifications(message.body, from_sns=self._config.from_sns)
        if not notifications:
            logger.info(
                "No actionable records in message",
                extra={"message_id": message.message_id},
            )
            return True

        # Created before the first download so download time counts against the lease.
        extender = VisibilityExtender(self._queue, message, self._config.visibility_timeout)
        for notification in notifications:
            if not self.process_object(notification, extender):
                return False
        return True

    def process_object(
        self, notification: S3EventNotificationRecord, extender: VisibilityExtender
    ) -> bool:
        bucket, key = notification.bucket, notification.key
        local_path = staging_path(self._config.temporary_directory, key)
        logger.debug("Reading object", extra={"bucket": bucket, "key": key})

        try:
            outcome = self._s3.download_to_file(
                bucket,
                key,
                local_path,
                self._stop_event,
                expected_size=notification.size,
                extender=extender,
            )
            if outcome is not DownloadOutcome.SUCCEEDED:
                logger.warning(
                    "Object not downloaded, message will be retried",
                    extra={"bucket": bucket, "key": key, "outcome": outcome.value},
                )
                return False

            folder = get_object_folder(key, self._config.s3_key_prefix)
            decoder = self._decoders.create_for_folder(folder)
            if not self._processor.process(local_path, notification, decoder, extender):
                return False
        finally:
            remove_staged_file(local_path)

        if self._config.delete_on_success:
            try:
                self._s3.delete_object(bucket, key)
            except S3Error as e:
                # Records are already downstream; the object is left for its lifecycle rule.
                logger.warning("Problem deleting the processed object", extra=e.to_dict())
        return True


class ConsumerWorker:
    """One poll-process-delete loop with its own stop event."""

    def __init__(
        self,
        name: str,
        poller: QueuePoller,
        handler: Callable[[QueueMessage], bool],
        stop_event: threading.Event | None = None,
    ):
        self.name = name
        self.poller = poller
        self.handler = handler
        self.stop_event = stop_event or threading.Event()
        self.poller.before_request(self._stop_requested)

    def _stop_requested(self, stats: PollerStats) -> bool:
        if self.stop_event.is_set():
            logger.warning(
                "Stop requested, stopping polling",
                extra={"worker": self.name, "queue_url": self.poller.queue.queue_url},
            )
            return True
        return False

    def run(self) -> None:
        logger.info("Starting consumer worker", extra={"worker": self.name})
        run_with_backoff(lambda: self.poller.poll(self.handler), self.stop_event)
        logger.info("Consumer worker stopped", extra={"worker": self.name})

    def stop(self) -> None:
        self.stop_event.set()


WorkerFactory = Callable[[str], ConsumerWorker]


class WorkerPool:
    """
    Runs consumer workers either on the calling thread (single-loop mode,
    size=None) or on `size` daemon threads (multi-worker mode).
    """

    def __init__(self, worker_factory: WorkerFactory, size: int | None = None):
        if size is not None and size <= 0:
            raise ValueError("size must be a positive integer")
        self.size = size
        self.workers = [worker_factory(f"worker-{i}") for i in range(size or 1)]
        self._threads: list[threading.Thread] = []
        self.stop_requested = threading.Event()

    @property
    def threaded(self) -> bool:
        return self.size is not None

    def start(self) -> None:
        """Starts the worker threads (multi-worker mode only)."""
        if not self.threaded:
            raise RuntimeError("start() is only available in multi-worker mode")
        for worker in self.workers:
            thread = threading.Thread(target=worker.run, name=worker.name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def run(self) -> None:
        """Blocks until every worker has stopped."""
        if self.threaded:
            self.start()
            for thread in self._threads:
                thread.join()
        else:
            self.workers[0].run()

    def is_alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def stop(self) -> None:
        self.stop_requested.set()
        for worker in self.workers:
            logger.info("Stopping worker", extra={"worker": worker.name})
            worker.stop()

    def join(self, timeout: float) -> list[str]:
        """
        Waits up to *timeout* seconds overall for the worker threads. Returns
        the names of threads still running; being daemons, they are abandoned
        when the process exits.
        """
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            logger.error("Workers did not stop in time, abandoning them", extra={"workers": alive})
        return alive


def build_worker_factory(
    config: AppConfig,
    queue: SQSQueueClient,
    s3_client: S3Client,
    decoders: DecoderRegistry,
    sink: RecordSink,
) -> WorkerFactory:
    def factory(name: str) -> ConsumerWorker:
        stop_event = threading.Event()
        poller = QueuePoller(
            queue,
            wait_time_seconds=config.wait_time_seconds,
            visibility_timeout=config.visibility_timeout,
        )
        handler = MessageHandler(config, queue, s3_client, decoders, sink, stop_event)
        return ConsumerWorker(name, poller, handler.handle, stop_event)

    return factory
