# src/s3_sqs_ingest/backoff.py

"""
Exponential backoff around long-running SQS polling.

The wrapped operation is normally a poll loop that only returns on shutdown,
so a transient SQS failure is retried forever. The delay doubles from
BACKOFF_SLEEP_TIME and, instead of growing past MAX_BACKOFF_TIME, starts over
from the initial value: an outage is retried frequently rather than abandoned.
"""

import logging
import threading
from typing import Callable

from .exceptions import QueueServiceError, get_error_context

logger = logging.getLogger(__name__)

BACKOFF_SLEEP_TIME = 1.0
BACKOFF_FACTOR = 2
MAX_BACKOFF_TIME = 60.0


class Backoff:
    """Yields the bounded, oscillating sequence of retry delays."""

    def __init__(
        self,
        initial: float = BACKOFF_SLEEP_TIME,
        factor: float = BACKOFF_FACTOR,
        ceiling: float = MAX_BACKOFF_TIME,
    ):
        self.initial = initial
        self.factor = factor
        self.ceiling = ceiling
        self._next = initial

    def next_delay(self) -> float:
        delay = self._next
        following = delay * self.factor
        self._next = self.initial if following > self.ceiling else following
        return delay

    def reset(self) -> None:
        self._next = self.initial


def run_with_backoff(
    operation: Callable[[], None],
    stop_event: threading.Event,
    backoff: Backoff | None = None,
) -> None:
    """
    Runs *operation*, retrying it after a backoff delay whenever it raises a
    QueueServiceError. Returns once the operation completes normally or when
    *stop_event* is set while waiting to retry.
    """
    backoff = backoff or Backoff()
    while True:
        try:
            operation()
        except QueueServiceError as e:
            delay = backoff.next_delay()
            logger.warning(
                "SQS service error, retrying with exponential backoff",
                extra={"sleep_time": delay, **get_error_context(e)},
            )
            if stop_event.wait(delay):
                logger.info("Stop requested while backing off. Not retrying.")
                return
            continue
        backoff.reset()
        return
