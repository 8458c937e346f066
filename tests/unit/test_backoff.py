# tests/unit/test_backoff.py

import threading
from unittest.mock import MagicMock

import pytest

from s3_sqs_ingest.backoff import Backoff, run_with_backoff
from s3_sqs_ingest.exceptions import QueueServiceError


def test_backoff_sequence_doubles_then_resets_past_ceiling():
    backoff = Backoff()

    delays = [backoff.next_delay() for _ in range(9)]

    assert delays == [1, 2, 4, 8, 16, 32, 1, 2, 4]


def test_backoff_reset_returns_to_initial_delay():
    backoff = Backoff()
    for _ in range(3):
        backoff.next_delay()

    backoff.reset()

    assert backoff.next_delay() == 1


def test_run_with_backoff_retries_service_errors_with_growing_delays():
    """
    Verifies the operation is retried after each QueueServiceError and that the
    waits follow the backoff sequence.
    """
    # Arrange
    operation = MagicMock(
        side_effect=[
            QueueServiceError("receive_message", "boom"),
            QueueServiceError("receive_message", "boom"),
            QueueServiceError("receive_message", "boom"),
            None,
        ]
    )
    stop_event = MagicMock(spec=threading.Event)
    stop_event.wait.return_value = False

    # Act
    run_with_backoff(operation, stop_event)

    # Assert
    assert operation.call_count == 4
    assert [c.args[0] for c in stop_event.wait.call_args_list] == [1, 2, 4]


def test_run_with_backoff_resets_delay_after_success():
    backoff = Backoff()
    stop_event = MagicMock(spec=threading.Event)
    stop_event.wait.return_value = False
    operation = MagicMock(side_effect=[QueueServiceError("receive_message", "boom"), None])

    run_with_backoff(operation, stop_event, backoff)

    assert backoff.next_delay() == 1


def test_run_with_backoff_returns_when_stopped_while_waiting():
    operation = MagicMock(side_effect=QueueServiceError("receive_message", "boom"))
    stop_event = threading.Event()
    stop_event.set()

    run_with_backoff(operation, stop_event)

    operation.assert_called_once()


def test_run_with_backoff_propagates_other_errors():
    operation = MagicMock(side_effect=RuntimeError("unrecoverable"))

    with pytest.raises(RuntimeError):
        run_with_backoff(operation, threading.Event())

    operation.assert_called_once()
