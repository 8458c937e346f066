# tests/unit/test_processor.py

import gzip
import queue
from unittest.mock import MagicMock

import pytest

from s3_sqs_ingest.decoders import MultilineDecoder, PlainDecoder
from s3_sqs_ingest.processor import FileProcessor
from s3_sqs_ingest.schemas import S3EventNotificationRecord
from s3_sqs_ingest.sinks import QueueSink

from conftest import make_s3_record


@pytest.fixture
def records_queue() -> queue.Queue:
    return queue.Queue()


@pytest.fixture
def processor(records_queue, stop_event) -> FileProcessor:
    return FileProcessor(QueueSink(records_queue), stop_event, key_prefix="logs")


@pytest.fixture
def notification() -> S3EventNotificationRecord:
    return S3EventNotificationRecord.model_validate(
        make_s3_record(key="logs/elb/2020/file.log", bucket="log-bucket")
    )


@pytest.fixture
def extender() -> MagicMock:
    return MagicMock()


def _drain(q: queue.Queue) -> list:
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


def test_plain_file_round_trips_every_line_in_order(
    processor, notification, extender, records_queue, tmp_path
):
    # Arrange
    lines = [f"L{i}" for i in range(1, 51)]
    path = tmp_path / "file.log"
    path.write_text("\n".join(lines) + "\n")

    # Act
    result = processor.process(str(path), notification, PlainDecoder(), extender)

    # Assert
    assert result is True
    emitted = _drain(records_queue)
    assert [r.message for r in emitted] == lines
    assert extender.extend_if_needed.call_count == len(lines)


def test_records_carry_object_metadata(processor, notification, extender, records_queue, tmp_path):
    path = tmp_path / "file.log"
    path.write_text("only line\n")

    processor.process(str(path), notification, PlainDecoder(), extender)

    (record,) = _drain(records_queue)
    assert record.metadata == {
        "object_key": "logs/elb/2020/file.log",
        "bucket_name": "log-bucket",
        "object_folder": "elb",
    }


def test_decoder_is_flushed_after_last_line(processor, notification, extender, records_queue, tmp_path):
    path = tmp_path / "trace.log.gz"
    with gzip.open(path, "wt") as f:
        f.write("first\n  continued\nsecond\n  continued\n")

    result = processor.process(str(path), notification, MultilineDecoder(r"^\s"), extender)

    assert result is True
    emitted = _drain(records_queue)
    assert [r.message for r in emitted] == ["first\n  continued", "second\n  continued"]
    assert emitted[-1].metadata["object_folder"] == "elb"


def test_stop_request_aborts_and_reports_failure(
    processor, notification, extender, records_queue, stop_event, tmp_path
):
    # Arrange
    path = tmp_path / "file.log"
    path.write_text("a\nb\nc\n")
    decoder = MagicMock(wraps=PlainDecoder())

    def stop_after_first(*_):
        if extender.extend_if_needed.call_count == 2:
            stop_event.set()

    extender.extend_if_needed.side_effect = stop_after_first

    # Act
    result = processor.process(str(path), notification, decoder, extender)

    # Assert
    assert result is False
    assert [r.message for r in _drain(records_queue)] == ["a"]
    decoder.flush.assert_not_called()


def test_corrupt_gzip_reports_failure(processor, notification, extender, tmp_path):
    path = tmp_path / "broken.gz"
    path.write_bytes(b"\x1f\x8b but not really gzip")

    assert processor.process(str(path), notification, PlainDecoder(), extender) is False


def test_lease_extension_errors_propagate(processor, notification, extender, tmp_path):
    path = tmp_path / "file.log"
    path.write_text("a\n")
    extender.extend_if_needed.side_effect = RuntimeError("lease lost")

    with pytest.raises(RuntimeError):
        processor.process(str(path), notification, PlainDecoder(), extender)
