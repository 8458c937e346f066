# src/s3_sqs_ingest/sinks.py

import json
import queue
import sys
import threading
from typing import Protocol, TextIO

from .decoders import DecodedRecord


class RecordSink(Protocol):
    def emit(self, record: DecodedRecord) -> None: ...


class QueueSink:
    """Hands records to an in-process consumer through a queue.Queue."""

    def __init__(self, target: "queue.Queue[DecodedRecord]"):
        self._queue = target

    def emit(self, record: DecodedRecord) -> None:
        self._queue.put(record)


class JsonLinesSink:
    """Writes one JSON document per record; safe to share between workers."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()

    def emit(self, record: DecodedRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False, default=str)
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()
