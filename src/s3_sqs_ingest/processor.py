# src/s3_sqs_ingest/processor.py

"""
Reads one staged S3 object and forwards its decoded records.

There is no partial-progress checkpoint: processing either reads and flushes
the whole file (True) or gives up (False), and a redelivered message re-reads
the file from the beginning.
"""

import logging
import threading
from contextlib import closing
from typing import Iterable

from .decoders import DecodedRecord, Decoder
from .exceptions import DecompressionError
from .lease import VisibilityExtender
from .notifications import get_object_folder
from .reader import read_lines
from .schemas import RecordMetadata, S3EventNotificationRecord
from .sinks import RecordSink

logger = logging.getLogger(__name__)


class FileProcessor:
    def __init__(self, sink: RecordSink, stop_event: threading.Event, key_prefix: str = ""):
        self._sink = sink
        self._stop_event = stop_event
        self._key_prefix = key_prefix

    def build_metadata(self, notification: S3EventNotificationRecord) -> RecordMetadata:
        return {
            "object_key": notification.key,
            "bucket_name": notification.bucket,
            "object_folder": get_object_folder(notification.key, self._key_prefix),
        }

    def _emit_all(self, records: Iterable[DecodedRecord], metadata: RecordMetadata) -> int:
        count = 0
        for record in records:
            record.metadata.update(metadata)
            self._sink.emit(record)
            count += 1
        return count

    def process(
        self,
        path: str,
        notification: S3EventNotificationRecord,
        decoder: Decoder,
        extender: VisibilityExtender,
    ) -> bool:
        """Returns True only if the whole file was read and the decoder flushed."""
        logger.debug("Processing file", extra={"path": path, "key": notification.key})
        metadata = self.build_metadata(notification)
        emitted = 0

        try:
            with closing(read_lines(path)) as lines:
                for line in lines:
                    extender.extend_if_needed()
                    if self._stop_event.is_set():
                        logger.warning(
                            "Stop requested in the middle of the file, it will be read again on redelivery",
                            extra={"path": path, "key": notification.key},
                        )
                        return False
                    emitted += self._emit_all(decoder.decode(line), metadata)
        except DecompressionError as e:
            logger.error("Processing failed, message will be retried", extra=e.to_dict())
            return False

        # Stateful decoders (e.g. multiline) may still hold the last record.
        emitted += self._emit_all(decoder.flush(), metadata)
        logger.debug(
            "End of file",
            extra={"path": path, "key": notification.key, "records": emitted},
        )
        return True
