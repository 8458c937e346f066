# src/s3_sqs_ingest/notifications.py

"""
Parsing of SQS message bodies into S3 object-created notifications.

A body is either the raw S3 event document (S3 -> SQS) or an SNS envelope
whose "Message" field holds that document as a JSON string (S3 -> SNS -> SQS).
Anything that is not an actionable object-created record is dropped here, so
the caller can delete the owning message without downloading anything.
"""

import json
import logging
import re
from typing import Any

import pydantic

from .schemas import S3EventNotificationRecord

logger = logging.getLogger(__name__)


def _load_document(body: str, from_sns: bool) -> dict[str, Any] | None:
    try:
        document = json.loads(body)
        if from_sns:
            if not isinstance(document, dict) or "Message" not in document:
                logger.warning("SNS envelope has no 'Message' field. Skipping.")
                return None
            document = json.loads(document["Message"])
    except (ValueError, TypeError, RecursionError) as e:
        # Deeply nested documents raise RecursionError from the decoder.
        logger.warning(
            "Failed to parse SQS message body.",
            extra={"error_type": type(e).__name__, "error": str(e)[:200]},
        )
        return None

    if not isinstance(document, dict):
        logger.warning(
            "Notification is not a JSON object. Skipping.",
            extra={"document_type": type(document).__name__},
        )
        return None
    return document


def parse_notifications(
    body: str, from_sns: bool = True
) -> list[S3EventNotificationRecord]:
    """
    Returns the object-created records contained in an SQS message body.

    Never raises: malformed bodies, test events without a "Records" list and
    records of other event types all yield an empty (or shorter) list.
    """
    document = _load_document(body, from_sns)
    if document is None:
        return []

    # S3 sends an s3:TestEvent without Records when a notification is configured.
    raw_records = document.get("Records")
    if not isinstance(raw_records, list):
        logger.info(
            "Notification has no 'Records' list. Nothing to process.",
            extra={"event": document.get("Event")},
        )
        return []

    notifications: list[S3EventNotificationRecord] = []
    for raw_record in raw_records:
        try:
            record = S3EventNotificationRecord.model_validate(raw_record)
        except pydantic.ValidationError as e:
            logger.warning(
                "Invalid S3 record failed validation. Skipping.",
                extra={"validation_errors": e.errors(include_url=False)},
            )
            continue

        if not record.is_object_created():
            logger.debug(
                "Ignoring non object-created record.",
                extra={
                    "event_source": record.event_source,
                    "event_name": record.event_name,
                },
            )
            continue
        notifications.append(record)

    return notifications


def get_object_folder(key: str, prefix: str = "") -> str:
    """
    Returns the path segment that follows *prefix* in *key*.

    >>> get_object_folder("logs/elb/2020/file.gz", "logs")
    'elb'
    >>> get_object_folder("logs/file.gz", "logs")
    ''
    """
    match = re.search(rf"{re.escape(prefix)}/?(?P<folder>.*?)/.*", key)
    if match is None:
        return ""
    return match.group("folder")
