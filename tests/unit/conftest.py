"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import json
import threading
import uuid

import pytest

from s3_sqs_ingest.clients import QueueMessage
from s3_sqs_ingest.config import AppConfig


@pytest.fixture(scope="session", autouse=True)
def _aws_env():
    """
    Ensures boto3 never picks up real credentials or a real region.
    """
    mp = pytest.MonkeyPatch()
    mp.setenv("AWS_ACCESS_KEY_ID", "testing")
    mp.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    mp.setenv("AWS_SECURITY_TOKEN", "testing")
    mp.setenv("AWS_SESSION_TOKEN", "testing")
    mp.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    yield
    mp.undo()


# ---------- Minimal, realistic dummy events ---------- #
def make_s3_record(
    key: str = "logs/elb/2020/file1.log",
    bucket: str = "source-bucket",
    size: int | None = 123,
    event_name: str = "ObjectCreated:Put",
    event_source: str = "aws:s3",
) -> dict:
    obj: dict = {"key": key}
    if size is not None:
        obj["size"] = size
    return {
        "eventVersion": "2.1",
        "eventSource": event_source,
        "awsRegion": "eu-west-1",
        "eventTime": "2020-01-01T00:00:00.000Z",
        "eventName": event_name,
        "s3": {"bucket": {"name": bucket}, "object": obj},
    }


def make_body(*records: dict, from_sns: bool = False) -> str:
    s3_event = json.dumps({"Records": list(records)})
    if not from_sns:
        return s3_event
    return json.dumps(
        {
            "Type": "Notification",
            "MessageId": str(uuid.uuid4()),
            "TopicArn": "arn:aws:sns:eu-west-1:000000000000:s3-events",
            "Message": s3_event,
        }
    )


def make_message(body: str) -> QueueMessage:
    return QueueMessage(
        message_id=str(uuid.uuid4()),
        receipt_handle="receipt-" + uuid.uuid4().hex,
        body=body,
    )


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """A direct (non-SNS) configuration staging files under tmp_path."""
    return AppConfig(
        queue_name="test-queue",
        s3_key_prefix="logs",
        from_sns=False,
        visibility_timeout=600,
        temporary_directory=str(tmp_path / "staging"),
    )


@pytest.fixture
def stop_event() -> threading.Event:
    return threading.Event()
