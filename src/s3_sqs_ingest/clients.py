# src/s3_sqs_ingest/clients.py

"""
Client wrappers for interacting with AWS services (SQS, S3 and STS).

These classes provide a clean, abstracted interface over raw boto3 clients,
making the consumer logic easier to read, test, and maintain. boto3 low-level
clients are thread-safe, so one wrapper instance is shared by all workers.
"""

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, cast

import boto3
from botocore.config import Config as BotoConfig
from botocore.credentials import CredentialProvider, RefreshableCredentials
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from botocore.session import get_session

from .config import AppConfig
from .exceptions import (
    QueueServiceError,
    S3AccessDeniedError,
    S3DownloadError,
    S3Error,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType
    from mypy_boto3_sqs.client import SQSClient as SQSClientType

    from .lease import VisibilityExtender

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_THROTTLING_CODES = {"Throttling", "ThrottlingException", "RequestLimitExceeded", "SlowDown"}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}
_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "404"}
_ACCESS_DENIED_CODES = {"AccessDenied", "403"}
_TRANSPORT_ERRORS = (EndpointConnectionError, ReadTimeoutError, ConnectionClosedError)


# --- SQS ---


@dataclass(frozen=True)
class QueueMessage:
    """A message received from SQS; the receipt handle is its lease token."""

    message_id: str
    receipt_handle: str
    body: str
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, raw: dict[str, Any]) -> "QueueMessage":
        return cls(
            message_id=raw["MessageId"],
            receipt_handle=raw["ReceiptHandle"],
            body=raw.get("Body", ""),
            attributes=dict(raw.get("Attributes", {})),
        )


class SQSQueueClient:
    """
    A wrapper for the SQS operations of a single queue. Every failure is
    surfaced as a QueueServiceError so callers can back off uniformly.
    """

    def __init__(self, sqs_client: "SQSClientType", queue_url: str):
        self._client = sqs_client
        self.queue_url = queue_url

    @classmethod
    def from_queue_name(cls, sqs_client: "SQSClientType", queue_name: str) -> "SQSQueueClient":
        try:
            queue_url = sqs_client.get_queue_url(QueueName=queue_name)["QueueUrl"]
        except (ClientError, BotoCoreError) as e:
            raise QueueServiceError(
                "GetQueueUrl", str(e), context={"queue_name": queue_name}
            ) from e
        logger.info("Resolved SQS queue", extra={"queue_name": queue_name, "queue_url": queue_url})
        return cls(sqs_client, queue_url)

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        method = getattr(self._client, operation)
        try:
            return cast(dict[str, Any], method(QueueUrl=self.queue_url, **kwargs))
        except ClientError as e:
            raise QueueServiceError(
                operation,
                e.response["Error"].get("Message", str(e)),
                context={
                    "queue_url": self.queue_url,
                    "aws_error_code": e.response["Error"].get("Code"),
                },
            ) from e
        except BotoCoreError as e:
            raise QueueServiceError(
                operation, str(e), context={"queue_url": self.queue_url}
            ) from e

    def receive_message(
        self,
        wait_time_seconds: int | None = None,
        visibility_timeout: int | None = None,
    ) -> QueueMessage | None:
        """
        Long-polls for a single message. One at a time, so a failed download
        maps to exactly one message that must not be deleted.
        """
        params: dict[str, Any] = {
            "MaxNumberOfMessages": 1,
            "AttributeNames": ["All"],
        }
        if wait_time_seconds is not None:
            params["WaitTimeSeconds"] = wait_time_seconds
        if visibility_timeout is not None:
            params["VisibilityTimeout"] = visibility_timeout

        response = self._call("receive_message", **params)
        messages = response.get("Messages", [])
        if not messages:
            return None
        return QueueMessage.from_response(messages[0])

    def change_message_visibility(self, message: QueueMessage, visibility_timeout: int) -> None:
        self._call(
            "change_message_visibility",
            ReceiptHandle=message.receipt_handle,
            VisibilityTimeout=visibility_timeout,
        )

    def delete_message(self, message: QueueMessage) -> None:
        self._call("delete_message", ReceiptHandle=message.receipt_handle)
        logger.debug("Deleted message from SQS", extra={"message_id": message.message_id})


# --- S3 ---


class DownloadOutcome(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"


def _map_s3_client_error(e: ClientError, bucket: str, key: str) -> S3Error:
    """Map boto3 error codes to our specific exception types."""
    error_code = e.response["Error"]["Code"]
    error_message = e.response["Error"].get("Message", "")
    context = {"aws_error_code": error_code, "aws_error_message": error_message}

    if error_code in _NOT_FOUND_CODES:
        return S3ObjectNotFoundError(bucket=bucket, key=key, context=context)
    elif error_code in _ACCESS_DENIED_CODES:
        return S3AccessDeniedError(bucket=bucket, key=key, context=context)
    elif error_code in _THROTTLING_CODES:
        return S3ThrottlingError(
            f"S3 request throttled: {error_message}",
            error_code="S3_THROTTLING",
            context={"bucket": bucket, "key": key, **context},
        )
    elif error_code in _TIMEOUT_CODES:
        return S3TimeoutError(
            f"S3 request timed out: {error_message}",
            error_code="S3_TIMEOUT",
            context={"bucket": bucket, "key": key, **context},
        )
    else:
        return S3DownloadError(
            f"S3 client error: {error_message}",
            error_code="S3_CLIENT_ERROR",
            context={"bucket": bucket, "key": key, **context},
        )


class S3Client:
    """
    A wrapper for S3 client operations, focused on streaming downloads.
    """

    def __init__(self, s3_client: "S3ClientType"):
        self._client = s3_client

    def get_file_content_stream(self, bucket: str, key: str) -> BinaryIO:
        """
        Retrieves an S3 object's body as a file-like streaming object.
        Raises specific S3 exceptions based on the error type.
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return cast(BinaryIO, response["Body"])
        except ClientError as e:
            raise _map_s3_client_error(e, bucket, key) from e
        except _TRANSPORT_ERRORS as e:
            raise S3TimeoutError(
                "S3 connection error while retrieving object",
                error_code="S3_CONNECTION_ERROR",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e

    def download_to_file(
        self,
        bucket: str,
        key: str,
        local_path: str,
        stop_event: threading.Event,
        expected_size: int | None = None,
        extender: "VisibilityExtender | None" = None,
    ) -> DownloadOutcome:
        """
        Streams s3://bucket/key into *local_path*.

        Never raises for S3 failures: the outcome tells the caller whether the
        owning SQS message may be deleted. When an *extender* is given the
        message lease is renewed between chunks; renewal errors propagate.
        """
        logger.debug(
            "Download remote file",
            extra={"bucket": bucket, "key": key, "local_path": local_path},
        )
        copied = 0
        try:
            with open(local_path, "wb") as local_file:
                if stop_event.is_set():
                    return DownloadOutcome.STOPPED
                stream = self.get_file_content_stream(bucket, key)
                try:
                    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                        if extender is not None:
                            extender.extend_if_needed()
                        if stop_event.is_set():
                            return DownloadOutcome.STOPPED
                        local_file.write(chunk)
                        copied += len(chunk)
                finally:
                    stream.close()
        except S3Error as e:
            logger.error(
                "Unable to download file. The message will be retried.",
                extra={"bucket": bucket, "key": key, **e.to_dict()},
            )
            return DownloadOutcome.FAILED
        except (BotoCoreError, OSError) as e:
            logger.error(
                "Download interrupted. The message will be retried.",
                extra={"bucket": bucket, "key": key, "error": str(e)},
            )
            return DownloadOutcome.FAILED

        if expected_size is not None and copied != expected_size:
            logger.warning(
                "Size mismatch between notification and download.",
                extra={
                    "bucket": bucket,
                    "key": key,
                    "expected_size": expected_size,
                    "downloaded_size": copied,
                },
            )
            return DownloadOutcome.FAILED

        return DownloadOutcome.SUCCEEDED

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise _map_s3_client_error(e, bucket, key) from e
        except _TRANSPORT_ERRORS as e:
            raise S3TimeoutError(
                "S3 connection error while deleting object",
                error_code="S3_CONNECTION_ERROR",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e
        except BotoCoreError as e:
            raise S3DownloadError(
                f"S3 delete failed: {e}",
                error_code="S3_DELETE_FAILED",
                context={"bucket": bucket, "key": key},
            ) from e
        logger.info("Deleted object from bucket", extra={"bucket": bucket, "key": key})


# --- Factories ---


class AssumeRoleProvider(CredentialProvider):
    """Credential provider backed by a function that calls STS AssumeRole."""

    METHOD = "s3-sqs-ingest-assume-role"
    CANONICAL_NAME = "custom-s3-sqs-ingest-assume-role"

    def __init__(self, fetch: Callable[[], dict[str, str]]):
        super().__init__()
        self._fetch = fetch

    def load(self) -> RefreshableCredentials:
        return RefreshableCredentials.create_from_metadata(
            metadata=self._fetch(),
            refresh_using=self._fetch,
            method=self.METHOD,
        )


def _assume_role_session(config: AppConfig) -> boto3.Session:
    """A session whose credentials re-assume the role before they expire."""
    sts = boto3.client("sts", region_name=config.region, endpoint_url=config.endpoint_url)

    def refresh() -> dict[str, str]:
        response = sts.assume_role(
            RoleArn=cast(str, config.s3_role_arn),
            RoleSessionName=config.s3_role_session_name,
        )
        credentials = response["Credentials"]
        return {
            "access_key": credentials["AccessKeyId"],
            "secret_key": credentials["SecretAccessKey"],
            "token": credentials["SessionToken"],
            "expiry_time": credentials["Expiration"].isoformat(),
        }

    botocore_session = get_session()
    # Ahead of "env" so the role wins over any ambient credentials.
    botocore_session.get_component("credential_provider").insert_before(
        "env", AssumeRoleProvider(refresh)
    )
    return boto3.Session(botocore_session=botocore_session, region_name=config.region)


def create_s3_boto_client(config: AppConfig) -> "S3ClientType":
    """
    Builds the S3 client. Credentials are resolved in order: the static key
    pair from config, then the configured IAM role, then boto3's default chain.
    """
    boto_config = BotoConfig(retries={"mode": "standard"})
    if config.has_static_credentials:
        logger.debug("Using S3 credentials from config", extra={"access_key_id": config.s3_access_key_id})
        session = boto3.Session(
            aws_access_key_id=config.s3_access_key_id,
            aws_secret_access_key=config.s3_secret_access_key,
            region_name=config.region,
        )
    elif config.s3_role_arn:
        logger.debug(
            "Using S3 credentials from role",
            extra={"role_arn": config.s3_role_arn, "session_name": config.s3_role_session_name},
        )
        session = _assume_role_session(config)
    else:
        session = boto3.Session(region_name=config.region)
    return session.client("s3", endpoint_url=config.endpoint_url, config=boto_config)


def create_sqs_boto_client(config: AppConfig) -> "SQSClientType":
    # Receive calls long-poll for up to 20s; keep the read timeout above that.
    boto_config = BotoConfig(read_timeout=30, retries={"mode": "standard"})
    return boto3.client(
        "sqs", region_name=config.region, endpoint_url=config.endpoint_url, config=boto_config
    )
