# src/s3_sqs_ingest/schemas.py

from typing import TypedDict
from urllib.parse import unquote_plus

from pydantic import BaseModel, ConfigDict, Field, field_validator

EVENT_SOURCE = "aws:s3"
EVENT_TYPE = "ObjectCreated"

# --- Static Type Hinting (for mypy and IDEs) ---


class RecordMetadata(TypedDict):
    """Metadata attached to every record decoded from an S3 object."""

    object_key: str
    bucket_name: str
    object_folder: str


# --- Runtime Validation (using Pydantic) ---


class S3BucketModel(BaseModel):
    name: str = Field(..., min_length=1)

    # Keys and bucket names arrive form-encoded in S3 event notifications.
    @field_validator("name")
    @classmethod
    def decode_name(cls, value: str) -> str:
        return unquote_plus(value)


class S3ObjectModel(BaseModel):
    key: str = Field(..., min_length=1)
    size: int | None = None

    @field_validator("key")
    @classmethod
    def decode_key(cls, value: str) -> str:
        return unquote_plus(value)


class S3DataModel(BaseModel):
    bucket: S3BucketModel
    object: S3ObjectModel


class S3EventNotificationRecord(BaseModel):
    """
    Pydantic model for runtime parsing and validation of an S3 event record.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_source: str = Field("", alias="eventSource")
    event_name: str = Field("", alias="eventName")
    s3: S3DataModel

    @property
    def bucket(self) -> str:
        return self.s3.bucket.name

    @property
    def key(self) -> str:
        return self.s3.object.key

    @property
    def size(self) -> int | None:
        return self.s3.object.size

    def is_object_created(self) -> bool:
        return self.event_source == EVENT_SOURCE and self.event_name.startswith(
            EVENT_TYPE
        )
