import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KNOWN_CODECS = ("plain", "json", "multiline")

_TRUTHY = ("true", "1", "yes", "on")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    return value if value else None


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    queue_name: str

    # --- AWS Connection ---
    region: str | None = None
    endpoint_url: str | None = None

    # --- S3 Access ---
    s3_key_prefix: str = ""
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_role_arn: str | None = None
    s3_role_session_name: str = "s3-sqs-ingest"
    delete_on_success: bool = False

    # --- Queue Behaviour ---
    sqs_explicit_delete: bool = False
    from_sns: bool = True
    visibility_timeout: int = 600
    wait_time_seconds: int | None = None

    # --- Workers ---
    consumer_threads: int | None = None
    temporary_directory: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "s3-sqs-ingest")
    )
    shutdown_timeout: int = 30

    # --- Decoding ---
    codec: str = "plain"
    codec_by_folder: Mapping[str, str] = field(default_factory=dict)
    multiline_pattern: str = r"^\s"
    multiline_negate: bool = False
    multiline_what: str = "previous"

    # --- Logging ---
    service_name: str = "s3-sqs-ingest"
    log_level: str = "INFO"

    # --- Derived Properties ---
    @property
    def has_static_credentials(self) -> bool:
        return bool(self.s3_access_key_id and self.s3_secret_access_key)

    @property
    def multi_worker(self) -> bool:
        return self.consumer_threads is not None

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            queue_name = os.environ["SQS_QUEUE_NAME"]
            if not queue_name.strip():
                raise ValueError("SQS_QUEUE_NAME must not be empty.")

            # --- Handle credentials ---
            s3_access_key_id = _optional_env("S3_ACCESS_KEY_ID")
            s3_secret_access_key = _optional_env("S3_SECRET_ACCESS_KEY")
            if bool(s3_access_key_id) != bool(s3_secret_access_key):
                raise ValueError(
                    "S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY must be set together."
                )

            # --- Handle optional and numeric variables with validation ---
            visibility_timeout = int(os.getenv("VISIBILITY_TIMEOUT_SECONDS", "600"))
            if visibility_timeout <= 0:
                raise ValueError("VISIBILITY_TIMEOUT_SECONDS must be a positive integer.")

            wait_time_raw = _optional_env("WAIT_TIME_SECONDS")
            wait_time_seconds = int(wait_time_raw) if wait_time_raw else None
            if wait_time_seconds is not None and not 0 <= wait_time_seconds <= 20:
                raise ValueError("WAIT_TIME_SECONDS must be between 0 and 20.")

            threads_raw = _optional_env("CONSUMER_THREADS")
            consumer_threads = int(threads_raw) if threads_raw else None
            if consumer_threads is not None and consumer_threads <= 0:
                raise ValueError("CONSUMER_THREADS must be a positive integer.")

            shutdown_timeout = int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))
            if shutdown_timeout <= 0:
                raise ValueError("SHUTDOWN_TIMEOUT_SECONDS must be a positive integer.")

            # --- Handle decoding configuration ---
            codec = os.getenv("CODEC", "plain").lower()
            if codec not in KNOWN_CODECS:
                raise ValueError(f"CODEC must be one of {list(KNOWN_CODECS)}, not '{codec}'")

            codec_by_folder = json.loads(os.getenv("CODEC_BY_FOLDER", "{}"))
            if not isinstance(codec_by_folder, dict) or not all(
                isinstance(k, str) and isinstance(v, str)
                for k, v in codec_by_folder.items()
            ):
                raise ValueError("CODEC_BY_FOLDER must be a JSON object of strings.")

            multiline_pattern = os.getenv("MULTILINE_PATTERN", r"^\s")
            try:
                re.compile(multiline_pattern)
            except re.error as e:
                raise ValueError(f"MULTILINE_PATTERN is not a valid regex: {e}") from e

            multiline_what = os.getenv("MULTILINE_WHAT", "previous").lower()
            if multiline_what not in ("previous", "next"):
                raise ValueError("MULTILINE_WHAT must be 'previous' or 'next'.")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

            temporary_directory = os.getenv(
                "TEMPORARY_DIRECTORY",
                os.path.join(tempfile.gettempdir(), "s3-sqs-ingest"),
            )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            queue_name=queue_name,
            region=_optional_env("AWS_REGION"),
            endpoint_url=_optional_env("AWS_ENDPOINT_URL"),
            s3_key_prefix=os.getenv("S3_KEY_PREFIX", ""),
            s3_access_key_id=s3_access_key_id,
            s3_secret_access_key=s3_secret_access_key,
            s3_role_arn=_optional_env("S3_ROLE_ARN"),
            s3_role_session_name=os.getenv("S3_ROLE_SESSION_NAME", "s3-sqs-ingest"),
            delete_on_success=_env_flag("DELETE_ON_SUCCESS", "false"),
            sqs_explicit_delete=_env_flag("SQS_EXPLICIT_DELETE", "false"),
            from_sns=_env_flag("FROM_SNS", "true"),
            visibility_timeout=visibility_timeout,
            wait_time_seconds=wait_time_seconds,
            consumer_threads=consumer_threads,
            temporary_directory=temporary_directory,
            shutdown_timeout=shutdown_timeout,
            codec=codec,
            codec_by_folder=codec_by_folder,
            multiline_pattern=multiline_pattern,
            multiline_negate=_env_flag("MULTILINE_NEGATE", "false"),
            multiline_what=multiline_what,
            service_name=os.getenv("SERVICE_NAME", "s3-sqs-ingest"),
            log_level=log_level,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
