"""
Process entry point for the S3/SQS ingest consumer.

This module is responsible for:
1.  Loading and validating configuration from the environment.
2.  Initializing structured logging (AWS Lambda Powertools Logger) and
    propagating it to the package's module loggers.
3.  Building the shared SQS and S3 clients, resolving S3 credentials.
4.  Starting the worker pool in single-loop or multi-worker mode.
5.  Translating SIGTERM / SIGINT into a graceful, bounded shutdown.
"""

import argparse
import dataclasses
import logging
import os
import signal
import sys
from typing import Sequence

from aws_lambda_powertools import Logger
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers
from botocore.exceptions import BotoCoreError

from .clients import S3Client, SQSQueueClient, create_s3_boto_client, create_sqs_boto_client
from .config import AppConfig, get_config
from .decoders import DecoderRegistry
from .exceptions import ConfigurationError, IngestError, get_error_context
from .sinks import JsonLinesSink, RecordSink
from .worker import WorkerPool, build_worker_factory

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2

PACKAGE_LOGGER = "s3_sqs_ingest"

_logger: Logger | None = None


def setup_logging(config: AppConfig) -> Logger:
    """
    Builds the process Logger once and shares its handler with the package
    loggers. Later calls only apply the configured level.
    """
    global _logger
    if _logger is None:
        # Records go to stdout, so logs go to stderr.
        _logger = Logger(
            service=config.service_name,
            level=config.log_level,
            logger_handler=logging.StreamHandler(sys.stderr),
        )
        copy_config_to_registered_loggers(source_logger=_logger, include={PACKAGE_LOGGER})
    else:
        _logger.setLevel(config.log_level)
        logging.getLogger(PACKAGE_LOGGER).setLevel(config.log_level)
    return _logger


def build_pool(config: AppConfig, sink: RecordSink, logger: Logger) -> WorkerPool:
    """Wires clients, decoders and sink into a worker pool."""
    os.makedirs(config.temporary_directory, exist_ok=True)

    queue = SQSQueueClient.from_queue_name(create_sqs_boto_client(config), config.queue_name)
    s3_client = S3Client(create_s3_boto_client(config))
    decoders = DecoderRegistry.from_config(config)

    if config.sqs_explicit_delete:
        logger.warning(
            "SQS_EXPLICIT_DELETE has no effect: messages are deleted once, after full success, in every mode."
        )

    factory = build_worker_factory(config, queue, s3_client, decoders, sink)
    return WorkerPool(factory, size=config.consumer_threads)


def install_signal_handlers(pool: WorkerPool, logger: Logger) -> None:
    def _request_stop(signum, frame):
        logger.warning("Received signal, stopping workers", extra={"signal": signal.Signals(signum).name})
        pool.stop()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="s3-sqs-ingest",
        description="Consume S3 object-created notifications from SQS and emit decoded records as JSON lines.",
    )
    parser.add_argument("--queue", help="SQS queue name (overrides SQS_QUEUE_NAME)")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides LOG_LEVEL)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.queue:
        os.environ["SQS_QUEUE_NAME"] = args.queue

    try:
        config = get_config()
        if args.log_level:
            config = dataclasses.replace(config, log_level=args.log_level)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    logger = setup_logging(config)
    logger.info(
        "Registering SQS input",
        extra={
            "queue": config.queue_name,
            "consumer_threads": config.consumer_threads,
            "from_sns": config.from_sns,
            "delete_on_success": config.delete_on_success,
        },
    )

    try:
        pool = build_pool(config, JsonLinesSink(sys.stdout), logger)
    except (IngestError, BotoCoreError) as e:
        logger.error("Cannot establish connection to Amazon SQS", extra=get_error_context(e))
        return EXIT_RUNTIME_ERROR

    install_signal_handlers(pool, logger)
    if pool.threaded:
        pool.start()
        # Wait on the main thread so signals are delivered promptly.
        while pool.is_alive() and not pool.stop_requested.wait(1.0):
            pass
        pool.join(config.shutdown_timeout)
    else:
        pool.run()

    logger.info("Consumer stopped")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
