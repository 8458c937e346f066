# src/s3_sqs_ingest/reader.py

"""
Line reader for staged S3 objects, plain or gzip-compressed.

Decoders operate on text lines, so decompression and charset repair happen
here: every yielded line is valid UTF-8, with undecodable bytes replaced by
REPLACEMENT_CHAR. The reader is a generator; its file handles are closed when
it is exhausted, when it raises, and when the caller closes it early.
"""

import codecs
import gzip
import logging
import zlib
from typing import Iterator

from .exceptions import DecompressionError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_EXTENSIONS = (".gz", ".gzip")
REPLACEMENT_CHAR = "⍰"
_ERRORS_HANDLER = "s3_sqs_ingest.replace"


def _replace_invalid(error: UnicodeError) -> tuple[str, int]:
    if not isinstance(error, UnicodeDecodeError):
        raise error
    return REPLACEMENT_CHAR, error.end


codecs.register_error(_ERRORS_HANDLER, _replace_invalid)


def decode_line(raw: bytes) -> str:
    """Decodes *raw* as UTF-8 and strips its line terminator."""
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    return raw.decode("utf-8", errors=_ERRORS_HANDLER)


def is_gzip(path: str) -> bool:
    """Detects gzip framing by file extension, then by magic bytes."""
    if path.endswith(GZIP_EXTENSIONS):
        return True
    try:
        with open(path, "rb") as f:
            return f.read(len(GZIP_MAGIC)) == GZIP_MAGIC
    except OSError as e:
        logger.debug("Problem while probing for gzip", extra={"path": path, "error": str(e)})
        return False


def read_plain_file(path: str) -> Iterator[str]:
    with open(path, "rb") as f:
        for raw in f:
            yield decode_line(raw)


def read_gzip_file(path: str) -> Iterator[str]:
    with gzip.open(path, "rb") as f:
        lines = iter(f)
        while True:
            try:
                raw = next(lines)
            except StopIteration:
                return
            except (gzip.BadGzipFile, zlib.error, EOFError) as e:
                logger.error(
                    "Gzip codec: We cannot uncompress the gzip file",
                    extra={"path": path, "error": str(e)},
                )
                raise DecompressionError(path, str(e)) from e
            yield decode_line(raw)


def read_lines(path: str) -> Iterator[str]:
    """Yields the decoded text lines of the staged file at *path*."""
    if is_gzip(path):
        return read_gzip_file(path)
    return read_plain_file(path)
