# tests/unit/test_reader.py

"""
Unit tests for the staged-file line reader: gzip detection, decompression,
charset repair and handle release.
"""

import gzip
from contextlib import closing

import pytest

from s3_sqs_ingest.exceptions import DecompressionError
from s3_sqs_ingest.reader import REPLACEMENT_CHAR, decode_line, is_gzip, read_lines


@pytest.fixture
def plain_file(tmp_path):
    path = tmp_path / "access.log"
    path.write_bytes(b"line one\nline two\r\nline three")
    return str(path)


@pytest.fixture
def gzip_file(tmp_path):
    path = tmp_path / "access.log.gz"
    with gzip.open(path, "wb") as f:
        f.write(b"first\nsecond\n")
    return str(path)


def test_read_plain_file_yields_lines_in_order(plain_file):
    assert list(read_lines(plain_file)) == ["line one", "line two", "line three"]


def test_read_gzip_file_by_extension(gzip_file):
    assert list(read_lines(gzip_file)) == ["first", "second"]


def test_gzip_detected_by_magic_bytes_without_extension(tmp_path):
    path = tmp_path / "cloudtrail-object"
    path.write_bytes(gzip.compress(b'{"a": 1}\n'))

    assert is_gzip(str(path))
    assert list(read_lines(str(path))) == ['{"a": 1}']


def test_magic_bytes_agree_with_extension_for_valid_gzip(gzip_file, tmp_path):
    renamed = tmp_path / "no-extension"
    renamed.write_bytes(open(gzip_file, "rb").read())

    assert is_gzip(gzip_file) is True
    assert is_gzip(str(renamed)) is True


def test_plain_file_is_not_gzip(plain_file):
    assert is_gzip(plain_file) is False


def test_missing_file_is_not_gzip(tmp_path):
    assert is_gzip(str(tmp_path / "missing")) is False


def test_invalid_utf8_is_replaced_not_raised(tmp_path):
    path = tmp_path / "binary.log"
    path.write_bytes(b"ok\nbad \xff\xfe byte\n")

    lines = list(read_lines(str(path)))

    assert lines[0] == "ok"
    assert lines[1] == f"bad {REPLACEMENT_CHAR}{REPLACEMENT_CHAR} byte"


def test_decode_line_strips_only_the_terminator():
    assert decode_line(b"  padded \r\n") == "  padded "
    assert decode_line(b"no newline") == "no newline"
    assert decode_line(b"\n") == ""


def test_corrupt_gzip_raises_decompression_error(tmp_path):
    path = tmp_path / "corrupt.gz"
    path.write_bytes(b"this is not gzip at all\n")

    with pytest.raises(DecompressionError) as exc_info:
        list(read_lines(str(path)))

    assert exc_info.value.error_code == "GZIP_DECOMPRESSION_FAILED"


def test_truncated_gzip_raises_decompression_error(tmp_path):
    path = tmp_path / "truncated.gz"
    data = gzip.compress(b"x" * 10_000 + b"\n" + b"y" * 10_000 + b"\n")
    path.write_bytes(data[: len(data) // 2])

    with pytest.raises(DecompressionError):
        list(read_lines(str(path)))


def test_closing_early_releases_the_file(tmp_path):
    path = tmp_path / "many.log"
    path.write_bytes(b"".join(b"line %d\n" % i for i in range(100)))

    with closing(read_lines(str(path))) as lines:
        assert next(lines) == "line 0"
        frame = lines.gi_frame
        handle = frame.f_locals["f"]
        assert not handle.closed

    assert handle.closed
