"""
Security utilities for staging S3 objects on the local filesystem.

Staged files are named after the base name of the object key. Keys are
attacker-influenced input (anyone able to write to the bucket controls them),
so the name must never escape the temporary directory or carry characters
that confuse the filesystem or a terminal.
"""

import hashlib
import os
import unicodedata
from pathlib import PurePosixPath

_INVALID_CONTROL_CHARS: set[int] = set(range(0x00, 0x20)) | {0x7F}  # includes DEL
_MAX_NAME_BYTES = 255


def _fallback_name(key: str) -> str:
    digest = hashlib.sha256(key.encode("utf-8", errors="surrogatepass")).hexdigest()
    return f"object-{digest[:32]}"


def staging_filename(key: str) -> str:
    """
    Returns a safe local file name for the S3 object *key*.

    Examples:
        >>> staging_filename("AWSLogs/123/elasticloadbalancing/file.log.gz")
        'file.log.gz'

        >>> staging_filename("C:\\\\Windows\\\\file.txt")
        'file.txt'

        Unusable base names such as ".." fall back to "object-<sha256 prefix>".
    """
    name = PurePosixPath(key.replace("\\", "/")).name

    if name in ("", ".", ".."):
        return _fallback_name(key)
    if any(ord(c) in _INVALID_CONTROL_CHARS for c in name):
        return _fallback_name(key)
    # Format characters (Cf) include zero-width and directional overrides.
    if any(unicodedata.category(c) == "Cf" for c in name):
        return _fallback_name(key)
    if len(name.encode("utf-8", errors="surrogatepass")) > _MAX_NAME_BYTES:
        return _fallback_name(key)
    return name


def staging_path(temporary_directory: str, key: str) -> str:
    """Joins the safe staging name onto *temporary_directory*."""
    path = os.path.join(temporary_directory, staging_filename(key))
    # A symlink named like the key must not redirect the write.
    root = os.path.realpath(temporary_directory)
    if os.path.dirname(os.path.realpath(path)) != root:
        return os.path.join(temporary_directory, _fallback_name(key))
    return path
