# src/s3_sqs_ingest/decoders.py

"""
Pluggable line decoders and their per-folder lookup.

A decoder turns text lines into DecodedRecord objects. Decoders may hold
state between lines (the multiline decoder buffers a record until the next
one starts), so a fresh instance is created for every staged file and
`flush()` is called once the file has been read.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Protocol

from .config import AppConfig

logger = logging.getLogger(__name__)

JSON_PARSE_FAILURE_TAG = "_jsonparsefailure"


@dataclass
class DecodedRecord:
    message: str
    fields: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = {"message": self.message, **self.fields}
        if self.tags:
            document["tags"] = list(self.tags)
        document["@metadata"] = dict(self.metadata)
        return document


class Decoder(Protocol):
    name: str

    def decode(self, line: str) -> Iterable[DecodedRecord]: ...

    def flush(self) -> Iterable[DecodedRecord]: ...


class PlainDecoder:
    """One record per line."""

    name = "plain"

    def decode(self, line: str) -> Iterator[DecodedRecord]:
        yield DecodedRecord(message=line)

    def flush(self) -> Iterator[DecodedRecord]:
        return iter(())


class JsonDecoder:
    """One JSON document per line; unparsable lines are kept and tagged."""

    name = "json"

    def decode(self, line: str) -> Iterator[DecodedRecord]:
        if not line.strip():
            return
        try:
            document = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("JSON parse error, original data kept in message", extra={"error": str(e)})
            yield DecodedRecord(message=line, tags=[JSON_PARSE_FAILURE_TAG])
            return

        if isinstance(document, dict):
            message = document.pop("message", line)
            yield DecodedRecord(message=str(message), fields=document)
        elif isinstance(document, list):
            # CloudTrail-style arrays expand into one record per element.
            for item in document:
                yield DecodedRecord(message=json.dumps(item), fields=item if isinstance(item, dict) else {})
        else:
            yield DecodedRecord(message=line)

    def flush(self) -> Iterator[DecodedRecord]:
        return iter(())


class MultilineDecoder:
    """
    Joins continuation lines into one record.

    A line matching *pattern* (or not matching, when *negate*) belongs to the
    previous line (what="previous") or to the next one (what="next").
    """

    name = "multiline"

    def __init__(self, pattern: str, negate: bool = False, what: str = "previous"):
        if what not in ("previous", "next"):
            raise ValueError(f"what must be 'previous' or 'next', not {what!r}")
        self._pattern = re.compile(pattern)
        self._negate = negate
        self._what = what
        self._buffer: list[str] = []

    def _matches(self, line: str) -> bool:
        return bool(self._pattern.search(line)) != self._negate

    def _drain(self) -> Iterator[DecodedRecord]:
        if self._buffer:
            message = "\n".join(self._buffer)
            tags = ["multiline"] if len(self._buffer) > 1 else []
            self._buffer = []
            yield DecodedRecord(message=message, tags=tags)

    def decode(self, line: str) -> Iterator[DecodedRecord]:
        match = self._matches(line)
        if self._what == "previous":
            if not match:
                yield from self._drain()
            self._buffer.append(line)
        else:
            self._buffer.append(line)
            if not match:
                yield from self._drain()

    def flush(self) -> Iterator[DecodedRecord]:
        yield from self._drain()


class DecoderRegistry:
    """
    Creates decoders by codec name, with the codec chosen per folder.

    Folders without a mapping, and folders mapped to a codec that is not
    registered, get the default codec.
    """

    def __init__(
        self,
        factories: Mapping[str, Callable[[], Decoder]],
        default: str = "plain",
        codec_by_folder: Mapping[str, str] | None = None,
    ):
        if default not in factories:
            raise ValueError(f"Default codec {default!r} is not registered")
        self._factories = dict(factories)
        self.default = default
        self._codec_by_folder = dict(codec_by_folder or {})

    @classmethod
    def from_config(cls, config: AppConfig) -> "DecoderRegistry":
        factories: dict[str, Callable[[], Decoder]] = {
            "plain": PlainDecoder,
            "json": JsonDecoder,
            "multiline": lambda: MultilineDecoder(
                config.multiline_pattern,
                negate=config.multiline_negate,
                what=config.multiline_what,
            ),
        }
        return cls(factories, default=config.codec, codec_by_folder=config.codec_by_folder)

    def codec_for_folder(self, folder: str) -> str:
        codec = self._codec_by_folder.get(folder)
        if codec is None:
            return self.default
        if codec not in self._factories:
            logger.error(
                "Unknown codec for folder, using the default codec",
                extra={"folder": folder, "codec": codec, "default_codec": self.default},
            )
            return self.default
        return codec

    def create(self, codec: str) -> Decoder:
        return self._factories[codec]()

    def create_for_folder(self, folder: str) -> Decoder:
        codec = self.codec_for_folder(folder)
        if codec != self.default:
            logger.debug(
                "Switching codec for folder",
                extra={"folder": folder, "from_codec": self.default, "to_codec": codec},
            )
        return self.create(codec)
