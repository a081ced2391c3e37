"""Streaming decoder for ``exiftool -listx`` XML output.

WHY: The full tag catalog is several megabytes of XML. Building the whole
tree before answering would delay the first byte and hold the entire
document in memory, while the client only needs one flat record per tag.

HOW: An xml.etree.ElementTree.XMLPullParser is fed chunks as they arrive
from the extractor's stdout (read1, so a chunk is never held back waiting
for more bytes). Structural events drive a small state machine:

  <table name=..> start  → replace the current group
  <tag> start            → remember the group active for this tag
  <tag> end              → subtree complete: build and yield a TagRecord

Finished ``<tag>`` and ``<table>`` elements are detached from their parent
so memory stays bounded by one table's worth of open elements.

RULES:
- The group is a single value, not a stack; tables do not nest
- A ``<table>`` without a name resets the group to "none"
- PerTagDecodeError is logged and the tag skipped; decoding continues
- Malformed or truncated XML raises StreamDecodeError; nothing more is yielded
- An empty stream ends cleanly with no records
- A decoder can be iterated only once
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import IO, Iterator, List, Optional

from exiftool_catalog.config import READ_CHUNK_SIZE
from exiftool_catalog.core.record import (
    DescriptionEntry,
    PerTagDecodeError,
    TagRecord,
    build_tag_record,
)

logger = logging.getLogger(__name__)

TABLE_ELEMENT = "table"
TAG_ELEMENT = "tag"
DESC_ELEMENT = "desc"


class StreamDecodeError(Exception):
    """Raised when the extractor output is not a well-formed XML document.

    WHY: Malformed structure or a stream cut off mid-document means no
    later record can be trusted. The caller aborts the response and
    cancels the extractor.

    RULES:
    - Wraps the underlying ParseError or OSError as __cause__
    - Never raised for a clean end of stream
    """


def _local_name(tag: str) -> str:
    """Strip an ElementTree ``{namespace}`` prefix from an element name."""
    return tag.rsplit("}", 1)[-1]


def _description_entries(tag_elem: ET.Element) -> List[DescriptionEntry]:
    return [
        DescriptionEntry(lang=child.get("lang", ""), text=child.text or "")
        for child in tag_elem
        if _local_name(child.tag) == DESC_ELEMENT
    ]


class StreamDecoder:
    """Lazily turns an XML byte stream into TagRecords.

    Iterate it once; the counters (tag_count, skipped_count, table_count)
    are updated as the stream is consumed.
    """

    def __init__(self, stream: IO[bytes], chunk_size: int = READ_CHUNK_SIZE) -> None:
        self._stream = stream
        self._chunk_size = chunk_size
        self._started = False
        self._group: Optional[str] = None
        self._tag_group: Optional[str] = None
        self._open: List[ET.Element] = []
        self.tag_count = 0
        self.skipped_count = 0
        self.table_count = 0

    @property
    def group(self) -> Optional[str]:
        """The current group context, or None before any named table."""
        return self._group

    def __iter__(self) -> Iterator[TagRecord]:
        if self._started:
            raise RuntimeError("StreamDecoder can only be iterated once")
        self._started = True
        return self._decode()

    def _decode(self) -> Iterator[TagRecord]:
        parser = ET.XMLPullParser(events=("start", "end"))
        read = getattr(self._stream, "read1", self._stream.read)
        received = False

        try:
            while True:
                chunk = read(self._chunk_size)
                if not chunk:
                    break
                received = True
                parser.feed(chunk)
                yield from self._handle_events(parser)

            if received:
                parser.close()
                yield from self._handle_events(parser)
        except ET.ParseError as exc:
            raise StreamDecodeError("Malformed extractor output: {}".format(exc)) from exc
        except OSError as exc:
            raise StreamDecodeError("Failed reading extractor output: {}".format(exc)) from exc

        logger.debug(
            "Decoded %d tags from %d tables (%d skipped)",
            self.tag_count, self.table_count, self.skipped_count,
        )

    def _handle_events(self, parser: ET.XMLPullParser) -> Iterator[TagRecord]:
        for event, elem in parser.read_events():
            name = _local_name(elem.tag)
            if event == "start":
                self._open.append(elem)
                if name == TABLE_ELEMENT:
                    self._group = elem.get("name")
                    self.table_count += 1
                elif name == TAG_ELEMENT:
                    self._tag_group = self._group
                continue

            self._open.pop()
            if name == TAG_ELEMENT:
                record = self._build_record(elem)
                self._release(elem)
                if record is not None:
                    yield record
            elif name == TABLE_ELEMENT:
                self._release(elem)

    def _build_record(self, elem: ET.Element) -> Optional[TagRecord]:
        try:
            record = build_tag_record(elem.attrib, _description_entries(elem), self._tag_group)
        except PerTagDecodeError as exc:
            self.skipped_count += 1
            logger.warning(
                "Skipping tag %r in group %r: %s",
                elem.get("name"), self._tag_group or "", exc,
            )
            return None
        self.tag_count += 1
        return record

    def _release(self, elem: ET.Element) -> None:
        """Drop a finished element so the partial tree does not grow."""
        elem.clear()
        if self._open:
            self._open[-1].remove(elem)
