"""Incremental JSON framing for the tag catalog response.

WHY: Serializing the catalog with a single json.dumps() call would mean
collecting every record first. Framing the array by hand lets each record
go out to the client as soon as it is decoded.

HOW: encode_tag_stream() is a generator over byte chunks: the opening
``{"tags":[``, then one chunk per record (prefixed with a comma for every
record after the first), then the closing ``]}``. Each record is encoded
with json.dumps in compact form.

RULES:
- The opening is yielded exactly once, before anything else
- N records produce exactly N-1 separators
- The closing is yielded only if the record source ends normally
- If the source raises, the exception propagates and the body stays
  truncated; there is no attempt to patch up the JSON
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator

from exiftool_catalog.core.record import TagRecord

OPENING = b'{"tags":['
SEPARATOR = b","
CLOSING = b"]}"


class EncodeWriteError(Exception):
    """Raised when an encoded chunk cannot be written to the client.

    WHY: After the headers are sent there is no way to report an error to
    the client; the server cancels the extractor and stops instead.

    RULES:
    - Wraps the transport's OSError as __cause__
    """


def encode_tag_record(record: TagRecord) -> bytes:
    return json.dumps(
        record.to_dict(),
        ensure_ascii=False,
        separators=(",", ":"),
    ).encode("utf-8")


def encode_tag_stream(records: Iterable[TagRecord]) -> Iterator[bytes]:
    yield OPENING
    first = True
    for record in records:
        payload = encode_tag_record(record)
        if first:
            first = False
            yield payload
        else:
            yield SEPARATOR + payload
    yield CLOSING
