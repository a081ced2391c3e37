"""Tests for the streaming XML decoder.

WHY: The decoder carries the group context and the skip-or-abort error
policy. Both are easy to get subtly wrong when the XML arrives in pieces.

HOW: Decode in-memory documents through io.BytesIO (and a chunked
stream that hands out a few bytes at a time) and compare the records.

RULES:
- Every test builds its own StreamDecoder; decoders are single-use
"""

from __future__ import annotations

import io
from typing import List

import pytest

from exiftool_catalog.core.decoder import StreamDecodeError, StreamDecoder
from exiftool_catalog.core.record import TagRecord

from conftest import SAMPLE_TAG_COUNT


def _decode(data: bytes, chunk_size: int = 65536) -> List[TagRecord]:
    return list(StreamDecoder(io.BytesIO(data), chunk_size=chunk_size))


def _doc(body: str) -> bytes:
    return "<?xml version='1.0' encoding='UTF-8'?><taginfo>{}</taginfo>".format(body).encode("utf-8")


class TrickleStream:
    """Hands out at most ``step`` bytes per read and counts the reads."""

    def __init__(self, data: bytes, step: int) -> None:
        self._data = data
        self._step = step
        self._pos = 0
        self.reads = 0

    def read1(self, size: int = -1) -> bytes:
        self.reads += 1
        chunk = self._data[self._pos:self._pos + min(size, self._step)]
        self._pos += len(chunk)
        return chunk

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._data)


# ---------------------------------------------------------------------------
# Groups and paths
# ---------------------------------------------------------------------------


class TestGroupContext:

    def test_sample_document(self, sample_listx):
        records = _decode(sample_listx)
        assert len(records) == SAMPLE_TAG_COUNT
        assert [r.path for r in records] == [
            "EXIF:Make", "EXIF:Model", "EXIF:Orientation", "File:FileSize",
        ]
        assert [r.group for r in records] == ["EXIF", "EXIF", "EXIF", "File"]

    def test_scenario_record(self, make_only_listx):
        (record,) = _decode(make_only_listx)
        assert record == TagRecord(
            writable=True,
            path="EXIF:Make",
            group="EXIF",
            type="string",
            descriptions={"en": "Manufacturer"},
        )

    def test_tag_before_any_table_has_no_group(self):
        records = _decode(_doc("<tag name='Loose'/><table name='T'><tag name='A'/></table>"))
        assert records[0].path == "Loose"
        assert records[0].group == ""
        assert records[1].path == "T:A"

    def test_group_persists_after_table_end(self):
        records = _decode(_doc("<table name='T'><tag name='A'/></table><tag name='B'/>"))
        assert records[1].path == "T:B"
        assert records[1].group == "T"

    def test_table_without_name_resets_group(self):
        records = _decode(_doc("<table name='T'><tag name='A'/></table><table><tag name='B'/></table>"))
        assert records[1].path == "B"
        assert records[1].group == ""

    def test_counters(self, sample_listx):
        decoder = StreamDecoder(io.BytesIO(sample_listx))
        list(decoder)
        assert decoder.tag_count == SAMPLE_TAG_COUNT
        assert decoder.table_count == 2
        assert decoder.skipped_count == 0
        assert decoder.group == "File"

    def test_namespaced_elements_match_by_local_name(self):
        data = (
            b"<x:taginfo xmlns:x='urn:test'><x:table name='T'>"
            b"<x:tag name='A'><x:desc lang='en'>Alpha</x:desc></x:tag>"
            b"</x:table></x:taginfo>"
        )
        (record,) = _decode(data)
        assert record.path == "T:A"
        assert record.descriptions == {"en": "Alpha"}


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------


class TestDescriptions:

    def test_multiple_languages(self, sample_listx):
        make = _decode(sample_listx)[0]
        assert make.descriptions == {"en": "Make", "de": "Hersteller", "ja": "メーカー"}

    def test_last_description_wins(self):
        (record,) = _decode(_doc(
            "<tag name='A'><desc lang='en'>one</desc><desc lang='de'>eins</desc>"
            "<desc lang='en'>two</desc></tag>"
        ))
        assert record.descriptions == {"en": "two", "de": "eins"}

    def test_table_descriptions_are_not_attached_to_tags(self, sample_listx):
        for record in _decode(sample_listx):
            assert "Exif" not in record.descriptions.values()
            assert "File" not in record.descriptions.values()

    def test_no_leak_between_tags(self):
        records = _decode(_doc(
            "<tag name='A'><desc lang='en'>Alpha</desc></tag><tag name='B'/>"
        ))
        assert records[1].descriptions == {}

    def test_empty_description(self):
        (record,) = _decode(_doc("<tag name='A'><desc lang='en'/></tag>"))
        assert record.descriptions == {"en": ""}


# ---------------------------------------------------------------------------
# Error policy
# ---------------------------------------------------------------------------


class TestPerTagErrors:

    def test_invalid_writable_is_skipped(self, caplog):
        decoder = StreamDecoder(io.BytesIO(_doc(
            "<table name='T'><tag name='A'/><tag name='Bad' writable='maybe'/>"
            "<tag name='C'/></table>"
        )))
        records = list(decoder)
        assert [r.path for r in records] == ["T:A", "T:C"]
        assert decoder.skipped_count == 1
        assert "Skipping tag 'Bad'" in caplog.text

    def test_missing_name_is_skipped(self):
        records = _decode(_doc("<tag type='string'/><tag name='B'/>"))
        assert [r.path for r in records] == ["B"]


class TestFatalErrors:

    def test_truncated_stream_raises_after_complete_tags(self, truncated_listx):
        seen = []
        with pytest.raises(StreamDecodeError):
            for record in StreamDecoder(io.BytesIO(truncated_listx)):
                seen.append(record.path)
        assert seen == ["EXIF:Make", "EXIF:Model"]

    def test_malformed_xml_raises(self):
        data = _doc("<tag name='A'/><tag name='B'></tagx>")
        seen = []
        with pytest.raises(StreamDecodeError):
            for record in StreamDecoder(io.BytesIO(data)):
                seen.append(record.path)
        assert seen == ["A"]

    def test_parse_error_is_chained(self):
        with pytest.raises(StreamDecodeError) as excinfo:
            _decode(b"<taginfo><tag")
        assert excinfo.value.__cause__ is not None

    def test_read_failure_raises(self):
        class BrokenStream:
            def read1(self, size):
                raise OSError("pipe closed")

        with pytest.raises(StreamDecodeError):
            list(StreamDecoder(BrokenStream()))


# ---------------------------------------------------------------------------
# Streaming behavior
# ---------------------------------------------------------------------------


class TestStreaming:

    def test_empty_stream_ends_cleanly(self):
        assert _decode(b"") == []

    def test_small_chunks_give_same_records(self, sample_listx):
        assert _decode(sample_listx, chunk_size=7) == _decode(sample_listx)

    def test_first_record_before_stream_is_exhausted(self, sample_listx):
        stream = TrickleStream(sample_listx, step=64)
        records = iter(StreamDecoder(stream, chunk_size=64))
        first = next(records)
        assert first.path == "EXIF:Make"
        assert not stream.exhausted

    def test_single_iteration_only(self, sample_listx):
        decoder = StreamDecoder(io.BytesIO(sample_listx))
        list(decoder)
        with pytest.raises(RuntimeError):
            iter(decoder)

    def test_finished_elements_are_released(self, sample_listx):
        decoder = StreamDecoder(io.BytesIO(sample_listx))
        records = iter(decoder)
        next(records)
        root, table = decoder._open
        assert "Make" not in [child.get("name") for child in table]
        list(records)
        assert len(root) == 0
