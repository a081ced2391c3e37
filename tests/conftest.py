"""Shared test fixtures for the exiftool_catalog test suite.

WHY: Decoder, encoder, API and process tests all need the same small,
realistic ``exiftool -listx`` documents. Centralizing them here keeps the
expected tag counts in one place.

HOW: Module-level byte strings hold the documents; fixtures return them.
FakeRunner/FakeProcess stand in for the extractor so API tests never
spawn exiftool.

RULES:
- SAMPLE_LISTX mirrors the real exiftool layout (tables, table-level
  descriptions, multi-language tag descriptions)
- SAMPLE_TAG_COUNT must match the number of <tag> elements in SAMPLE_LISTX
"""

from __future__ import annotations

import io
from typing import List, Optional

import pytest

from exiftool_catalog.core.cancellation import CancellationContext
from exiftool_catalog.core.process import ProcessStartError


# ---------------------------------------------------------------------------
# Sample extractor output
# ---------------------------------------------------------------------------

SAMPLE_LISTX = """<?xml version='1.0' encoding='UTF-8'?>
<!-- Generated by Image::ExifTool 12.76 -->
<taginfo>

<table name='EXIF' g0='EXIF' g1='IFD0' g2='Image'>
 <desc lang='en'>Exif</desc>
 <tag id='271' name='Make' type='string' writable='true' g2='Camera'>
  <desc lang='en'>Make</desc>
  <desc lang='de'>Hersteller</desc>
  <desc lang='ja'>メーカー</desc>
 </tag>
 <tag id='272' name='Model' type='string' writable='true' g2='Camera'>
  <desc lang='en'>Camera Model Name</desc>
 </tag>
 <tag id='274' name='Orientation' type='int16u' writable='true'>
  <desc lang='en'>Orientation</desc>
 </tag>
</table>

<table name='File' g0='File' g1='File' g2='Other'>
 <desc lang='en'>File</desc>
 <tag id='FileSize' name='FileSize' type='?' writable='false'>
  <desc lang='en'>File Size</desc>
  <desc lang='fr'>Taille du fichier</desc>
 </tag>
</table>

</taginfo>
""".encode("utf-8")

SAMPLE_TAG_COUNT = 4

MAKE_ONLY_LISTX = (
    b"<?xml version='1.0' encoding='UTF-8'?>"
    b"<taginfo><table name='EXIF'>"
    b"<tag name='Make' type='string' writable='true'><desc lang='en'>Manufacturer</desc></tag>"
    b"</table></taginfo>"
)

MAKE_ONLY_RECORD = (
    b'{"writable":true,"path":"EXIF:Make","group":"EXIF",'
    b'"type":"string","descriptions":{"en":"Manufacturer"}}'
)

# Cut off after the second tag, inside the third one
TRUNCATED_LISTX = SAMPLE_LISTX[: SAMPLE_LISTX.index(b"<tag id='274'") + 20]


@pytest.fixture
def sample_listx() -> bytes:
    return SAMPLE_LISTX


@pytest.fixture
def make_only_listx() -> bytes:
    return MAKE_ONLY_LISTX


@pytest.fixture
def truncated_listx() -> bytes:
    return TRUNCATED_LISTX


# ---------------------------------------------------------------------------
# Fake extractor
# ---------------------------------------------------------------------------


class FakeProcess:
    """In-memory stand-in for RunningProcess."""

    def __init__(self, output: bytes, context: CancellationContext) -> None:
        self.stdout = io.BytesIO(output)
        self.context = context
        self.terminated = False
        self.closed = False
        context.on_cancel(self.terminate)

    def terminate(self) -> None:
        self.terminated = True

    def close(self) -> None:
        self.closed = True
        self.context.remove_callback(self.terminate)


class FakeRunner:
    """Stand-in for ProcessRunner that serves canned output."""

    def __init__(self, output: bytes = b"", error: Optional[Exception] = None) -> None:
        self.output = output
        self.error = error
        self.processes: List[FakeProcess] = []

    def start(self, context: CancellationContext) -> FakeProcess:
        if self.error is not None:
            raise self.error
        if context.cancelled:
            raise ProcessStartError("context {} is cancelled".format(context.name))
        process = FakeProcess(self.output, context)
        self.processes.append(process)
        return process
