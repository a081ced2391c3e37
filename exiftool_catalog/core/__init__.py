"""Streaming transcode pipeline: extractor process to JSON bytes.

WHY: The core package holds the parts of the service that do not depend
on HTTP: process supervision, XML decoding, record building and JSON
framing. Each stage is testable on its own with in-memory streams.

HOW: cancellation.py defines the cancellation scopes, process.py spawns
the extractor, decoder.py turns its stdout into TagRecords, record.py
holds the record type and the builder, encoder.py frames the output.

RULES:
- No module here imports FastAPI or uvicorn
- Decoding and encoding are lazy iterators; nothing is buffered
"""
