"""exiftool tag catalog service: streams ``exiftool -listx`` as JSON.

WHY: exiftool describes every tag it knows in a verbose XML document
(``exiftool -listx``). Clients that want to browse the catalog need a
compact JSON view without waiting for, or holding, the whole document.

HOW: Four-stage streaming pipeline: spawn the extractor (core.process),
pull XML events from its stdout (core.decoder), build one record per tag
(core.record), and frame the records as a JSON array (core.encoder). The
server package wires the pipeline to a FastAPI endpoint and supervises
the listener and shutdown.

RULES:
- Nothing is cached: every request re-runs the extractor
- Records are emitted one by one, in document order
- The full catalog is never held in memory
"""

__version__ = "0.1.0"
