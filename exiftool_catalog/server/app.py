"""FastAPI application exposing the exiftool tag catalog.

WHY: Clients need the exiftool tag catalog over HTTP as compact JSON,
and they should start receiving tags while exiftool is still printing
them rather than after the whole catalog has been built.

HOW: GET /tags starts the extractor through ProcessRunner, then returns a
CatalogResponse whose body iterator is CatalogStream: StreamDecoder pulls
records from the extractor's stdout and encode_tag_stream frames them.
The endpoint is a plain ``def``, so Starlette runs it and the body
iterator in its threadpool: one worker per request while the event loop
keeps accepting connections.

RULES:
- Extractor start failure → 500 with an empty body, nothing streamed
- Fatal decode error mid-stream → log, cancel the scope, leave the body
  truncated (headers are already out, no status can be sent)
- Client write failure → EncodeWriteError logged, scope cancelled
- The extractor process is released on every exit path
- Each request gets a child scope of the root context unless the cancel
  scope is "shared", in which case all requests use the root directly
- The root context is cancelled at application shutdown
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response, StreamingResponse

from exiftool_catalog import __version__
from exiftool_catalog.config import (
    CANCEL_SCOPE,
    CANCEL_SCOPE_SHARED,
    READ_CHUNK_SIZE,
    TAGS_ROUTE,
    extractor_command,
    load_cancel_scope,
)
from exiftool_catalog.core.cancellation import CancellationContext
from exiftool_catalog.core.decoder import StreamDecodeError, StreamDecoder
from exiftool_catalog.core.encoder import EncodeWriteError, encode_tag_stream
from exiftool_catalog.core.process import ProcessRunner, ProcessStartError, RunningProcess
from exiftool_catalog.server.models import ErrorResponse, HealthResponse, TagCatalogModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Streaming body
# ---------------------------------------------------------------------------


class CatalogStream:
    """Body iterator for one catalog request.

    WHY: The decode → encode pipeline and the cleanup of the extractor
    belong together; whichever way the response ends, the process and the
    request's scope have to be released exactly once.

    RULES:
    - Iterate once; yields encoded byte chunks
    - StreamDecodeError cancels the scope and ends the body without ``]}``
    - close() is idempotent
    """

    def __init__(
        self,
        process: RunningProcess,
        scope: CancellationContext,
        owns_scope: bool,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self._process = process
        self._scope = scope
        self._owns_scope = owns_scope
        self._chunk_size = chunk_size
        self._lock = threading.Lock()
        self._closed = False
        self.decoder: Optional[StreamDecoder] = None

    def __iter__(self):
        self.decoder = StreamDecoder(self._process.stdout, chunk_size=self._chunk_size)
        try:
            yield from encode_tag_stream(self.decoder)
        except StreamDecodeError as exc:
            if self._scope.cancelled:
                logger.info("Catalog stream ended after cancellation: %s", exc)
            else:
                logger.error("Aborting catalog stream after %d tags: %s", self.decoder.tag_count, exc)
            self._scope.cancel()
        else:
            logger.info(
                "Streamed %d tags (%d skipped)",
                self.decoder.tag_count, self.decoder.skipped_count,
            )
        finally:
            self.close()

    def cancel(self) -> None:
        self._scope.cancel()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._process.close()
        if self._owns_scope:
            self._scope.close()


class CatalogResponse(StreamingResponse):
    """StreamingResponse that turns write failures into EncodeWriteError."""

    media_type = "application/json"

    def __init__(self, stream: CatalogStream) -> None:
        super().__init__(stream, media_type=self.media_type)
        self._stream = stream

    async def stream_response(self, send) -> None:
        try:
            await super().stream_response(send)
        except OSError as exc:
            raise EncodeWriteError("Failed writing catalog to client: {}".format(exc)) from exc

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except EncodeWriteError as exc:
            logger.warning("Aborting catalog stream: %s", exc)
            # Cancel callbacks wait for the extractor to exit
            await run_in_threadpool(self._stream.cancel)
        finally:
            await run_in_threadpool(self._stream.close)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    context: Optional[CancellationContext] = None,
    runner: Optional[ProcessRunner] = None,
    cancel_scope: Optional[str] = None,
    route: str = TAGS_ROUTE,
    chunk_size: int = READ_CHUNK_SIZE,
) -> FastAPI:
    """Build the FastAPI application.

    WHY: The lifecycle controller and the tests each need an app bound to
    their own root context and extractor runner.

    HOW: Closes over the context and runner; both are also exposed on
    ``app.state`` for inspection.

    RULES:
    - context defaults to a fresh root CancellationContext
    - runner defaults to ProcessRunner(extractor_command())
    - cancel_scope defaults to config.CANCEL_SCOPE and is validated
    """
    root = context if context is not None else CancellationContext("root")
    extractor = runner if runner is not None else ProcessRunner(extractor_command())
    scope_mode = load_cancel_scope(cancel_scope if cancel_scope is not None else CANCEL_SCOPE)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Cancel any extractor still running when the app shuts down."""
        yield
        if not root.cancelled:
            logger.info("Application shutdown, cancelling extractor processes")
            await run_in_threadpool(root.cancel)

    app = FastAPI(
        lifespan=lifespan,
        title="exiftool Tag Catalog API",
        description=(
            "Streams the full exiftool tag catalog (exiftool -listx) as JSON. "
            "Every request runs exiftool afresh; tags are sent as they are decoded."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.context = root
    app.state.runner = extractor
    app.state.cancel_scope = scope_mode

    @app.get(
        route,
        response_class=CatalogResponse,
        tags=["tags"],
        summary="Stream the exiftool tag catalog",
        description=(
            "Runs the extractor and streams every tag it reports as "
            '{"tags":[...]}. If the extractor output breaks off mid-stream '
            "the body is left truncated."
        ),
        responses={
            200: {"model": TagCatalogModel, "description": "Tag catalog in extractor order"},
            500: {"description": "Extractor could not be started (empty body)"},
        },
    )
    def list_tags() -> Response:
        if scope_mode == CANCEL_SCOPE_SHARED:
            scope, owns_scope = root, False
        else:
            scope, owns_scope = root.child("request"), True

        try:
            process = extractor.start(scope)
        except ProcessStartError:
            logger.exception("Failed to start extractor")
            if owns_scope:
                scope.close()
            return Response(status_code=500)

        return CatalogResponse(CatalogStream(process, scope, owns_scope, chunk_size))

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
        summary="Health check",
        description="Liveness check for load balancers and orchestrators.",
        responses={503: {"model": ErrorResponse, "description": "Service is shutting down"}},
    )
    async def health_check() -> Response:
        if root.cancelled:
            return Response(
                content=ErrorResponse(detail="Service is shutting down").model_dump_json(),
                status_code=503,
                media_type="application/json",
            )
        return Response(
            content=HealthResponse(status="ok", version=__version__).model_dump_json(),
            media_type="application/json",
        )

    return app


app = create_app()
