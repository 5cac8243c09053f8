"""Import endpoints.

    GET  /api/sources                      source catalog
    POST /api/imports/{source_id}          run an import, return the result
    POST /api/imports/{source_id}/stream   run an import, stream NDJSON progress
    GET  /api/imports/history              most recent history rows

The request body is the raw payload (application/octet-stream); the file
name and user travel as query parameters.

Security Impact:
    - Payloads are spooled to a temporary file, never logged
    - Structural errors return their message only, no stack traces
"""

import logging
import queue
import tempfile
import threading
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from feedsync.api.dependencies import PipelineDep, StorageDep
from feedsync.domain.models import RunState
from feedsync.domain.pipeline import ImportPipeline
from feedsync.domain.ports import StructuralError, UnsupportedSourceError
from feedsync.domain.progress import NdjsonEncoder
from feedsync.domain.sources import SourceConfig, get_source, list_sources

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["imports"])

SPOOL_MAX_BYTES = 8 * 1024 * 1024
_END = object()


async def _spool_body(request: Request) -> tempfile.SpooledTemporaryFile:
    """Copy the request body into a temporary file positioned at its start."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES)
    async for chunk in request.stream():
        spool.write(chunk)
    spool.seek(0)
    return spool


def _resolve(pipeline: ImportPipeline, source_id: str) -> SourceConfig:
    if get_source(source_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown import source '{source_id}'")
    try:
        return pipeline.resolve_source(source_id)
    except UnsupportedSourceError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/sources")
def get_sources(
    category: Optional[str] = Query(None, description="Only sources of this category"),
    active: bool = Query(False, description="Only importable sources"),
) -> List[Dict[str, Any]]:
    return [config.to_summary() for config in list_sources(category=category, active_only=active)]


@router.post("/imports/{source_id}")
async def run_import(
    source_id: str,
    request: Request,
    pipeline: PipelineDep,
    filename: str = Query("", description="Original file name, recorded in the history"),
    user: Optional[str] = Query(None, description="User recorded in the history"),
) -> Dict[str, Any]:
    """Run one import and return its result.

    Raises:
        HTTPException: 404 for an unknown source, 400 for a source that is not
            importable, 422 for an unreadable or malformed payload
    """
    _resolve(pipeline, source_id)
    spool = await _spool_body(request)
    try:
        result = await run_in_threadpool(pipeline.run, source_id, spool, filename, user)
    except StructuralError as e:
        logger.warning(f"Import of '{source_id}' rejected: {e}")
        raise HTTPException(status_code=422, detail=str(e)) from e
    finally:
        spool.close()
    return result.to_wire()


@router.post("/imports/{source_id}/stream")
async def stream_import(
    source_id: str,
    request: Request,
    pipeline: PipelineDep,
    filename: str = Query(""),
    user: Optional[str] = Query(None),
) -> StreamingResponse:
    """Run one import, streaming progress as NDJSON frames.

    Progress frames carry the current run state as their phase ("reading",
    "validating", "loading", ...). The last frame is either
    {"phase": "done", "result": ...} or
    {"phase": "error", "error": ...}; failures after the stream has started
    are reported in-band.
    """
    _resolve(pipeline, source_id)
    spool = await _spool_body(request)
    encoder = NdjsonEncoder()
    frames: "queue.Queue[Any]" = queue.Queue()

    phase = RunState.IDLE

    def on_state(state: RunState) -> None:
        nonlocal phase
        phase = state

    def on_progress(status: str, pct: int) -> None:
        # Terminal states are announced by the done or error frame.
        if not phase.is_terminal:
            frames.put(encoder.progress(phase.value, status, pct))

    def worker() -> None:
        try:
            result = pipeline.run(source_id, spool, filename, user, on_progress, on_state)
            frames.put(encoder.done(result.to_wire()))
        except StructuralError as e:
            logger.warning(f"Streamed import of '{source_id}' rejected: {e}")
            frames.put(encoder.error(str(e)))
        except Exception as e:
            logger.error(f"Streamed import of '{source_id}' failed: {e}", exc_info=True)
            frames.put(encoder.error("Error inesperado durante la importación"))
        finally:
            spool.close()
            frames.put(_END)

    threading.Thread(target=worker, name=f"import-{source_id}", daemon=True).start()

    def body() -> Iterator[bytes]:
        while True:
            frame = frames.get()
            if frame is _END:
                return
            yield frame

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.get("/imports/history")
def get_history(
    storage: StorageDep,
    limit: int = Query(50, ge=1, le=1000),
    source: Optional[str] = Query(None, description="Only this source id"),
) -> List[Dict[str, Any]]:
    result = storage.list_import_history(limit=limit, source_id=source)
    if result.is_failure():
        raise HTTPException(status_code=500, detail="Failed to read import history")
    return [record.model_dump(mode="json") for record in result.value]
