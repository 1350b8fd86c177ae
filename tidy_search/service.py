"""HTTP service daemon for tidy-search.

Owns the AppContext, the IndexCoordinator and the loaded model. Only one
instance should run at a time.

    uv run python service.py

Startup order:
    1. Write PID, start uvicorn  -- HTTP is up immediately
    2. Background thread: load the image model, then the embedding mirror
    Handlers return {"loading": true} until the coordinator is ready.
"""

import asyncio
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import asdict

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from config import (
    CACHE_DIR,
    DEFAULT_PAGE_SIZE,
    NICE_VALUE,
    SERVICE_HOST,
    SERVICE_PID_FILE,
    SERVICE_PORT,
    VISUAL_MODEL_FILE,
)
from context import AppContext
from indexer import IndexCoordinator
from onnx_text import TextEncoderError
from search import paginate
from store import StoreError

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

_coordinator: IndexCoordinator | None = None
_coordinator_lock = threading.Lock()
_ready = threading.Event()


def _create_coordinator() -> IndexCoordinator:
    """Create the context and coordinator (thread-safe, called from background thread)."""
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            _coordinator = IndexCoordinator(AppContext(CACHE_DIR))
    return _coordinator


def get_coordinator() -> IndexCoordinator:
    """Return the coordinator, blocking until it is loaded."""
    _ready.wait()
    return _coordinator  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


_LOADING = JSONResponse({"loading": True}, status_code=503)


def _page(request: Request, body: dict) -> tuple[int, int]:
    offset = int(body.get("offset", request.query_params.get("offset", 0)))
    limit = int(body.get("limit", request.query_params.get("limit", DEFAULT_PAGE_SIZE)))
    return offset, limit


def _results_payload(coordinator: IndexCoordinator, results, offset: int, limit: int) -> dict:
    page = paginate(results, offset, limit)
    items = []
    for r in page:
        item = asdict(r)
        record = coordinator.get_record(r.internal_id)
        if record is not None:
            item.update(record.to_dict())
        items.append(item)
    return {"total": len(results), "offset": offset, "results": items}


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True, "ready": _ready.is_set()})


async def status(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    coordinator = get_coordinator()
    data = coordinator.status.to_dict()
    data["indexed"] = len(coordinator.snapshot())
    return JSONResponse(data)


async def status_stream(request: Request) -> StreamingResponse:
    """SSE endpoint that streams every status update, starting with the latest."""
    if not _ready.is_set():
        return _LOADING

    channel = get_coordinator().context.status

    async def generate():
        queue: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_running_loop()
        unsubscribe = channel.subscribe(
            lambda s: loop.call_soon_threadsafe(queue.put_nowait, s)
        )
        try:
            yield f"data: {json.dumps(channel.latest.to_dict())}\n\n"
            while True:
                item = await queue.get()
                yield f"data: {json.dumps(item.to_dict())}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def start_index(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    coordinator = get_coordinator()
    future = coordinator.start_indexing()
    return JSONResponse(
        {"started": future is not None, "status": coordinator.status.to_dict()},
        status_code=202 if future is not None else 409,
    )


async def clear(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    ok = await asyncio.to_thread(get_coordinator().clear_all_embeddings)
    return JSONResponse({"ok": ok}, status_code=200 if ok else 500)


async def search(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    body = await request.json()
    query = body["query"]
    offset, limit = _page(request, body)
    coordinator = get_coordinator()
    try:
        results = await asyncio.to_thread(coordinator.search_text, query)
    except TextEncoderError as exc:
        logger.warning("Text search failed", exc_info=True)
        return JSONResponse({"error": str(exc)}, status_code=503)
    except RuntimeError as exc:
        return JSONResponse({"error": str(exc)}, status_code=503)
    return JSONResponse(_results_payload(coordinator, results, offset, limit))


async def similar(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    body = await request.json()
    internal_id = int(body["internal_id"])
    offset, limit = _page(request, body)
    coordinator = get_coordinator()
    if coordinator.get_record(internal_id) is None:
        return JSONResponse({"error": f"Not indexed: {internal_id}"}, status_code=404)
    results = await asyncio.to_thread(coordinator.find_similar, internal_id)
    return JSONResponse(_results_payload(coordinator, results, offset, limit))


async def delete(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    body = await request.json()
    ids = [int(i) for i in body.get("ids", [])]
    try:
        deleted = await asyncio.to_thread(get_coordinator().delete_by_ids, ids)
    except StoreError as exc:
        logger.error("Delete failed", exc_info=True)
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse({"deleted": deleted})


async def moved(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    body = await request.json()
    internal_id = int(body["internal_id"])
    timestamp = int(body.get("timestamp", 0))
    try:
        deleted = await asyncio.to_thread(get_coordinator().mark_moved, internal_id, timestamp)
    except StoreError as exc:
        logger.error("Move bookkeeping failed", exc_info=True)
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse({"deleted": deleted})


async def record(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    internal_id = int(request.path_params["internal_id"])
    rec = get_coordinator().get_record(internal_id)
    if rec is None:
        return JSONResponse({"error": f"Not indexed: {internal_id}"}, status_code=404)
    return JSONResponse(rec.to_dict())


async def get_folder(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    settings = get_coordinator().context.settings.load()
    return JSONResponse(asdict(settings))


async def set_folder(request: Request) -> JSONResponse:
    if not _ready.is_set():
        return _LOADING
    body = await request.json()
    msg = get_coordinator().context.settings.select_folder(body.get("path") or None)
    return JSONResponse({"message": msg})


routes = [
    Route("/health", health, methods=["GET"]),
    Route("/status", status, methods=["GET"]),
    Route("/status-stream", status_stream, methods=["GET"]),
    Route("/index", start_index, methods=["POST"]),
    Route("/clear", clear, methods=["POST"]),
    Route("/search", search, methods=["POST"]),
    Route("/similar", similar, methods=["POST"]),
    Route("/delete", delete, methods=["POST"]),
    Route("/moved", moved, methods=["POST"]),
    Route("/records/{internal_id:int}", record, methods=["GET"]),
    Route("/folder", get_folder, methods=["GET"]),
    Route("/folder", set_folder, methods=["POST"]),
]

app = Starlette(routes=routes)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _set_process_priority() -> None:
    """Set low process priority via nice. Applied before uvicorn starts."""
    try:
        os.nice(NICE_VALUE)
        logger.info("Set nice value to %d", NICE_VALUE)
    except OSError:
        logger.debug("Could not set nice value")


def _write_pid() -> None:
    SERVICE_PID_FILE.parent.mkdir(parents=True, exist_ok=True)
    SERVICE_PID_FILE.write_text(str(os.getpid()))
    logger.info("PID file: %s", SERVICE_PID_FILE)


def _cleanup(*_args) -> None:
    SERVICE_PID_FILE.unlink(missing_ok=True)
    if _coordinator is not None:
        _coordinator.shutdown()
        _coordinator.context.close()


def _background_startup() -> None:
    """Load the model and the mirror without blocking the event loop.

    Uvicorn is already listening. Handlers return 503 until _ready is set.
    A model that fails to load still marks the service ready: the status
    endpoint then reports error_loading_model.
    """
    def _load():
        try:
            coordinator = _create_coordinator()
            if coordinator.load_model(VISUAL_MODEL_FILE):
                logger.info("Index loaded: %d images", len(coordinator.snapshot()))
            else:
                coordinator.rebuild_mirror()
        except Exception:
            logger.warning("Background startup failed", exc_info=True)
        finally:
            if _coordinator is not None:
                _ready.set()

    threading.Thread(target=_load, name="background-startup", daemon=True).start()


if __name__ == "__main__":
    import atexit

    import uvicorn

    _write_pid()
    atexit.register(_cleanup)
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))

    _set_process_priority()

    # Model + mirror load in a background thread.
    # HTTP is up immediately; handlers return 503 until ready.
    _background_startup()

    logger.info("Starting tidy-search service on %s:%d", SERVICE_HOST, SERVICE_PORT)
    uvicorn.run(app, host=SERVICE_HOST, port=SERVICE_PORT, log_level="warning")
