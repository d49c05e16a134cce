"""
HTTP API for the Drive knowledge base.

Question answering, statistics and a background Drive sync trigger.
"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import drive_settings, rag_settings, validate_config
from .container import Services, build_services
from .errors import AppError, ConflictError, ServiceUnavailableError, ValidationError
from .logging_config import logger
from .rag.query import QueryOptions
from .rag.sync import SyncEngine


class QueryRequest(BaseModel):
    """Request body for /api/query."""

    query: str = Field(min_length=3)
    options: QueryOptions = Field(default_factory=QueryOptions)


class ChatRequest(QueryRequest):
    """Request body for /api/chat."""

    history: list[dict] = Field(default_factory=list)


class SyncStatus(BaseModel):
    running: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    progress: Optional[dict] = None
    result: Optional[dict] = None
    error: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncTracker:
    """State of the single background sync this process may run at a time."""

    def __init__(self):
        self._lock = threading.Lock()
        self.status = SyncStatus()

    def try_begin(self) -> bool:
        """Mark a run as started; False if one is already running."""
        with self._lock:
            if self.status.running:
                return False
            self.status = SyncStatus(
                running=True,
                started_at=_now(),
                progress={"status": "starting", "current_file": None},
            )
            return True

    def update_progress(self, progress: dict):
        with self._lock:
            self.status = self.status.model_copy(update={"progress": progress})

    def finish(self, result: dict | None = None, error: str | None = None):
        with self._lock:
            self.status = self.status.model_copy(
                update={
                    "running": False,
                    "completed_at": _now(),
                    "progress": None,
                    "result": result,
                    "error": error,
                }
            )


def run_sync_task(engine: SyncEngine, tracker: SyncTracker):
    """Run one sync to completion, recording the outcome on the tracker."""
    logger.info("🔄 Background sync running")
    try:
        result = engine.run(progress_callback=tracker.update_progress)
    except Exception as e:
        logger.error(f"❌ Background sync failed: {e}")
        tracker.finish(error=str(e))
    else:
        tracker.finish(result=result)


def init_state(app: FastAPI, services: Services):
    """Attach the per-process services and sync bookkeeping to the app."""
    app.state.services = services
    app.state.sync_tracker = SyncTracker()
    app.state.pending_syncs = set()
    app.state.started_at = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Drive RAG API...")

    validate_config(require_drive=False)
    with_sync = drive_settings.has_service_account or drive_settings.has_oauth
    init_state(app, build_services(with_sync=with_sync))

    if not with_sync:
        logger.warning("⚠️ No Drive credentials configured; POST /sync is disabled.")

    yield

    logger.info("Drive RAG API stopped")


app = FastAPI(
    title="Drive Knowledge Base RAG API",
    description="Query documents synced from Google Drive using natural language.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=rag_settings.api_cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(name: str, message: str) -> dict:
    return {"success": False, "error": name, "message": message}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(type(exc).__name__, exc.message),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = [str(part) for part in err["loc"] if part != "body"]
        problems.append(f"{'.'.join(loc)}: {err['msg']}" if loc else err["msg"])
    message = "; ".join(problems) or "Invalid request"

    logger.warning(f"⚠️ {request.method} {request.url.path} rejected: {message}")
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=_error_body(ValidationError.__name__, message),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_sync_tracker(request: Request) -> SyncTracker:
    return request.app.state.sync_tracker


@app.get("/health")
async def health(request: Request, tracker: SyncTracker = Depends(get_sync_tracker)):
    return {
        "status": "ok",
        "timestamp": _now(),
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "syncRunning": tracker.status.running,
    }


@app.get("/api/stats")
def get_stats(services: Services = Depends(get_services)):
    """Knowledge base statistics."""
    return {"success": True, "data": services.query_engine.get_statistics()}


@app.post("/api/query")
def query(request: QueryRequest, services: Services = Depends(get_services)):
    """
    Ask a question about the synced documents.

    The question is embedded, every stored document is ranked against it and
    the answer is generated from the most relevant ones only.
    """
    result = services.query_engine.query(request.query, request.options)
    return {"success": True, "data": result.to_dict()}


@app.post("/api/chat")
def chat(request: ChatRequest, services: Services = Depends(get_services)):
    """Chat-style query. Accepts conversation history."""
    result = services.query_engine.conversation(
        request.query, request.history, request.options
    )
    return {"success": True, "data": result.to_dict()}


@app.post("/sync")
async def trigger_sync(
    request: Request,
    services: Services = Depends(get_services),
    tracker: SyncTracker = Depends(get_sync_tracker),
):
    """
    Start a Drive sync in a worker thread and return at once.

    Poll GET /sync/status for progress and the run summary.
    """
    if services.sync_engine is None:
        raise ServiceUnavailableError("Drive sync is not configured")

    if not tracker.try_begin():
        raise ConflictError("A sync is already running. Poll GET /sync/status.")

    task = asyncio.create_task(
        asyncio.to_thread(run_sync_task, services.sync_engine, tracker)
    )
    pending = request.app.state.pending_syncs
    pending.add(task)
    task.add_done_callback(pending.discard)

    return {
        "message": "Sync started",
        "status_url": "/sync/status",
        "started_at": tracker.status.started_at,
    }


@app.get("/sync/status", response_model=SyncStatus)
async def get_sync_status(tracker: SyncTracker = Depends(get_sync_tracker)):
    return tracker.status


def start_server(port: int | None = None):
    """Serve the API with uvicorn."""
    import uvicorn

    port = port or rag_settings.api_port
    logger.info(f"Serving Drive RAG API on port {port}")
    uvicorn.run("drive_rag.api:app", host="0.0.0.0", port=port)
