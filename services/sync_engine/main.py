"""Sync Engine - local capture API (FastAPI application)."""

import base64
import binascii
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import get_sync_config
from shared.content import BytesContentSource
from shared.db_operations import LocalStore
from shared.errors import MalformedLocalStateError
from shared.models import Attachment, AttachmentKind, Entry
from services.sync_engine.engine import SyncEngine
from services.sync_engine.network import PollingNetworkMonitor
from services.sync_engine.remote_client import RemoteEntryClient, create_http_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

# Global instances
engine: Optional[SyncEngine] = None
http_client: Optional[httpx.AsyncClient] = None


def build_engine() -> SyncEngine:
    """Build the engine from environment configuration."""
    global http_client

    store = LocalStore()
    store.create_tables()
    logger.info(f"Local store initialized at {store.database_url}")

    http_client = create_http_client()
    remote = RemoteEntryClient(http_client)
    monitor = PollingNetworkMonitor(remote, interval=get_sync_config()["poll_interval"])
    logger.info(f"Remote client initialized - {http_client.base_url}")

    return SyncEngine(store, remote, monitor)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global engine, http_client

    logger.info("Sync Engine starting up...")
    if engine is None:
        engine = build_engine()
    await engine.start()

    yield

    await engine.stop()
    if http_client is not None:
        await http_client.aclose()
        http_client = None
    logger.info("Sync Engine shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Sync Engine",
    description="Offline-first note capture with background sync",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc)
            }
        )


# Request/Response models
class AttachmentUpload(BaseModel):
    """Attachment supplied with a capture; data is base64 encoded."""
    name: str
    mime_type: str = "application/octet-stream"
    kind: Optional[AttachmentKind] = None
    data: str


class CaptureRequest(BaseModel):
    """Request model for a capture."""
    text: str = ""
    parent_id: Optional[str] = None
    attachments: List[AttachmentUpload] = []


class AttachmentResponse(BaseModel):
    id: str
    kind: str
    mime_type: str
    name: str
    remote_key: Optional[str] = None


class EntryResponse(BaseModel):
    """Response model for an entry; unsynced entries show as saving."""
    id: str
    root_id: str
    parent_id: Optional[str] = None
    text: str
    created_at: str
    sync_state: str
    attachments: List[AttachmentResponse]


def to_response(entry: Entry) -> EntryResponse:
    return EntryResponse(
        id=entry.id,
        root_id=entry.root_id,
        parent_id=entry.parent_id,
        text=entry.text,
        created_at=entry.created_at.isoformat(),
        sync_state=entry.sync_state.value,
        attachments=[
            AttachmentResponse(
                id=attachment.id,
                kind=attachment.kind.value,
                mime_type=attachment.mime_type,
                name=attachment.name,
                remote_key=attachment.remote_key,
            )
            for attachment in entry.attachments
        ],
    )


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    store_healthy = False
    try:
        engine.store.count_unsynced()
        store_healthy = True
    except Exception as e:
        logger.error(f"Local store health check failed: {e}")

    return {
        "status": "healthy" if store_healthy else "degraded",
        "service": "sync_engine",
        "version": "0.1.0",
        "dependencies": {
            "local_store": "up" if store_healthy else "down",
            "remote": "up" if engine.status()["online"] else "unknown",
        }
    }


@app.post("/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
async def capture_entry(request: CaptureRequest):
    """
    Capture a note locally and trigger a push.

    Returns immediately; the entry is unsynced until the background cycle
    commits it.
    """
    attachments = []
    for item in request.attachments:
        try:
            payload = base64.b64decode(item.data, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Attachment {item.name} is not valid base64"
            )
        attachments.append(
            Attachment.new(BytesContentSource(payload), item.mime_type, item.name, kind=item.kind)
        )

    try:
        entry = engine.capture(request.text, attachments, parent_id=request.parent_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MalformedLocalStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return to_response(entry)


@app.get("/entries", response_model=List[EntryResponse], status_code=status.HTTP_200_OK)
async def list_entries(limit: int = Query(20, ge=1, le=200)):
    """List local entries, newest first."""
    return [to_response(entry) for entry in engine.recent(limit)]


@app.get("/entries/{entry_id}", response_model=EntryResponse, status_code=status.HTTP_200_OK)
async def get_entry(entry_id: str):
    """Get one local entry."""
    entry = engine.store.get(entry_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Entry {entry_id} not found"
        )
    return to_response(entry)


@app.post("/internal/sync/trigger", status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(include_pull: bool = True):
    """Start a sync cycle unless one is already running."""
    task = engine.scheduler.trigger(include_pull=include_pull)
    return {"started": task is not None}


@app.get("/internal/sync/status", status_code=status.HTTP_200_OK)
async def sync_status():
    """Report whether a cycle is running and how many entries are unsynced."""
    return engine.status()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("SYNC_ENGINE_PORT", 8011))
    uvicorn.run(app, host="127.0.0.1", port=port)
