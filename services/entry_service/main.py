"""Entry Service - authoritative remote store (FastAPI application)."""

import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from shared.config import MAX_RECENT_LIMIT, get_aws_config, get_max_upload_bytes
from shared.db_operations import RemoteEntryOperations
from services.entry_service.s3_client import S3Client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

# Global instances
db_ops: Optional[RemoteEntryOperations] = None
s3_client: Optional[S3Client] = None


def get_s3_client() -> S3Client:
    """Get or create S3 client."""
    global s3_client
    if s3_client is None:
        aws_config = get_aws_config()
        s3_client = S3Client(
            bucket_name=aws_config["s3_bucket"],
            region=aws_config["region"],
            access_key_id=aws_config.get("access_key_id"),
            secret_access_key=aws_config.get("secret_access_key")
        )
    return s3_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global db_ops

    logger.info("Entry Service starting up...")
    if db_ops is None:
        db_ops = RemoteEntryOperations()
        db_ops.create_tables()
        logger.info("Database connection initialized")

    yield

    logger.info("Entry Service shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Entry Service",
    description="Authoritative store for captured entries and their attachments",
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
class AttachmentRecord(BaseModel):
    """Wire form of a resolved attachment."""
    id: str
    key: Optional[str] = None
    type: str = "file"
    mimeType: str = "application/octet-stream"
    name: str = ""


class CreateEntryRequest(BaseModel):
    """Request model for the idempotent entry commit."""
    entryId: str
    rootId: Optional[str] = None
    parentId: Optional[str] = None
    text: str = ""
    attachments: List[AttachmentRecord] = []


class EntryRecord(BaseModel):
    entryId: str
    rootId: str
    parentId: Optional[str] = None
    text: str
    createdAt: int
    attachments: List[AttachmentRecord]


class RecentEntriesResponse(BaseModel):
    entries: List[EntryRecord]
    count: int


class UploadResponse(BaseModel):
    key: str
    size: int


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    db_healthy = False
    try:
        with db_ops.get_session() as session:
            session.execute(text("SELECT 1"))
        db_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "healthy" if db_healthy else "degraded",
        "service": "entry_service",
        "version": "0.1.0",
        "dependencies": {
            "database": "up" if db_healthy else "down",
        }
    }


@app.post("/upload", response_model=UploadResponse, status_code=status.HTTP_200_OK)
async def upload_attachment(
    request: Request,
    key: str = Query(..., min_length=1),
    mime_type: str = Query("application/octet-stream", alias="type")
):
    """
    Store one attachment payload under its client-chosen key.

    Idempotent by key; the assigned remote key is the key itself.
    """
    body = await request.body()
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload body")

    max_bytes = get_max_upload_bytes()
    if len(body) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload of {len(body)} bytes exceeds limit of {max_bytes}"
        )

    try:
        await run_in_threadpool(get_s3_client().put_attachment, key, body, mime_type)
    except (ClientError, BotoCoreError) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Attachment storage unavailable: {e}"
        )

    return UploadResponse(key=key, size=len(body))


@app.get("/internal/attachments/{key}/url", status_code=status.HTTP_200_OK)
async def get_attachment_url(key: str, expiration: int = Query(3600, ge=60, le=86400)):
    """Presigned download URL for a stored attachment."""
    try:
        url = get_s3_client().generate_presigned_url(key, expiration=expiration)
    except (ClientError, BotoCoreError) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Attachment storage unavailable: {e}"
        )
    return {"key": key, "url": url, "expires_in": expiration}


@app.post("/internal/entries", response_model=EntryRecord, status_code=status.HTTP_201_CREATED)
async def create_entry(request: CreateEntryRequest):
    """
    Idempotent entry commit keyed by entryId.

    A repeated commit with a known id changes nothing and returns the stored
    record with 200.
    """
    unresolved = [attachment.id for attachment in request.attachments if not attachment.key]
    if unresolved:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Attachments without a key: {', '.join(unresolved)}"
        )

    record, created = db_ops.create_entry(
        entry_id=request.entryId,
        text=request.text,
        created_at=int(time.time() * 1000),
        root_id=request.rootId,
        parent_id=request.parentId,
        attachments=[attachment.model_dump() for attachment in request.attachments],
    )

    if created:
        logger.info(f"Created entry {request.entryId}")
        return record

    logger.info(f"Entry {request.entryId} already exists, commit is a no-op")
    return JSONResponse(status_code=status.HTTP_200_OK, content=record)


@app.get("/internal/entries/recent", response_model=RecentEntriesResponse, status_code=status.HTTP_200_OK)
async def get_recent_entries(limit: int = Query(50, ge=1, le=MAX_RECENT_LIMIT)):
    """Most recent entries, newest first."""
    entries = db_ops.get_recent(limit)
    return RecentEntriesResponse(entries=entries, count=len(entries))


@app.get("/internal/entries/{entry_id}", response_model=EntryRecord, status_code=status.HTTP_200_OK)
async def get_entry(entry_id: str):
    """Get one stored entry."""
    record = db_ops.get_entry(entry_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Entry {entry_id} not found"
        )
    return record


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("ENTRY_SERVICE_PORT", 8010))
    uvicorn.run(app, host="0.0.0.0", port=port)
