"""API routes for ingestion — upload, catalog listing, reset."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from chorus.api.auth import require_reset_secret
from chorus.api.services import Services, get_services

logger = structlog.get_logger()

router = APIRouter(tags=["ingest"])

_UPLOAD_CHUNK = 1024 * 1024


class ResetRequest(BaseModel):
    """Body of POST /api/reset."""

    secret: str = ""


class ClipInfo(BaseModel):
    """One catalog entry as listed by the API."""

    id: str
    created_at: str
    size_bytes: int


@router.post("/upload")
async def upload_clip(
    audio: Annotated[UploadFile, File(...)],
    services: Annotated[Services, Depends(get_services)],
) -> dict[str, Any]:
    """Accept one recording, trim it and add it to the collective."""
    filename = audio.filename or "recording.webm"

    # Spool to a temp file; ingestion owns (and deletes) it from here on.
    tmp = tempfile.NamedTemporaryFile(prefix="chorus_upload_", delete=False)  # noqa: SIM115
    tmp_path = Path(tmp.name)
    try:
        with tmp:
            while chunk := await audio.read(_UPLOAD_CHUNK):
                tmp.write(chunk)
    except Exception as e:
        tmp_path.unlink(missing_ok=True)
        logger.error("upload.spool_failed", filename=filename, error=str(e))
        raise HTTPException(status_code=500, detail=f"Could not receive upload: {e!s}") from e

    result = await services.ingest.ingest(tmp_path, filename)
    return result.to_dict()


@router.get("/clips")
async def list_clips(
    services: Annotated[Services, Depends(get_services)],
) -> list[ClipInfo]:
    """Current catalog, oldest first. Not filtered for playability."""
    return [ClipInfo(**clip.to_dict()) for clip in services.store.list_clips()]


@router.post("/reset", response_class=PlainTextResponse)
async def reset_clips(
    body: ResetRequest,
    services: Annotated[Services, Depends(get_services)],
) -> str:
    """Delete every recording. Requires the shared secret."""
    require_reset_secret(body.secret, services.settings.reset_secret)
    removed = await services.store.clear()
    return f"All recordings cleared ({removed} files removed)."
