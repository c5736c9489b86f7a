"""CHORUS FastAPI server — main application."""

from typing import Annotated

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from chorus.api.routes.ingest import router as ingest_router
from chorus.api.routes.playback import router as playback_router
from chorus.api.services import Services, get_services
from chorus.errors import (
    ChorusError,
    CompositionEngineFailure,
    NoEligibleClips,
    ProbeFailure,
    StoreIOFailure,
    TrimEngineFailure,
    TrimResultDegenerate,
    UploadUnreadable,
)

logger = structlog.get_logger()

app = FastAPI(
    title="CHORUS",
    description="Communal clip ingestion and drone composition.",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# The recording page is served from another host.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest_router, prefix="/api")
app.include_router(playback_router, prefix="/api")


# ── Error mapping ──

_STATUS_BY_ERROR: dict[type[ChorusError], int] = {
    UploadUnreadable: 400,
    TrimResultDegenerate: 422,
    TrimEngineFailure: 500,
    CompositionEngineFailure: 500,
    ProbeFailure: 500,
    StoreIOFailure: 500,
}


@app.exception_handler(ChorusError)
async def chorus_error_handler(request: Request, exc: ChorusError) -> Response:
    """Typed core errors → HTTP. An empty catalog is not an error."""
    if isinstance(exc, NoEligibleClips):
        return Response(status_code=204, headers={"Cache-Control": "no-store"})

    status_code = next(
        (code for kind, code in _STATUS_BY_ERROR.items() if isinstance(exc, kind)),
        500,
    )
    log = logger.error if status_code >= 500 else logger.info
    log("api.error", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "kind": exc.kind, "message": exc.message},
    )


# ── Public routes ──
@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "chorus"}


@app.get("/api/info")
async def info(
    services: Annotated[Services, Depends(get_services)],
) -> dict[str, object]:
    """System information and capabilities."""
    from chorus import __version__

    return {
        "name": "CHORUS",
        "version": __version__,
        "service": "chorus",
        "composition_mode": services.mode.value,
        "orders": ["chronological", "special"],
        "modes": ["sequential", "simultaneous"],
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "upload": "POST /api/upload",
            "clips": "GET /api/clips",
            "master_drone": "GET /api/master_drone?order=&mode=&seed=",
            "reset": "POST /api/reset",
        },
    }
