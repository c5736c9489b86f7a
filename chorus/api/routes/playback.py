"""API routes for playback — the endless drone."""

from __future__ import annotations

import random
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from chorus.api.services import Services, get_services
from chorus.errors import NoEligibleClips
from chorus.ingest.service import CompositionMode
from chorus.playback.compositor import CompositionStrategy, parse_strategy
from chorus.playback.lifecycle import CompositionJob
from chorus.playback.sequencer import parse_order
from chorus.playback.validator import MEDIA_TYPES

logger = structlog.get_logger()

router = APIRouter(tags=["playback"])

_NO_STORE = {"Cache-Control": "no-store"}


class JobStreamingResponse(StreamingResponse):
    """Streams a started CompositionJob and always tears it down afterwards.

    Starlette skips background tasks when the client disconnects, so the
    job is cancelled in the response call itself.
    """

    def __init__(self, job: CompositionJob, media_type: str) -> None:
        super().__init__(job.stream(), media_type=media_type, headers=_NO_STORE)
        self.job = job

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.job.cancel()


@router.get("/master_drone", response_model=None)
async def master_drone(
    services: Annotated[Services, Depends(get_services)],
    order: Annotated[str, Query()] = "chronological",
    mode: Annotated[str, Query()] = "sequential",
    seed: Annotated[int | None, Query()] = None,
) -> FileResponse | JobStreamingResponse:
    """Play every eligible recording as one stream.

    order: chronological | special (newest first, rest shuffled)
    mode:  sequential | simultaneous
    seed:  makes the special shuffle reproducible
    """
    media_type = services.settings.output_media_type

    if services.mode is CompositionMode.WRITE_TIME:
        master = services.store.master()
        if master is None:
            raise NoEligibleClips("nothing to play yet")
        return FileResponse(master.path, media_type=media_type, headers=_NO_STORE)

    try:
        playlist_order = parse_order(order)
        strategy = parse_strategy(mode)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if strategy is CompositionStrategy.ACCUMULATE:
        raise HTTPException(
            status_code=400,
            detail="accumulate blends at upload time; run with CHORUS_COMPOSITION_MODE=write_time",
        )

    rng = random.Random(seed) if seed is not None else None
    playlist = await services.planner.plan(playlist_order, rng)

    if playlist.is_single:
        clip = playlist.clips[0]
        return FileResponse(
            clip.path,
            media_type=MEDIA_TYPES.get(clip.extension, "application/octet-stream"),
            headers=_NO_STORE,
        )

    job = services.compositor.job(playlist.paths, strategy)
    await job.start()
    logger.info(
        "playback.streaming",
        job_id=job.job_id,
        clips=len(playlist.clips),
        order=playlist_order.value,
        strategy=strategy.value,
    )
    return JobStreamingResponse(job, media_type)
