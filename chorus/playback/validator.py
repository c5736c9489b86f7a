"""CHORUS Validator — which clips are safe to play right now.

Checks, in order:
  1. extension is a recognized audio container
  2. size exceeds the corruption floor
  3. a structural probe says decodable + has an audio stream

Probes run on every request (files can be damaged between requests) and
all of them are awaited before sequencing. A probe that fails excludes
its clip and nothing else.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog

from chorus.catalog.store import Clip
from chorus.engine.ffmpeg import MediaEngine
from chorus.errors import ProbeFailure

logger = structlog.get_logger()

MEDIA_TYPES: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".flac": "audio/flac",
}

RECOGNIZED_EXTENSIONS = frozenset(MEDIA_TYPES)


class Validator:
    """Filters a catalog snapshot down to playable clips."""

    def __init__(
        self,
        engine: MediaEngine,
        min_clip_bytes: int = 400,
        concurrency: int = 8,
    ) -> None:
        self.engine = engine
        self.min_clip_bytes = min_clip_bytes
        self.concurrency = max(1, concurrency)

    @classmethod
    def from_settings(cls, settings: Any, engine: MediaEngine) -> Validator:
        return cls(
            engine,
            min_clip_bytes=settings.min_clip_bytes,
            concurrency=settings.probe_concurrency,
        )

    def _passes_static_checks(self, clip: Clip) -> bool:
        if clip.extension not in RECOGNIZED_EXTENSIONS:
            logger.debug("validator.excluded", clip_id=clip.id, reason="extension")
            return False
        if clip.size_bytes <= self.min_clip_bytes:
            logger.info(
                "validator.excluded",
                clip_id=clip.id,
                reason="too_small",
                size_bytes=clip.size_bytes,
            )
            return False
        return True

    async def _probe_ok(self, clip: Clip, gate: asyncio.Semaphore) -> bool:
        async with gate:
            try:
                result = await self.engine.probe(clip.path)
            except ProbeFailure as e:
                logger.warning("validator.probe_failed", clip_id=clip.id, error=e.message)
                return False
        if not result.playable:
            logger.info(
                "validator.excluded",
                clip_id=clip.id,
                reason="probe",
                decodable=result.decodable,
                has_audio_stream=result.has_audio_stream,
            )
            return False
        return True

    async def eligible(self, clips: Sequence[Clip]) -> list[Clip]:
        """Return the playable subset of ``clips`` in their original order."""
        candidates = [c for c in clips if self._passes_static_checks(c)]
        gate = asyncio.Semaphore(self.concurrency)
        verdicts = await asyncio.gather(*(self._probe_ok(c, gate) for c in candidates))
        eligible = [c for c, ok in zip(candidates, verdicts) if ok]
        logger.debug("validator.done", catalog=len(clips), eligible=len(eligible))
        return eligible
