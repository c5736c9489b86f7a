"""CHORUS Ingest — upload → trim → publish (or accumulate).

The upload transport hands over a temp file and the filename the client
declared. Either a new clip lands in the catalog or a typed error comes
back; a failed upload never leaves anything behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import structlog

from chorus.catalog.store import Clip, ClipStore
from chorus.ingest.accumulator import CrossfadeAccumulator
from chorus.ingest.trimmer import SilenceTrimmer

logger = structlog.get_logger()


class CompositionMode(StrEnum):
    """Where composition happens — pick one per deployment."""

    READ_TIME = "read_time"  # many immutable clips, composed per request
    WRITE_TIME = "write_time"  # one mutable master, blended per upload


@dataclass(frozen=True)
class IngestResult:
    """What a successful upload produced."""

    clip: Clip
    mode: CompositionMode

    def to_dict(self) -> dict[str, object]:
        return {"status": "processed", "mode": self.mode.value, "clip": self.clip.to_dict()}


class IngestService:
    """Turns one raw upload into a catalog entry."""

    def __init__(
        self,
        store: ClipStore,
        trimmer: SilenceTrimmer,
        accumulator: CrossfadeAccumulator | None = None,
        mode: CompositionMode = CompositionMode.READ_TIME,
    ) -> None:
        if mode is CompositionMode.WRITE_TIME and accumulator is None:
            raise ValueError("write_time mode needs an accumulator")
        self.store = store
        self.trimmer = trimmer
        self.accumulator = accumulator
        self.mode = mode

    async def ingest(self, upload: Path, filename: str | None) -> IngestResult:
        """Trim ``upload`` and publish it. ``upload`` is always consumed."""
        logger.info("ingest.received", filename=filename, mode=self.mode.value)
        partial = self.store.new_partial()
        try:
            await self.trimmer.trim(upload, filename, partial)
            if self.mode is CompositionMode.WRITE_TIME:
                if self.accumulator is None:
                    raise RuntimeError("write_time mode needs an accumulator")
                clip = await self.accumulator.accumulate(partial)
            else:
                clip = await self.store.publish(partial)
        except Exception as e:
            logger.warning("ingest.rejected", filename=filename, error=str(e),
                           kind=getattr(e, "kind", type(e).__name__))
            raise
        finally:
            partial.unlink(missing_ok=True)

        return IngestResult(clip=clip, mode=self.mode)
