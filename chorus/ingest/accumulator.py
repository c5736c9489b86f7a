"""CHORUS Accumulator — write-time composition into one master.

The alternative to composing at request time: every upload is crossfaded
into a single master file the moment it arrives, and playback just serves
that file. Contributions can no longer be reordered or excluded once
blended in, so a deployment runs in exactly one of the two modes.

The read-modify-rename cycle runs under the store lock: the blend is
written beside the master and swapped in with os.replace, so a crash
mid-blend leaves the previous master intact.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from chorus.catalog.store import Clip, ClipStore
from chorus.engine.ffmpeg import MediaEngine
from chorus.engine.graph import InputSpec, Invocation, OutputFormat, crossfade_graph
from chorus.errors import CompositionEngineFailure, EngineError, ProbeFailure

logger = structlog.get_logger()

_MIN_CROSSFADE_S = 0.05


class CrossfadeAccumulator:
    """Blend each new clip into the store's master with a fixed crossfade."""

    def __init__(
        self,
        store: ClipStore,
        engine: MediaEngine,
        output: OutputFormat | None = None,
        crossfade_s: float = 2.0,
    ) -> None:
        self.store = store
        self.engine = engine
        self.output = output or OutputFormat()
        self.crossfade_s = crossfade_s

    @classmethod
    def from_settings(
        cls, settings: Any, store: ClipStore, engine: MediaEngine
    ) -> CrossfadeAccumulator:
        return cls(
            store,
            engine,
            output=OutputFormat.from_settings(settings),
            crossfade_s=settings.crossfade_s,
        )

    async def _crossfade_duration(self, master: Path, clip: Path) -> float:
        """Configured overlap, clamped to half the shorter input."""
        durations: list[float] = []
        for path in (master, clip):
            try:
                probe = await self.engine.probe(path)
            except ProbeFailure:
                continue
            if probe.duration_s:
                durations.append(probe.duration_s)
        if not durations:
            return self.crossfade_s
        return max(_MIN_CROSSFADE_S, min(self.crossfade_s, min(durations) / 2))

    async def accumulate(self, clip_path: Path) -> Clip:
        """Fold a trimmed clip into the master. Consumes ``clip_path``."""
        async with self.store.exclusive():
            try:
                master = self.store.master()
                if master is None:
                    self.store.master_dir.mkdir(parents=True, exist_ok=True)
                    created = self.store.replace_master(clip_path)
                    logger.info("accumulate.master_created", size_bytes=created.size_bytes)
                    return created

                blend = self.store.new_master_partial()
                try:
                    duration = await self._crossfade_duration(master.path, clip_path)
                    invocation = Invocation(
                        inputs=(InputSpec(master.path), InputSpec(clip_path)),
                        output=self.output,
                        target=str(blend),
                        graph=crossfade_graph(duration),
                    )
                    try:
                        await self.engine.run(invocation)
                    except EngineError as e:
                        raise CompositionEngineFailure(
                            f"crossfade failed (exit {e.returncode})"
                        ) from e
                    updated = self.store.replace_master(blend)
                finally:
                    blend.unlink(missing_ok=True)
            finally:
                clip_path.unlink(missing_ok=True)

        logger.info(
            "accumulate.blended",
            crossfade_s=round(duration, 3),
            size_bytes=updated.size_bytes,
        )
        return updated
