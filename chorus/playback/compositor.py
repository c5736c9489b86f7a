"""CHORUS Compositor — many clips in, one canonical stream out.

Strategies:
  sequential    back-to-back in playlist order. Inputs are listed in an
                ffconcat manifest for the concat demuxer instead of being
                chained pairwise in a filter graph, then re-encoded.
  simultaneous  every clip summed at once (amix, duration=longest, then a
                limiter). Cost grows with every input, so past
                max_mix_inputs the request falls back to sequential.
  accumulate    write-time blending into one master; see
                chorus.ingest.accumulator. Nothing to compose per request.

Every encode uses the same OutputFormat so repeated compositions of the
same inputs stay stable up to encoder non-determinism.
"""

from __future__ import annotations

import dataclasses
import shutil
import tempfile
from collections.abc import Sequence
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from chorus.engine.ffmpeg import MediaEngine
from chorus.engine.graph import ConcatManifest, InputSpec, Invocation, OutputFormat, mix_graph
from chorus.errors import CompositionEngineFailure, EngineError
from chorus.playback.lifecycle import CompositionJob

logger = structlog.get_logger()

MANIFEST_NAME = "inputs.ffconcat"
JOB_DIR_PREFIX = "chorus_job_"


class CompositionStrategy(StrEnum):
    SEQUENTIAL = "sequential"
    SIMULTANEOUS = "simultaneous"
    ACCUMULATE = "accumulate"


_STRATEGY_ALIASES: dict[str, CompositionStrategy] = {
    "sequential": CompositionStrategy.SEQUENTIAL,
    "concat": CompositionStrategy.SEQUENTIAL,
    "simultaneous": CompositionStrategy.SIMULTANEOUS,
    "mix": CompositionStrategy.SIMULTANEOUS,
    "accumulate": CompositionStrategy.ACCUMULATE,
    "crossfade": CompositionStrategy.ACCUMULATE,
}


def parse_strategy(value: str | None) -> CompositionStrategy:
    """Map a request parameter to a strategy. Empty means sequential."""
    if not value:
        return CompositionStrategy.SEQUENTIAL
    try:
        return _STRATEGY_ALIASES[value.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown mode: {value!r}. Use: {', '.join(sorted(_STRATEGY_ALIASES))}"
        ) from None


class StreamCompositor:
    """Builds engine invocations per strategy and wraps them in jobs."""

    def __init__(
        self,
        engine: MediaEngine,
        output: OutputFormat | None = None,
        max_mix_inputs: int = 24,
        chunk_size: int = 64 * 1024,
        timeout_s: float | None = None,
        tmp_root: Path | None = None,
    ) -> None:
        self.engine = engine
        self.output = output or OutputFormat()
        self.max_mix_inputs = max_mix_inputs
        self.chunk_size = chunk_size
        self.timeout_s = timeout_s
        self.tmp_root = tmp_root

    @classmethod
    def from_settings(cls, settings: Any, engine: MediaEngine) -> StreamCompositor:
        return cls(
            engine,
            output=OutputFormat.from_settings(settings),
            max_mix_inputs=settings.max_mix_inputs,
            chunk_size=settings.chunk_size,
            timeout_s=settings.composition_timeout_s or None,
        )

    def effective_strategy(
        self, strategy: CompositionStrategy, n_inputs: int
    ) -> CompositionStrategy:
        if strategy is CompositionStrategy.ACCUMULATE:
            raise ValueError("accumulate composes at upload time, not per request")
        if strategy is CompositionStrategy.SIMULTANEOUS and n_inputs > self.max_mix_inputs:
            logger.warning(
                "compositor.mix_fallback",
                inputs=n_inputs,
                max_mix_inputs=self.max_mix_inputs,
            )
            return CompositionStrategy.SEQUENTIAL
        return strategy

    def build(
        self, paths: Sequence[Path], strategy: CompositionStrategy
    ) -> tuple[Invocation, Path]:
        """Return the invocation for ``paths`` and the temp dir it depends on.

        The caller owns the temp dir from here on.
        """
        if len(paths) < 2:
            raise ValueError("Composition needs at least two clips")
        strategy = self.effective_strategy(strategy, len(paths))

        workdir = Path(tempfile.mkdtemp(prefix=JOB_DIR_PREFIX, dir=self.tmp_root))
        try:
            if strategy is CompositionStrategy.SEQUENTIAL:
                manifest = ConcatManifest(tuple(Path(p) for p in paths))
                manifest_path = manifest.write(workdir / MANIFEST_NAME)
                invocation = Invocation(
                    inputs=(InputSpec(manifest_path, ("-f", "concat", "-safe", "0")),),
                    output=self.output,
                )
            else:
                invocation = Invocation(
                    inputs=tuple(InputSpec(Path(p)) for p in paths),
                    output=self.output,
                    graph=mix_graph(len(paths)),
                )
        except BaseException:
            shutil.rmtree(workdir, ignore_errors=True)
            raise
        return invocation, workdir

    def job(self, paths: Sequence[Path], strategy: CompositionStrategy) -> CompositionJob:
        """A not-yet-started streaming job for ``paths``."""
        invocation, workdir = self.build(paths, strategy)
        return CompositionJob(
            self.engine,
            invocation,
            workdir=workdir,
            chunk_size=self.chunk_size,
            timeout_s=self.timeout_s,
            label=f"{strategy.value}x{len(paths)}",
        )

    async def compose_to_file(
        self, paths: Sequence[Path], strategy: CompositionStrategy, target: Path
    ) -> Path:
        """Render the composition to ``target`` instead of a stream."""
        invocation, workdir = self.build(paths, strategy)
        try:
            await self.engine.run(dataclasses.replace(invocation, target=str(target)))
        except EngineError as e:
            Path(target).unlink(missing_ok=True)
            raise CompositionEngineFailure(f"composition failed (exit {e.returncode})") from e
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
        return Path(target)
