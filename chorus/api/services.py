"""Service wiring — one explicit object graph per settings instance.

Routes receive everything through the ``get_services`` dependency, so tests
swap the whole graph with ``app.dependency_overrides``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from chorus.catalog.store import ClipStore
from chorus.config import Settings, settings
from chorus.engine.ffmpeg import FFmpegEngine, MediaEngine
from chorus.ingest.accumulator import CrossfadeAccumulator
from chorus.ingest.service import CompositionMode, IngestService
from chorus.ingest.trimmer import SilenceTrimmer
from chorus.playback.compositor import StreamCompositor
from chorus.playback.planner import PlaybackPlanner
from chorus.playback.validator import Validator


@dataclass
class Services:
    """Everything a request handler may touch."""

    settings: Settings
    mode: CompositionMode
    store: ClipStore
    engine: MediaEngine
    ingest: IngestService
    planner: PlaybackPlanner
    compositor: StreamCompositor


def build_services(cfg: Settings, engine: MediaEngine | None = None) -> Services:
    """Assemble the object graph for ``cfg``."""
    mode = CompositionMode(cfg.composition_mode)
    engine = engine or FFmpegEngine.from_settings(cfg)
    store = ClipStore.from_settings(cfg)
    trimmer = SilenceTrimmer.from_settings(cfg, engine)
    accumulator = (
        CrossfadeAccumulator.from_settings(cfg, store, engine)
        if mode is CompositionMode.WRITE_TIME
        else None
    )
    return Services(
        settings=cfg,
        mode=mode,
        store=store,
        engine=engine,
        ingest=IngestService(store, trimmer, accumulator, mode=mode),
        planner=PlaybackPlanner(store, Validator.from_settings(cfg, engine)),
        compositor=StreamCompositor.from_settings(cfg, engine),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    """FastAPI dependency — the process-wide services for global settings."""
    return build_services(settings)
