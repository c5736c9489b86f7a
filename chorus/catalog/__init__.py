"""CATALOG — the clip store."""

from chorus.catalog.store import Clip, ClipIdClock, ClipStore

__all__ = ["Clip", "ClipIdClock", "ClipStore"]
