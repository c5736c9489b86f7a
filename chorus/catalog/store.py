"""CHORUS Clip Store — the catalog, derived live from one directory.

Layout:
  <root>/<epoch-ms>.mp3          published clips (immutable)
  <root>/.partial-<uuid>.mp3     writes in progress (never listed)
  <root>/master/master.mp3       write-time accumulation master

Clips are published by os.replace of a fully written sibling file, so a
reader never observes a half-written clip. No in-memory index is kept;
every list_clips() rescans the directory.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from chorus.errors import StoreIOFailure

logger = structlog.get_logger()

PARTIAL_PREFIX = ".partial-"
MASTER_DIRNAME = "master"


# ── Data Types ───────────────────────────────────────────


@dataclass(frozen=True)
class Clip:
    """One persisted recording."""

    id: str
    path: Path
    created_at: datetime
    size_bytes: int

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
        }


class ClipIdClock:
    """Millisecond timestamps that never repeat or go backwards in-process."""

    def __init__(self, now_ns: Callable[[], int] = time.time_ns) -> None:
        self._now_ns = now_ns
        self._last = 0

    def next_ms(self) -> int:
        ms = self._now_ns() // 1_000_000
        if ms <= self._last:
            ms = self._last + 1
        self._last = ms
        return ms


def _created_at(path: Path, mtime: float) -> datetime:
    try:
        return datetime.fromtimestamp(int(path.stem) / 1000, tz=UTC)
    except ValueError:
        return datetime.fromtimestamp(mtime, tz=UTC)


# ── Store ────────────────────────────────────────────────


class ClipStore:
    """Catalog of clips backed by a directory.

    The store-wide lock serializes everything that mutates the directory:
    publish, master accumulation and reset. Reads take no lock.
    """

    def __init__(
        self,
        root: str | Path,
        extension: str = ".mp3",
        clock: ClipIdClock | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.extension = extension
        self.clock = clock or ClipIdClock()
        self.lock = asyncio.Lock()
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Any) -> ClipStore:
        return cls(settings.clips_dir, extension=settings.output_extension)

    # ── Paths ──

    def path_for(self, clip_id: str) -> Path:
        """Resolve a clip id to a path directly inside the root."""
        if not clip_id or "/" in clip_id or "\\" in clip_id or clip_id.startswith("."):
            raise StoreIOFailure(f"Invalid clip id: {clip_id!r}")
        path = (self.root / clip_id).resolve()
        if path.parent != self.root:
            raise StoreIOFailure(f"Clip id escapes the store: {clip_id!r}")
        return path

    def new_partial(self) -> Path:
        """A private sibling path for a write that will later be published."""
        return self.root / f"{PARTIAL_PREFIX}{uuid.uuid4().hex}{self.extension}"

    @property
    def master_dir(self) -> Path:
        return self.root / MASTER_DIRNAME

    @property
    def master_path(self) -> Path:
        return self.master_dir / f"master{self.extension}"

    def new_master_partial(self) -> Path:
        self.master_dir.mkdir(parents=True, exist_ok=True)
        return self.master_dir / f"{PARTIAL_PREFIX}{uuid.uuid4().hex}{self.extension}"

    # ── Reads ──

    def _clip_from(self, path: Path) -> Clip:
        st = path.stat()
        return Clip(
            id=path.name,
            path=path,
            created_at=_created_at(path, st.st_mtime),
            size_bytes=st.st_size,
        )

    def list_clips(self) -> list[Clip]:
        """Every published clip, oldest first."""
        clips: list[Clip] = []
        try:
            entries = list(os.scandir(self.root))
        except OSError as e:
            raise StoreIOFailure(f"Cannot list {self.root}: {e}") from e

        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                clips.append(self._clip_from(Path(entry.path)))
            except FileNotFoundError:
                # removed by a concurrent reset between scan and stat
                continue
            except OSError as e:
                raise StoreIOFailure(f"Cannot stat {entry.path}: {e}") from e

        clips.sort(key=lambda c: (c.created_at, c.id))
        return clips

    def stat(self, clip_id: str) -> Clip:
        path = self.path_for(clip_id)
        try:
            if not path.is_file():
                raise StoreIOFailure(f"No such clip: {clip_id}")
            return self._clip_from(path)
        except OSError as e:
            raise StoreIOFailure(f"Cannot stat {clip_id}: {e}") from e

    def master(self) -> Clip | None:
        """The accumulation master, if one has been written."""
        path = self.master_path
        try:
            return self._clip_from(path) if path.is_file() else None
        except FileNotFoundError:
            return None

    # ── Writes ──

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold the store-wide write lock."""
        async with self.lock:
            yield

    async def publish(self, partial: Path) -> Clip:
        """Atomically move a finished partial into the catalog."""
        async with self.lock:
            try:
                while True:
                    clip_id = f"{self.clock.next_ms()}{self.extension}"
                    final = self.path_for(clip_id)
                    if not final.exists():
                        break
                os.replace(partial, final)
                clip = self._clip_from(final)
            except OSError as e:
                raise StoreIOFailure(f"Publish failed: {e}") from e

        logger.info("store.published", clip_id=clip.id, size_bytes=clip.size_bytes)
        return clip

    def replace_master(self, partial: Path) -> Clip:
        """Swap a finished partial over the master. Caller holds exclusive()."""
        if not self.lock.locked():
            raise RuntimeError("replace_master requires the store lock")
        try:
            os.replace(partial, self.master_path)
            return self._clip_from(self.master_path)
        except OSError as e:
            raise StoreIOFailure(f"Master replace failed: {e}") from e

    async def clear(self) -> int:
        """Delete every published clip and the master. Returns files removed.

        Partials in flight are left to their owners; their publish waits on
        the lock and lands after the reset.
        """
        removed = 0
        async with self.lock:
            try:
                for clip in self.list_clips():
                    clip.path.unlink(missing_ok=True)
                    removed += 1
                if self.master_path.exists():
                    self.master_path.unlink()
                    removed += 1
            except OSError as e:
                raise StoreIOFailure(f"Reset failed: {e}") from e

        logger.warning("store.cleared", removed=removed)
        return removed
