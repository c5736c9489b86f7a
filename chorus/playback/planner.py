"""CHORUS Planner — catalog snapshot → validated, ordered playlist."""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path

import structlog

from chorus.catalog.store import Clip, ClipStore
from chorus.errors import NoEligibleClips
from chorus.playback.sequencer import PlaylistOrder, sequence
from chorus.playback.validator import Validator

logger = structlog.get_logger()


@dataclass(frozen=True)
class Playlist:
    """A request-scoped ordering of eligible clips. Never persisted."""

    clips: tuple[Clip, ...]
    order: PlaylistOrder

    @property
    def paths(self) -> list[Path]:
        return [c.path for c in self.clips]

    @property
    def is_single(self) -> bool:
        return len(self.clips) == 1


class PlaybackPlanner:
    """Validator + Sequencer over a fresh directory scan."""

    def __init__(self, store: ClipStore, validator: Validator) -> None:
        self.store = store
        self.validator = validator

    async def plan(
        self,
        order: PlaylistOrder = PlaylistOrder.CHRONOLOGICAL,
        rng: random.Random | None = None,
    ) -> Playlist:
        """Raises NoEligibleClips when nothing is playable yet."""
        catalog = self.store.list_clips()
        eligible = await self.validator.eligible(catalog)
        if not eligible:
            raise NoEligibleClips("nothing to play yet")

        playlist = Playlist(clips=tuple(sequence(eligible, order, rng)), order=order)
        logger.info(
            "playback.planned",
            order=order.value,
            catalog=len(catalog),
            eligible=len(eligible),
        )
        return playlist
