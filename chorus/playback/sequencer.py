"""CHORUS Sequencer — playlist ordering policies.

chronological: oldest first, so listeners hear the communal history in
               submission order.
special:       anchored shuffle. The newest clip is always first; the
               rest are shuffled (Fisher–Yates over the remainder only).
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from enum import StrEnum

from chorus.catalog.store import Clip


class PlaylistOrder(StrEnum):
    """Ordering policy requested by the caller."""

    CHRONOLOGICAL = "chronological"
    SPECIAL = "special"


_ORDER_ALIASES: dict[str, PlaylistOrder] = {
    "chronological": PlaylistOrder.CHRONOLOGICAL,
    "oldest": PlaylistOrder.CHRONOLOGICAL,
    "sequential": PlaylistOrder.CHRONOLOGICAL,
    "special": PlaylistOrder.SPECIAL,
    "anchored": PlaylistOrder.SPECIAL,
    "shuffle": PlaylistOrder.SPECIAL,
}


def parse_order(value: str | None) -> PlaylistOrder:
    """Map a request parameter to a policy. Empty means chronological."""
    if not value:
        return PlaylistOrder.CHRONOLOGICAL
    try:
        return _ORDER_ALIASES[value.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown order: {value!r}. Use: {', '.join(sorted(_ORDER_ALIASES))}"
        ) from None


def chronological(clips: Sequence[Clip]) -> list[Clip]:
    """Oldest first; equal timestamps fall back to id order."""
    return sorted(clips, key=lambda c: (c.created_at, c.id))


def anchored_shuffle(clips: Sequence[Clip], rng: random.Random | None = None) -> list[Clip]:
    """Newest clip pinned first, everything else shuffled behind it."""
    ordered = chronological(clips)
    if len(ordered) <= 1:
        return ordered
    newest, rest = ordered[-1], ordered[:-1]
    (rng or random.Random()).shuffle(rest)
    return [newest, *rest]


def sequence(
    clips: Sequence[Clip],
    order: PlaylistOrder = PlaylistOrder.CHRONOLOGICAL,
    rng: random.Random | None = None,
) -> list[Clip]:
    """Order ``clips`` under the requested policy."""
    if order is PlaylistOrder.SPECIAL:
        return anchored_shuffle(clips, rng)
    return chronological(clips)
