"""PLAYBACK — catalog to stream.

- validator: extension / size / probe filtering, probes fanned out
- sequencer: chronological and anchored-shuffle ordering
- planner: validator + sequencer over a fresh scan
- compositor: sequential / simultaneous invocations
- lifecycle: per-response job supervision and cleanup
"""

from chorus.playback.compositor import CompositionStrategy, StreamCompositor, parse_strategy
from chorus.playback.lifecycle import CompositionJob, JobState
from chorus.playback.planner import PlaybackPlanner, Playlist
from chorus.playback.sequencer import PlaylistOrder, anchored_shuffle, chronological, parse_order
from chorus.playback.validator import RECOGNIZED_EXTENSIONS, Validator

__all__ = [
    "CompositionStrategy",
    "StreamCompositor",
    "parse_strategy",
    "CompositionJob",
    "JobState",
    "PlaybackPlanner",
    "Playlist",
    "PlaylistOrder",
    "anchored_shuffle",
    "chronological",
    "parse_order",
    "RECOGNIZED_EXTENSIONS",
    "Validator",
]
