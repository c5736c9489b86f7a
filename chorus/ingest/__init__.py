"""INGEST — uploads become clips.

- trimmer: strip-reverse-strip-reverse silence trimming + transcode
- accumulator: write-time crossfade into a single master
- service: orchestration and publish
"""

from chorus.ingest.accumulator import CrossfadeAccumulator
from chorus.ingest.service import CompositionMode, IngestResult, IngestService
from chorus.ingest.trimmer import SilenceTrimmer, TrimProfile, TrimResult, profile_for

__all__ = [
    "CrossfadeAccumulator",
    "CompositionMode",
    "IngestResult",
    "IngestService",
    "SilenceTrimmer",
    "TrimProfile",
    "TrimResult",
    "profile_for",
]
