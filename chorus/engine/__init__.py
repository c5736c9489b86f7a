"""ENGINE — the media-processing collaborator.

- graph: typed builder for filters, manifests and invocations
- ffmpeg: asyncio subprocess adapter (probe / run / spawn)
"""

from chorus.engine.ffmpeg import (
    EngineProcess,
    FFmpegEngine,
    FFmpegProcess,
    MediaEngine,
    ProbeResult,
)
from chorus.engine.graph import (
    ConcatManifest,
    FilterGraph,
    InputSpec,
    Invocation,
    OutputFormat,
)

__all__ = [
    "EngineProcess",
    "FFmpegEngine",
    "FFmpegProcess",
    "MediaEngine",
    "ProbeResult",
    "ConcatManifest",
    "FilterGraph",
    "InputSpec",
    "Invocation",
    "OutputFormat",
]
