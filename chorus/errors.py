"""CHORUS error kinds.

Ingestion errors abort one upload and never touch the catalog.
Playback errors are split between "exclude this clip" (ProbeFailure),
"nothing to play" (NoEligibleClips) and real engine failures.
"""

from __future__ import annotations


class ChorusError(Exception):
    """Base class for every error the core raises on purpose."""

    kind = "chorus_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class UploadUnreadable(ChorusError):
    """The uploaded file is missing, empty, or not decodable audio."""

    kind = "upload_unreadable"


class TrimEngineFailure(ChorusError):
    """The media engine failed while trimming an upload."""

    kind = "trim_engine_failure"


class TrimResultDegenerate(ChorusError):
    """Trimming produced an empty or too-small recording."""

    kind = "trim_result_degenerate"


class ProbeFailure(ChorusError):
    """A structural probe could not be completed for one clip."""

    kind = "probe_failure"


class CompositionEngineFailure(ChorusError):
    """The media engine failed while composing a playback stream."""

    kind = "composition_engine_failure"


class NoEligibleClips(ChorusError):
    """The catalog holds nothing playable yet. Not a server error."""

    kind = "no_eligible_clips"


class StoreIOFailure(ChorusError):
    """The clip store could not be read or written."""

    kind = "store_io_failure"


class EngineError(Exception):
    """Raised by the engine adapter when a process exits non-zero."""

    def __init__(self, returncode: int | None, stderr_tail: str = "") -> None:
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(f"engine exited with {returncode}: {stderr_tail[-300:]}")
