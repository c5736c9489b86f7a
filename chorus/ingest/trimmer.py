"""CHORUS Silence Trimmer — normalize one fresh upload.

Chain: silenceremove → areverse → silenceremove → areverse, encoded to the
canonical output format. Stripping from the start twice, with the signal
reversed in between, trims both ends using one primitive.

A recording that is silence throughout trims down to (almost) nothing;
that is caught by the byte-size floor and rejected, never published.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from chorus.engine.ffmpeg import MediaEngine, ProbeResult
from chorus.engine.graph import InputSpec, Invocation, OutputFormat, silence_trim_chain
from chorus.errors import (
    EngineError,
    ProbeFailure,
    TrimEngineFailure,
    TrimResultDegenerate,
    UploadUnreadable,
)

logger = structlog.get_logger()


# ── Profiles ─────────────────────────────────────────────


@dataclass(frozen=True)
class TrimProfile:
    """Per-source trimming parameters, picked from the declared extension.

    Upload temp files carry no extension, so the profile also supplies the
    demuxer hint ffmpeg would otherwise guess from the filename.
    """

    demuxer: str | None = None
    threshold: float | None = None  # None → trimmer default
    min_silence_s: float | None = None


DEFAULT_PROFILE = TrimProfile()

TRIM_PROFILES: dict[str, TrimProfile] = {
    # Browser MediaRecorder output (Chrome, Firefox)
    ".webm": TrimProfile(demuxer="matroska"),
    ".mkv": TrimProfile(demuxer="matroska"),
    ".ogg": TrimProfile(demuxer="ogg"),
    ".opus": TrimProfile(demuxer="ogg"),
    # Safari records AAC in an MP4 container
    ".m4a": TrimProfile(demuxer="mov"),
    ".mp4": TrimProfile(demuxer="mov"),
    ".aac": TrimProfile(demuxer="aac"),
    ".mp3": TrimProfile(demuxer="mp3"),
    ".flac": TrimProfile(demuxer="flac"),
    # Uncompressed uploads keep their noise floor; trim a little harder
    ".wav": TrimProfile(demuxer="wav", threshold=0.025),
}


def profile_for(filename: str | None) -> TrimProfile:
    """Look up the trimming profile for a caller-declared filename."""
    if not filename:
        return DEFAULT_PROFILE
    return TRIM_PROFILES.get(Path(filename).suffix.lower(), DEFAULT_PROFILE)


@dataclass(frozen=True)
class TrimResult:
    """A trimmed, canonical-codec recording ready to publish."""

    output: Path
    size_bytes: int
    source_duration_s: float | None


# ── Trimmer ──────────────────────────────────────────────


class SilenceTrimmer:
    """Strip leading/trailing near-silence and transcode to the canonical codec."""

    def __init__(
        self,
        engine: MediaEngine,
        output: OutputFormat | None = None,
        min_clip_bytes: int = 400,
        min_clip_duration_s: float = 0.25,
        threshold: float = 0.02,
        min_silence_s: float = 1.0,
    ) -> None:
        self.engine = engine
        self.output = output or OutputFormat()
        self.min_clip_bytes = min_clip_bytes
        self.min_clip_duration_s = min_clip_duration_s
        self.threshold = threshold
        self.min_silence_s = min_silence_s

    @classmethod
    def from_settings(cls, settings: Any, engine: MediaEngine) -> SilenceTrimmer:
        return cls(
            engine,
            output=OutputFormat.from_settings(settings),
            min_clip_bytes=settings.min_clip_bytes,
            min_clip_duration_s=settings.min_clip_duration_s,
            threshold=settings.silence_threshold,
            min_silence_s=settings.silence_min_duration_s,
        )

    async def _probe_source(
        self, source: Path, profile: TrimProfile
    ) -> tuple[ProbeResult, str | None]:
        """Probe with the profile's demuxer, then let ffmpeg guess if that fails."""
        try:
            result = await self.engine.probe(source, profile.demuxer)
            if result.playable or profile.demuxer is None:
                return result, profile.demuxer
            return await self.engine.probe(source, None), None
        except ProbeFailure as e:
            raise TrimEngineFailure(f"could not inspect upload: {e.message}") from e

    async def _check_trimmed_duration(self, target: Path) -> None:
        # An all-silent input still flushes a few encoder padding frames.
        try:
            result = await self.engine.probe(target, self.output.container)
        except ProbeFailure as e:
            raise TrimEngineFailure(f"could not inspect trimmed output: {e.message}") from e
        if not result.playable:
            raise TrimResultDegenerate("recording was empty/too small after trimming")
        if result.duration_s is not None and result.duration_s < self.min_clip_duration_s:
            raise TrimResultDegenerate(
                f"recording was empty/too small after trimming ({result.duration_s:.2f}s)"
            )

    async def trim(self, source: Path, filename: str | None, target: Path) -> TrimResult:
        """Trim ``source`` into ``target``.

        The source is always deleted. The target exists afterwards only if
        trimming succeeded.
        """
        profile = profile_for(filename)
        try:
            try:
                if source.stat().st_size == 0:
                    raise UploadUnreadable("upload is empty")
            except FileNotFoundError:
                raise UploadUnreadable("upload is missing") from None

            probe, demuxer = await self._probe_source(source, profile)
            if not probe.decodable:
                raise UploadUnreadable("upload is not decodable audio")
            if not probe.has_audio_stream:
                raise UploadUnreadable("upload has no audio stream")

            chain = silence_trim_chain(
                threshold=profile.threshold or self.threshold,
                min_duration_s=profile.min_silence_s or self.min_silence_s,
            )
            invocation = Invocation(
                inputs=(InputSpec(source, ("-f", demuxer) if demuxer else ()),),
                output=self.output,
                target=str(target),
                audio_filter=chain,
            )
            try:
                await self.engine.run(invocation)
            except EngineError as e:
                raise TrimEngineFailure(f"trim failed (exit {e.returncode})") from e

            size = target.stat().st_size if target.exists() else 0
            if size <= self.min_clip_bytes:
                raise TrimResultDegenerate(
                    f"recording was empty/too small after trimming ({size} bytes)"
                )
            await self._check_trimmed_duration(target)
        except BaseException:
            target.unlink(missing_ok=True)
            raise
        finally:
            source.unlink(missing_ok=True)

        logger.info(
            "trim.complete",
            filename=filename,
            size_bytes=size,
            source_duration_s=probe.duration_s,
        )
        return TrimResult(output=target, size_bytes=size, source_duration_s=probe.duration_s)
