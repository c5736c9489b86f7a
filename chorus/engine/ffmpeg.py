"""CHORUS Engine — ffmpeg adapter behind a narrow async contract.

The core only needs three things from the media engine:
  probe(path)        → ProbeResult (decodable? audio stream? duration?)
  run(invocation)    → transform to a file, raise EngineError on failure
  spawn(invocation)  → transform to stdout as a killable EngineProcess

Every call is one OS process started with asyncio, so a request waiting
on the engine never blocks other requests.
"""

from __future__ import annotations

import asyncio
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import structlog

from chorus.engine.graph import Invocation
from chorus.errors import EngineError, ProbeFailure

logger = structlog.get_logger()

_AUDIO_STREAM = re.compile(r"Stream #\d+:\d+.*?: Audio: ")
_DURATION = re.compile(r"Duration: (\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_STDERR_TAIL_LINES = 40


# ── Types ────────────────────────────────────────────────


@dataclass(frozen=True)
class ProbeResult:
    """Structural facts about one media file."""

    decodable: bool
    has_audio_stream: bool
    duration_s: float | None = None

    @property
    def playable(self) -> bool:
        return self.decodable and self.has_audio_stream


class EngineProcess(Protocol):
    """A running transform whose output is read incrementally."""

    pid: int | None

    @property
    def returncode(self) -> int | None: ...

    @property
    def stderr_tail(self) -> str: ...

    async def read(self, n: int) -> bytes: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


class MediaEngine(Protocol):
    """What the core requires from a media-processing engine."""

    async def probe(self, path: Path, input_format: str | None = None) -> ProbeResult: ...

    async def run(self, invocation: Invocation) -> None: ...

    async def spawn(self, invocation: Invocation) -> EngineProcess: ...


# ── Helpers ──────────────────────────────────────────────


def resolve_binary(configured: str = "") -> str:
    """Configured ffmpeg path, or the one bundled with imageio-ffmpeg."""
    if configured:
        return configured
    import imageio_ffmpeg

    return imageio_ffmpeg.get_ffmpeg_exe()


def parse_probe_output(returncode: int | None, stderr: str) -> ProbeResult:
    """Interpret the input description ffmpeg prints while decoding."""
    duration: float | None = None
    match = _DURATION.search(stderr)
    if match:
        hours, minutes, seconds = match.groups()
        duration = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return ProbeResult(
        decodable=returncode == 0,
        has_audio_stream=bool(_AUDIO_STREAM.search(stderr)),
        duration_s=duration,
    )


# ── Process ──────────────────────────────────────────────


class FFmpegProcess:
    """One live ffmpeg child writing to a pipe."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc
        self.pid: int | None = proc.pid
        self._stderr: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        # stderr must be drained or the child can stall on a full pipe
        self._drain = asyncio.create_task(self._drain_stderr())

    async def _drain_stderr(self) -> None:
        stream = self._proc.stderr
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            self._stderr.append(line.decode("utf-8", errors="replace").rstrip())

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr)

    async def read(self, n: int) -> bytes:
        assert self._proc.stdout is not None
        return await self._proc.stdout.read(n)

    def kill(self) -> None:
        if self._proc.returncode is not None:
            return
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        code = await self._proc.wait()
        await self._drain
        return code


# ── Engine ───────────────────────────────────────────────


class FFmpegEngine:
    """MediaEngine backed by a single ffmpeg binary."""

    def __init__(self, binary: str | None = None, probe_timeout_s: float = 30.0) -> None:
        self.binary = binary or resolve_binary()
        self.probe_timeout_s = probe_timeout_s

    @classmethod
    def from_settings(cls, settings: Any) -> FFmpegEngine:
        return cls(
            binary=resolve_binary(settings.ffmpeg_binary),
            probe_timeout_s=settings.probe_timeout_s,
        )

    async def probe(self, path: Path, input_format: str | None = None) -> ProbeResult:
        """Decode up to one second to the null muxer and read what ffmpeg reports."""
        cmd = [self.binary, "-hide_banner", "-nostdin"]
        if input_format:
            cmd.extend(["-f", input_format])
        cmd.extend(["-i", str(path), "-t", "1", "-f", "null", "-"])

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProbeFailure(f"could not start engine: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.probe_timeout_s
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProbeFailure(f"probe timed out after {self.probe_timeout_s}s: {path}") from None
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        return parse_probe_output(proc.returncode, stderr.decode("utf-8", errors="replace"))

    async def run(self, invocation: Invocation) -> None:
        """Run a transform to completion. Raises EngineError on non-zero exit."""
        cmd = invocation.argv(self.binary)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineError(None, str(e)) from e

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-2000:]
            logger.warning("engine.run.failed", returncode=proc.returncode, stderr=tail)
            raise EngineError(proc.returncode, tail)

    async def spawn(self, invocation: Invocation) -> FFmpegProcess:
        """Start a transform writing to stdout."""
        cmd = invocation.argv(self.binary)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineError(None, str(e)) from e
        logger.debug("engine.spawned", pid=proc.pid, inputs=len(invocation.inputs))
        return FFmpegProcess(proc)
