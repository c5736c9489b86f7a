"""Shared fixtures for CHORUS tests.

Audio fixtures are synthesized with numpy and written with soundfile.
The real engine uses the ffmpeg binary bundled with imageio-ffmpeg.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from chorus.catalog.store import ClipStore
from chorus.engine.ffmpeg import FFmpegEngine, ProbeResult
from chorus.errors import EngineError, ProbeFailure

SR = 44100


def write_tone(
    path: Path,
    tone_s: float = 2.0,
    lead_silence_s: float = 0.0,
    trail_silence_s: float = 0.0,
    freq: float = 440.0,
    amplitude: float = 0.5,
    sr: int = SR,
) -> Path:
    """Write a mono sine tone padded with digital silence."""
    t = np.arange(int(sr * tone_s)) / sr
    tone = amplitude * np.sin(2 * np.pi * freq * t)
    audio = np.concatenate([
        np.zeros(int(sr * lead_silence_s)),
        tone,
        np.zeros(int(sr * trail_silence_s)),
    ])
    sf.write(str(path), audio.astype(np.float32), sr, subtype="PCM_16")
    return path


def write_silence(path: Path, duration_s: float = 3.0, sr: int = SR) -> Path:
    sf.write(str(path), np.zeros(int(sr * duration_s), dtype=np.float32), sr, subtype="PCM_16")
    return path


# ── Fakes ────────────────────────────────────────────────


class FakeProcess:
    """Scripted stand-in for a running engine process."""

    def __init__(
        self,
        chunks: list[bytes],
        returncode: int = 0,
        hang: bool = False,
    ) -> None:
        self.pid = 4242
        self._chunks = list(chunks)
        self._final_code = returncode
        self._hang = hang
        self.returncode: int | None = None
        self.killed = False
        self.stderr_tail = "fake stderr"

    async def read(self, n: int) -> bytes:
        if self.killed:
            return b""
        if self._chunks:
            return self._chunks.pop(0)
        if self._hang:
            await asyncio.sleep(3600)
        return b""

    def kill(self) -> None:
        if self.returncode is None:
            self.killed = True
            self.returncode = -9

    async def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._final_code
        return self.returncode


class FakeEngine:
    """MediaEngine double: scripted probes, runs and spawns."""

    def __init__(
        self,
        process: FakeProcess | None = None,
        probes: dict[str, ProbeResult | Exception] | None = None,
        run_error: EngineError | None = None,
    ) -> None:
        self.process = process
        self.probes = probes or {}
        self.run_error = run_error
        self.spawned: list[object] = []
        self.ran: list[object] = []

    async def probe(self, path: Path, input_format: str | None = None) -> ProbeResult:
        result = self.probes.get(Path(path).name, ProbeResult(True, True, 2.0))
        if isinstance(result, Exception):
            raise result
        return result

    async def run(self, invocation: object) -> None:
        self.ran.append(invocation)
        if self.run_error is not None:
            raise self.run_error

    async def spawn(self, invocation: object) -> FakeProcess:
        self.spawned.append(invocation)
        if self.process is None:
            raise EngineError(None, "no process scripted")
        return self.process


def manifest_order(invocation: object) -> list[str]:
    """Clip ids listed in a sequential invocation's ffconcat manifest."""
    manifest = invocation.inputs[0].path  # type: ignore[attr-defined]
    lines = manifest.read_text(encoding="utf-8").splitlines()[1:]
    return [Path(line[len("file '"):-1]).name for line in lines]


class RecordingEngine(FakeEngine):
    """Records the manifest order of every spawned composition."""

    def __init__(self) -> None:
        super().__init__()
        self.manifests: list[list[str]] = []

    async def spawn(self, invocation: object) -> FakeProcess:
        self.spawned.append(invocation)
        self.manifests.append(manifest_order(invocation))
        return FakeProcess([b"\xff\xfb" + b"\x00" * 510])


# ── Fixtures ─────────────────────────────────────────────


@pytest.fixture
def engine() -> FFmpegEngine:
    return FFmpegEngine()


@pytest.fixture
def store(tmp_path: Path) -> ClipStore:
    return ClipStore(tmp_path / "clips")


@pytest.fixture
def tone(tmp_path: Path) -> Callable[..., Path]:
    """Factory: tone(name, **kwargs) → path of a fresh WAV in tmp_path."""
    def _make(name: str = "tone.wav", **kwargs: float) -> Path:
        return write_tone(tmp_path / name, **kwargs)
    return _make


@pytest.fixture
def probe_failure() -> ProbeFailure:
    return ProbeFailure("probe exploded")
