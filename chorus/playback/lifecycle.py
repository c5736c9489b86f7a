"""CHORUS Lifecycle — one composition job, from spawn to cleanup.

State machine:
    IDLE → STARTING → STREAMING → COMPLETED | FAILED | CANCELLED

  STARTING   engine spawned, nothing sent yet. A failure here can still
             become an HTTP 500.
  STREAMING  first bytes are out, headers are committed. A failure now
             can only end the stream early; it is logged.
  CANCELLED  the consumer went away. The engine is killed, not just
             disconnected from its pipe.

Every terminal state goes through the same _finalize(): kill the engine
if it is still alive, remove the job's temp directory, reap the process.
"""

from __future__ import annotations

import asyncio
import shutil
import time
import uuid
from collections.abc import AsyncIterator
from enum import StrEnum
from pathlib import Path

import structlog

from chorus.engine.ffmpeg import EngineProcess, MediaEngine
from chorus.engine.graph import Invocation
from chorus.errors import CompositionEngineFailure, EngineError

logger = structlog.get_logger()


class JobState(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})


class CompositionJob:
    """Owns one engine process and its temp artifacts for one response."""

    def __init__(
        self,
        engine: MediaEngine,
        invocation: Invocation,
        workdir: Path | None = None,
        chunk_size: int = 64 * 1024,
        timeout_s: float | None = None,
        label: str = "",
    ) -> None:
        self.engine = engine
        self.invocation = invocation
        self.workdir = workdir
        self.chunk_size = chunk_size
        self.timeout_s = timeout_s
        self.label = label
        self.job_id = uuid.uuid4().hex[:8]
        self.state = JobState.IDLE
        self.bytes_sent = 0
        self.process: EngineProcess | None = None
        self._first_chunk = b""
        self._engine_wait_s = 0.0
        self._finalized = False

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    # ── Reading ──

    async def _read_chunk(self) -> bytes:
        """Read one chunk, charging only the wait on the engine to the time budget.

        Time spent suspended at a yield belongs to the consumer; a listener
        reading at playback speed never uses up the budget.
        """
        assert self.process is not None
        if not self.timeout_s:
            return await self.process.read(self.chunk_size)
        remaining = self.timeout_s - self._engine_wait_s
        if remaining <= 0:
            raise CompositionEngineFailure(f"engine time exceeded {self.timeout_s}s")
        started = time.monotonic()
        try:
            return await asyncio.wait_for(self.process.read(self.chunk_size), remaining)
        except TimeoutError:
            raise CompositionEngineFailure(f"engine time exceeded {self.timeout_s}s") from None
        finally:
            self._engine_wait_s += time.monotonic() - started

    # ── Transitions ──

    async def start(self) -> None:
        """Spawn the engine and wait for its first output bytes.

        Raises CompositionEngineFailure if the engine fails before producing
        anything; the job is already cleaned up when that happens.
        """
        if self.state is not JobState.IDLE:
            raise RuntimeError(f"Job {self.job_id} already {self.state}")
        self.state = JobState.STARTING

        try:
            try:
                self.process = await self.engine.spawn(self.invocation)
            except EngineError as e:
                raise CompositionEngineFailure(f"could not start engine: {e}") from e

            first = await self._read_chunk()
            if not first:
                code = await self.process.wait()
                raise CompositionEngineFailure(
                    f"engine produced no output (exit {code}): {self.process.stderr_tail[-300:]}"
                )
        except CompositionEngineFailure:
            await self._finalize(JobState.FAILED)
            raise
        except BaseException:
            await self._finalize(JobState.CANCELLED)
            raise

        self._first_chunk = first
        self.state = JobState.STREAMING
        logger.info(
            "composition.streaming",
            job_id=self.job_id,
            label=self.label,
            pid=self.process.pid,
        )

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield output chunks until the engine finishes or the consumer leaves."""
        if self.state is JobState.IDLE:
            await self.start()
        if self.state is not JobState.STREAMING:
            raise RuntimeError(f"Job {self.job_id} cannot stream from {self.state}")
        assert self.process is not None

        outcome = JobState.CANCELLED
        try:
            chunk, self._first_chunk = self._first_chunk, b""
            while chunk:
                yield chunk
                self.bytes_sent += len(chunk)
                chunk = await self._read_chunk()

            code = await self.process.wait()
            if code == 0:
                outcome = JobState.COMPLETED
            else:
                outcome = JobState.FAILED
                logger.error(
                    "composition.failed_mid_stream",
                    job_id=self.job_id,
                    returncode=code,
                    bytes_sent=self.bytes_sent,
                    stderr=self.process.stderr_tail,
                )
        except CompositionEngineFailure as e:
            outcome = JobState.FAILED
            logger.error(
                "composition.failed_mid_stream",
                job_id=self.job_id,
                error=e.message,
                bytes_sent=self.bytes_sent,
            )
        finally:
            await self._finalize(outcome)

    async def cancel(self) -> None:
        """Tear the job down now. Safe to call at any time, any number of times."""
        await self._finalize(JobState.CANCELLED)

    # ── Cleanup ──

    async def _finalize(self, outcome: JobState) -> None:
        if self._finalized:
            return
        self._finalized = True

        process = self.process
        if process is not None:
            process.kill()
        if self.workdir is not None:
            shutil.rmtree(self.workdir, ignore_errors=True)
        self.state = outcome

        log = logger.error if outcome is JobState.FAILED else logger.info
        log(
            "composition.finished",
            job_id=self.job_id,
            label=self.label,
            state=outcome.value,
            bytes_sent=self.bytes_sent,
        )

        if process is not None:
            # reaping survives a cancelled caller
            await asyncio.shield(process.wait())
