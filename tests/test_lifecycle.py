"""Tests for composition job lifecycle and cleanup."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import pytest
from conftest import FakeEngine, FakeProcess

from chorus.engine.graph import InputSpec, Invocation, OutputFormat
from chorus.errors import CompositionEngineFailure
from chorus.playback.lifecycle import CompositionJob, JobState

INVOCATION = Invocation(inputs=(InputSpec(Path("a.mp3")),), output=OutputFormat())


def _workdir() -> Path:
    return Path(tempfile.mkdtemp(prefix="chorus_test_job_"))


async def _drain(job: CompositionJob) -> bytes:
    return b"".join([chunk async for chunk in job.stream()])


def test_completed_job_streams_everything_and_cleans_up() -> None:
    workdir = _workdir()
    process = FakeProcess([b"abc", b"def"])
    job = CompositionJob(FakeEngine(process), INVOCATION, workdir=workdir)

    async def run() -> bytes:
        await job.start()
        assert job.state is JobState.STREAMING
        return await _drain(job)

    assert asyncio.run(run()) == b"abcdef"
    assert job.state is JobState.COMPLETED
    assert job.bytes_sent == 6
    assert not workdir.exists()


def test_stream_starts_an_idle_job() -> None:
    job = CompositionJob(FakeEngine(FakeProcess([b"xy"])), INVOCATION)
    assert asyncio.run(_drain(job)) == b"xy"
    assert job.state is JobState.COMPLETED


def test_failure_before_first_byte_raises() -> None:
    workdir = _workdir()
    job = CompositionJob(FakeEngine(FakeProcess([], returncode=1)), INVOCATION, workdir=workdir)

    with pytest.raises(CompositionEngineFailure, match="no output"):
        asyncio.run(job.start())

    assert job.state is JobState.FAILED
    assert not workdir.exists()


def test_spawn_failure_raises() -> None:
    job = CompositionJob(FakeEngine(process=None), INVOCATION)

    with pytest.raises(CompositionEngineFailure, match="could not start"):
        asyncio.run(job.start())
    assert job.state is JobState.FAILED


def test_failure_mid_stream_ends_stream_without_raising() -> None:
    workdir = _workdir()
    job = CompositionJob(
        FakeEngine(FakeProcess([b"partial"], returncode=1)), INVOCATION, workdir=workdir
    )

    assert asyncio.run(_drain(job)) == b"partial"
    assert job.state is JobState.FAILED
    assert not workdir.exists()


def test_consumer_leaving_cancels_and_kills() -> None:
    workdir = _workdir()
    process = FakeProcess([b"one", b"two", b"three"], hang=True)
    job = CompositionJob(FakeEngine(process), INVOCATION, workdir=workdir)

    async def read_one_then_leave() -> None:
        stream = job.stream()
        assert await anext(stream) == b"one"
        await stream.aclose()

    asyncio.run(read_one_then_leave())
    assert job.state is JobState.CANCELLED
    assert process.killed
    assert process.returncode is not None
    assert not workdir.exists()


def test_cancel_is_idempotent_and_final() -> None:
    process = FakeProcess([b"data"], hang=True)
    job = CompositionJob(FakeEngine(process), INVOCATION)

    async def run() -> None:
        await job.start()
        await job.cancel()
        await job.cancel()

    asyncio.run(run())
    assert job.state is JobState.CANCELLED
    assert job.done
    assert process.killed


def test_cancel_before_start_leaves_nothing() -> None:
    workdir = _workdir()
    job = CompositionJob(FakeEngine(), INVOCATION, workdir=workdir)

    asyncio.run(job.cancel())
    assert job.state is JobState.CANCELLED
    assert not workdir.exists()


def test_timeout_fails_the_job() -> None:
    process = FakeProcess([b"first"], hang=True)
    job = CompositionJob(FakeEngine(process), INVOCATION, timeout_s=0.05)

    assert asyncio.run(_drain(job)) == b"first"
    assert job.state is JobState.FAILED
    assert process.killed


def test_slow_consumer_is_not_charged_to_the_engine() -> None:
    process = FakeProcess([b"a", b"b", b"c", b"d", b"e"])
    job = CompositionJob(FakeEngine(process), INVOCATION, timeout_s=0.25)

    async def listen_slowly() -> bytes:
        received = b""
        async for chunk in job.stream():
            received += chunk
            await asyncio.sleep(0.1)
        return received

    assert asyncio.run(listen_slowly()) == b"abcde"
    assert job.state is JobState.COMPLETED
    assert not process.killed


def test_start_twice_is_an_error() -> None:
    job = CompositionJob(FakeEngine(FakeProcess([b"a"])), INVOCATION)

    async def run() -> None:
        await job.start()
        try:
            with pytest.raises(RuntimeError):
                await job.start()
        finally:
            await job.cancel()

    asyncio.run(run())
