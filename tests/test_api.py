"""Tests for the CHORUS API — health, upload, catalog, playback and reset."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest
from conftest import FakeEngine, FakeProcess, RecordingEngine, write_silence, write_tone
from fastapi.testclient import TestClient
from starlette.requests import ClientDisconnect

from chorus.api.routes.playback import JobStreamingResponse
from chorus.api.server import app
from chorus.api.services import Services, build_services, get_services
from chorus.config import Settings
from chorus.engine.graph import InputSpec, Invocation, OutputFormat
from chorus.playback.lifecycle import CompositionJob, JobState

SECRET = "test-reset-secret"
INVOCATION = Invocation(inputs=(InputSpec(Path("a.mp3")),), output=OutputFormat())


# ── Helpers ──────────────────────────────────────────────


def _make_client(
    tmp_path: Path, engine: object = None, **overrides: object
) -> Iterator[tuple[TestClient, Services]]:
    values: dict[str, object] = {"clips_dir": tmp_path / "clips", "reset_secret": SECRET}
    values.update(overrides)
    cfg = Settings(**values)
    services = build_services(cfg, engine=engine)  # type: ignore[arg-type]
    app.dependency_overrides[get_services] = lambda: services
    try:
        with TestClient(app) as client:
            yield client, services
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api(tmp_path: Path) -> Iterator[tuple[TestClient, Services]]:
    yield from _make_client(tmp_path)


@pytest.fixture
def write_time_api(tmp_path: Path) -> Iterator[tuple[TestClient, Services]]:
    yield from _make_client(tmp_path, composition_mode="write_time")


def _upload(client: TestClient, wav: Path, filename: str = "recording.wav"):
    return client.post(
        "/api/upload",
        files={"audio": (filename, wav.read_bytes(), "audio/wav")},
    )


def _upload_tones(client: TestClient, tmp_path: Path, n: int) -> list[str]:
    ids = []
    for i in range(n):
        wav = write_tone(tmp_path / f"take{i}.wav", tone_s=1.5, lead_silence_s=0.5,
                         freq=220.0 * (i + 1))
        response = _upload(client, wav)
        assert response.status_code == 200, response.text
        ids.append(response.json()["clip"]["id"])
    return ids


# ── Health & Info ────────────────────────────────────────


def test_health_check(api) -> None:
    client, _ = api
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "chorus"}


def test_info(api) -> None:
    from chorus import __version__

    client, _ = api
    data = client.get("/api/info").json()
    assert data["version"] == __version__
    assert data["composition_mode"] == "read_time"
    assert "special" in data["orders"]


# ── Upload ───────────────────────────────────────────────


def test_upload_tone_is_published(api, tmp_path: Path) -> None:
    client, services = api
    response = _upload(client, write_tone(tmp_path / "t.wav", lead_silence_s=1.5))

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "processed"
    assert data["mode"] == "read_time"
    assert data["clip"]["size_bytes"] > 400
    assert [c.id for c in services.store.list_clips()] == [data["clip"]["id"]]


def test_upload_silence_is_rejected(api, tmp_path: Path) -> None:
    client, services = api
    response = _upload(client, write_silence(tmp_path / "quiet.wav"))

    assert response.status_code == 422
    assert response.json()["kind"] == "trim_result_degenerate"
    assert services.store.list_clips() == []
    assert list(services.store.root.iterdir()) == []


def test_upload_garbage_is_rejected(api) -> None:
    client, services = api
    response = client.post(
        "/api/upload",
        files={"audio": ("recording.webm", b"definitely not audio" * 50, "audio/webm")},
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "upload_unreadable"
    assert services.store.list_clips() == []


def test_upload_requires_a_file(api) -> None:
    client, _ = api
    assert client.post("/api/upload").status_code == 422


def test_clips_listing(api, tmp_path: Path) -> None:
    client, _ = api
    ids = _upload_tones(client, tmp_path, 2)

    listed = client.get("/api/clips").json()
    assert [c["id"] for c in listed] == ids
    assert all(c["size_bytes"] > 400 for c in listed)


# ── Playback ─────────────────────────────────────────────


def test_empty_catalog_is_no_content(api) -> None:
    client, _ = api
    response = client.get("/api/master_drone")
    assert response.status_code == 204
    assert response.content == b""


def test_single_clip_is_served_unchanged(api, tmp_path: Path) -> None:
    client, services = api
    _upload_tones(client, tmp_path, 1)
    clip = services.store.list_clips()[0]

    response = client.get("/api/master_drone")
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == clip.path.read_bytes()


@pytest.mark.parametrize("mode", ["sequential", "simultaneous"])
def test_many_clips_stream_as_one(api, tmp_path: Path, mode: str) -> None:
    client, _ = api
    _upload_tones(client, tmp_path, 3)

    response = client.get("/api/master_drone", params={"mode": mode})
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.headers["cache-control"] == "no-store"
    assert len(response.content) > 400
    # MPEG audio frame sync
    assert response.content[0] == 0xFF


def test_special_order_with_seeds(api, tmp_path: Path) -> None:
    client, _ = api
    _upload_tones(client, tmp_path, 3)

    for seed in (1, 2):
        response = client.get("/api/master_drone", params={"order": "special", "seed": seed})
        assert response.status_code == 200
        assert len(response.content) > 400


def test_unplayable_clips_are_skipped(api, tmp_path: Path) -> None:
    client, services = api
    _upload_tones(client, tmp_path, 1)
    (services.store.root / "9999999999999.mp3").write_bytes(b"\x00" * 100)
    good = services.store.list_clips()[0]

    response = client.get("/api/master_drone")
    assert response.status_code == 200
    assert response.content == good.path.read_bytes()


def test_stream_leaves_no_temp_directories(api, tmp_path: Path) -> None:
    client, services = api
    services.compositor.tmp_root = tmp_path / "jobs"
    services.compositor.tmp_root.mkdir()
    _upload_tones(client, tmp_path, 2)

    assert client.get("/api/master_drone").status_code == 200
    assert list(services.compositor.tmp_root.iterdir()) == []


SEEDED_IDS = ["1700000001000.mp3", "1700000002000.mp3", "1700000003000.mp3"]


def test_engine_receives_the_playlist_order(tmp_path: Path) -> None:
    engine = RecordingEngine()
    for client, services in _make_client(tmp_path, engine=engine):
        for clip_id in reversed(SEEDED_IDS):
            (services.store.root / clip_id).write_bytes(b"\xff" * 1000)

        assert client.get("/api/master_drone").status_code == 200
        assert engine.manifests[-1] == SEEDED_IDS

        for seed in (1, 2):
            response = client.get("/api/master_drone", params={"order": "special", "seed": seed})
            assert response.status_code == 200
            assert engine.manifests[-1][0] == SEEDED_IDS[-1]
            assert sorted(engine.manifests[-1]) == SEEDED_IDS


def test_client_disconnect_cancels_the_job() -> None:
    process = FakeProcess([b"one", b"two"], hang=True)
    job = CompositionJob(FakeEngine(process), INVOCATION)
    scope = {"type": "http", "asgi": {"spec_version": "2.4"}}

    async def receive() -> dict[str, object]:
        await asyncio.sleep(3600)
        return {"type": "http.disconnect"}

    async def send(message: dict[str, object]) -> None:
        if message["type"] == "http.response.body":
            raise OSError("connection reset")

    async def serve() -> None:
        await job.start()
        await JobStreamingResponse(job, "audio/mpeg")(scope, receive, send)

    with pytest.raises((OSError, ClientDisconnect)):
        asyncio.run(serve())
    assert job.state is JobState.CANCELLED
    assert process.killed


@pytest.mark.parametrize("params", [{"order": "random"}, {"mode": "stack"}, {"mode": "accumulate"}])
def test_bad_playback_parameters(api, params: dict[str, str]) -> None:
    client, _ = api
    assert client.get("/api/master_drone", params=params).status_code == 400


# ── Reset ────────────────────────────────────────────────


def test_reset_wrong_secret(api, tmp_path: Path) -> None:
    client, services = api
    _upload_tones(client, tmp_path, 1)

    response = client.post("/api/reset", json={"secret": "nope"})
    assert response.status_code == 403
    assert len(services.store.list_clips()) == 1


def test_reset_disabled_without_secret(tmp_path: Path) -> None:
    for client, _ in _make_client(tmp_path, reset_secret=""):
        response = client.post("/api/reset", json={"secret": ""})
        assert response.status_code == 403
        assert "disabled" in response.json()["detail"]


def test_reset_clears_everything(api, tmp_path: Path) -> None:
    client, services = api
    _upload_tones(client, tmp_path, 2)

    response = client.post("/api/reset", json={"secret": SECRET})
    assert response.status_code == 200
    assert response.text == "All recordings cleared (2 files removed)."
    assert services.store.list_clips() == []
    assert client.get("/api/master_drone").status_code == 204


# ── Write-time mode ──────────────────────────────────────


def test_write_time_serves_the_master(write_time_api, tmp_path: Path) -> None:
    client, services = write_time_api
    assert client.get("/api/master_drone").status_code == 204

    _upload_tones(client, tmp_path, 2)
    master = services.store.master()
    assert master is not None
    assert services.store.list_clips() == []

    response = client.get("/api/master_drone")
    assert response.status_code == 200
    assert response.content == master.path.read_bytes()
    assert client.get("/api/info").json()["composition_mode"] == "write_time"
