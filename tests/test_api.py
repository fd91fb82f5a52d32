"""
Tests for the HTTP trigger API (FastAPI TestClient).
"""

import base64
import os

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import get_settings
from app.errors import NoSegments
from app.routers import audio, health, pipeline
from app.services.segment_synthesizer import VisualMode
from app.services.stage_runner import StageRunner


@pytest.fixture
def signal(mocker):
    mock = mocker.MagicMock()
    mock.mark_done = mocker.AsyncMock()
    return mock


@pytest.fixture
def services(mocker):
    mock = mocker.MagicMock()
    mock.synthesizer.synthesize = mocker.AsyncMock(return_value="/s/vid1/vid1_segment_3.mp4")
    mock.durations.extract = mocker.AsyncMock(return_value=6.04)
    mock.concatenator.concat = mocker.AsyncMock(return_value="/s/vid1/vid1.mp4")
    mock.post_processor.overlay_background = mocker.AsyncMock(return_value="/s/vid1/vid1.mp4")
    mock.post_processor.mix_bgm = mocker.AsyncMock(return_value="/s/vid1/vid1.mp4")
    mock.post_processor.append_ending = mocker.AsyncMock(return_value="/s/vid1/vid1.mp4")
    mock.uploader.upload_final = mocker.AsyncMock(return_value="http://storage.test/projects/vid1/vid1.mp4")
    return mock


@pytest.fixture
def client(signal, services, mocker):
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(pipeline.router)
    app.include_router(audio.router)
    app.state.stage_runner = StageRunner(max_concurrent=2, signal=signal, webhooks=mocker.MagicMock())
    app.state.pipeline_services = services
    return TestClient(app)


class TestSegmentTrigger:
    """Tests for POST /pipeline/segments."""

    def test_accepts_and_runs_in_background(self, client, services, signal):
        response = client.post(
            "/pipeline/segments",
            json={"video_id": "vid1", "segment_id": "segment_3", "speaker": "Mia"},
        )

        assert response.status_code == 202
        assert response.json()["unit"] == "segment_3"

        request = services.synthesizer.synthesize.await_args.args[0]
        assert request.video_id == "vid1"
        assert request.resolve_mode() == VisualMode.SLIDE_OVER_TEMPLATE
        signal.mark_done.assert_awaited_once_with("vid1", "segment_3")

    def test_explicit_mode(self, client, services):
        response = client.post(
            "/pipeline/segments",
            json={"video_id": "vid1", "segment_id": "segment_1", "speaker": "Yu", "mode": "template"},
        )

        assert response.status_code == 202
        assert services.synthesizer.synthesize.await_args.args[0].mode == VisualMode.TEMPLATE

    @pytest.mark.parametrize(
        "body",
        [
            {"video_id": "../etc", "segment_id": "segment_1"},
            {"video_id": "vid1", "segment_id": "slide1"},
            {"video_id": "vid1", "segment_id": "segment_1", "topic_id": "a/b"},
            {"video_id": "vid1", "segment_id": "segment_1", "mode": "fancy"},
            {"segment_id": "segment_1"},
        ],
    )
    def test_invalid_requests_rejected(self, client, services, body):
        response = client.post("/pipeline/segments", json=body)

        assert response.status_code == 422
        services.synthesizer.synthesize.assert_not_awaited()

    def test_topic_mode_without_topic(self, client):
        response = client.post(
            "/pipeline/segments",
            json={"video_id": "vid1", "segment_id": "segment_1", "mode": "slide_over_topic"},
        )
        assert response.status_code == 400

    def test_duration_trigger(self, client, services, signal):
        response = client.post("/pipeline/segments/duration", json={"video_id": "vid1", "segment_id": "segment_2"})

        assert response.status_code == 202
        services.durations.extract.assert_awaited_once_with("vid1", "segment_2")
        signal.mark_done.assert_awaited_once_with("vid1", "duration/segment_2")


class TestJobStages:
    """Tests for concat, post-processing and upload triggers."""

    def test_concat(self, client, services, signal):
        response = client.post("/pipeline/concat", json={"video_id": "vid1", "policy": "lenient"})

        assert response.status_code == 202
        services.concatenator.concat.assert_awaited_once_with("vid1", policy="lenient")
        signal.mark_done.assert_awaited_once_with("vid1", "concat")

    def test_post_processing_stages(self, client, services, signal):
        assert client.post("/pipeline/background", json={"video_id": "vid1"}).status_code == 202
        assert client.post("/pipeline/bgm", json={"video_id": "vid1", "fade_seconds": 5}).status_code == 202
        assert client.post("/pipeline/ending", json={"video_id": "vid1", "crossfade": True}).status_code == 202

        services.post_processor.overlay_background.assert_awaited_once_with("vid1", template_key=None)
        services.post_processor.mix_bgm.assert_awaited_once_with("vid1", template_key=None, fade_seconds=5)
        services.post_processor.append_ending.assert_awaited_once_with("vid1", crossfade=True)
        units = [c.args[1] for c in signal.mark_done.await_args_list]
        assert units == ["background", "bgm", "ending"]

    def test_upload(self, client, services, signal):
        response = client.post("/pipeline/upload", json={"video_id": "vid1"})

        assert response.status_code == 202
        services.uploader.upload_final.assert_awaited_once_with("vid1")
        signal.mark_done.assert_awaited_once_with("vid1", "upload")

    def test_failed_stage_has_no_marker(self, client, services, signal):
        services.concatenator.concat.side_effect = NoSegments("vid1")

        response = client.post("/pipeline/concat", json={"video_id": "vid1"})

        assert response.status_code == 202
        signal.mark_done.assert_not_awaited()

        status = client.get("/pipeline/jobs/vid1").json()
        assert status["stages"][0]["status"] == "failed"
        assert "No segment files" in status["stages"][0]["error"]


class TestJobStatus:
    """Tests for GET /pipeline/jobs/{video_id}."""

    def test_unknown_job(self, client):
        assert client.get("/pipeline/jobs/nothing").status_code == 404

    def test_completed_stages(self, client):
        client.post("/pipeline/segments", json={"video_id": "vid1", "segment_id": "segment_0"})
        client.post("/pipeline/concat", json={"video_id": "vid1"})

        body = client.get("/pipeline/jobs/vid1").json()

        assert body["video_id"] == "vid1"
        assert [(s["unit"], s["status"]) for s in body["stages"]] == [
            ("segment_0", "completed"),
            ("concat", "completed"),
        ]
        assert body["stages"][1]["output"] == {"final_path": "/s/vid1/vid1.mp4"}

    def test_uninitialized_app(self):
        app = FastAPI()
        app.include_router(pipeline.router)
        response = TestClient(app).post("/pipeline/concat", json={"video_id": "vid1"})
        assert response.status_code == 503


class TestAuth:
    """Tests for the optional API key."""

    def test_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setenv("ASSEMBLER_API_KEY", "k3y")
        get_settings.cache_clear()

        assert client.post("/pipeline/upload", json={"video_id": "vid1"}).status_code == 401
        assert client.post(
            "/pipeline/upload", json={"video_id": "vid1"}, headers={"X-Assembler-API-Key": "wrong"}
        ).status_code == 401
        assert client.post(
            "/pipeline/upload", json={"video_id": "vid1"}, headers={"X-Assembler-API-Key": "k3y"}
        ).status_code == 202

    def test_no_key_configured(self, client):
        assert client.post("/pipeline/upload", json={"video_id": "vid1"}).status_code == 202


class TestAudioEndpoint:
    """Tests for POST /audio/pcm-to-mp3."""

    def test_converts(self, client, mocker):
        convert = mocker.patch("app.routers.audio.pcm_to_mp3", mocker.AsyncMock(return_value=b"ID3mp3"))

        response = client.post(
            "/audio/pcm-to-mp3",
            files={"file": ("speech.pcm", b"\x00\x01\x02\x03", "application/octet-stream")},
        )

        assert response.status_code == 200
        body = response.json()
        assert base64.b64decode(body["audio_base64"]) == b"ID3mp3"
        assert body["size_bytes"] == 6
        assert body["content_type"] == "audio/mpeg"
        assert convert.await_args.args[0] == b"\x00\x01\x02\x03"

    def test_empty_upload(self, client):
        response = client.post(
            "/audio/pcm-to-mp3",
            files={"file": ("speech.pcm", b"", "application/octet-stream")},
        )
        assert response.status_code == 400


class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready_reports_tool_versions(self, client, mocker, isolated_settings):
        os.makedirs(isolated_settings.scratch_directory, exist_ok=True)
        mocker.patch("app.routers.health.tool_version", side_effect=lambda tool: f"{tool} version 6.1")

        body = client.get("/health/ready").json()

        assert body["ready"] is True
        assert body["ffmpeg"] == "ffmpeg version 6.1"
        assert body["ffprobe"] == "ffprobe version 6.1"

    def test_not_ready_without_ffmpeg(self, client, mocker):
        mocker.patch("app.routers.health.tool_version", return_value=None)
        assert client.get("/health/ready").json()["ready"] is False

    def test_root_lists_service_info(self):
        from app.main import app as main_app

        body = TestClient(main_app).get("/").json()

        assert body["service"] == "narration-assembler"
        assert body["status"] == "running"
