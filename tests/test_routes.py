"""Integration tests for the /sessions FastAPI endpoints."""

import base64
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import make_png
from roomshaper.pipeline.models import Stage
from roomshaper.pipeline.routes import get_orchestrator, session_router


def _data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


@pytest.fixture
def client(orchestrator):
    app = FastAPI()
    app.include_router(session_router)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_id(client):
    return client.post("/sessions").json()["session_id"]


def _upload(client, session_id, width=64, height=48):
    resp = client.post(
        f"/sessions/{session_id}/upload",
        json={"image_base64": _data_url(make_png(width, height))},
    )
    assert resp.status_code == 200
    return resp.json()


def _generate(client, session_id):
    _upload(client, session_id)
    client.put(f"/sessions/{session_id}/prompt", json={"prompt": "paint it blue"})
    resp = client.post(f"/sessions/{session_id}/generate")
    assert resp.status_code == 200
    return resp.json()


class TestLifecycle:
    def test_create_and_get(self, client):
        created = client.post("/sessions")
        assert created.status_code == 200
        body = created.json()
        assert body["is_busy"] is False
        assert body["current_image"] is None

        fetched = client.get(f"/sessions/{body['session_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["session_id"] == body["session_id"]

    def test_unknown_session_is_404(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/generate").status_code == 404

    def test_drop_session(self, client, session_id):
        assert client.delete(f"/sessions/{session_id}").status_code == 200
        assert client.get(f"/sessions/{session_id}").status_code == 404

    def test_reset(self, client, session_id):
        _generate(client, session_id)

        body = client.post(f"/sessions/{session_id}/reset").json()

        assert body["original_image"] is None
        assert body["generated_image"] is None
        assert body["prompt"] == ""


class TestEditing:
    def test_upload(self, client, session_id):
        body = _upload(client, session_id)

        assert body["original_image"].startswith("data:image/png;base64,")
        assert body["current_image"] == body["original_image"]
        assert [s["name"] for s in body["style_suggestions"]] == ["Japandi", "Industrial"]

    def test_malformed_base64_is_400(self, client, session_id):
        resp = client.post(f"/sessions/{session_id}/upload", json={"image_base64": "%%%"})
        assert resp.status_code == 400

    def test_non_image_upload_reports_session_error(self, client, session_id):
        resp = client.post(
            f"/sessions/{session_id}/upload",
            json={"image_base64": _data_url(b"plain text")},
        )

        assert resp.status_code == 200
        assert resp.json()["error"] == "Failed to process image file. Please try another one."

    def test_plan_and_generate(self, client, session_id, capabilities):
        _upload(client, session_id)
        client.put(f"/sessions/{session_id}/prompt", json={"prompt": "green cabinets"})

        planned = client.post(f"/sessions/{session_id}/plan").json()
        assert planned["planned_tasks"] == [{"item": "Walls", "change": "paint sage green"}]
        assert planned["prompt"] == capabilities.enhanced

        generated = client.post(f"/sessions/{session_id}/generate").json()
        assert generated["generated_image"] == capabilities.edit_result.to_data_url()

    def test_apply_suggestion(self, client, session_id):
        body = client.post(
            f"/sessions/{session_id}/suggestions/apply", json={"prompt": "Make it Japandi"}
        ).json()
        assert body["prompt"] == "Make it Japandi"

    def test_refine_with_selection(self, client, session_id, capabilities):
        _generate(client, session_id)

        assert client.post(f"/sessions/{session_id}/refinement/toggle").json()["refinement_mode"] is True
        client.put(f"/sessions/{session_id}/refinement/canvas", json={"width": 64, "height": 48})
        stroked = client.post(
            f"/sessions/{session_id}/refinement/strokes",
            json={"points": [[5, 5], [30, 20]]},
        ).json()
        assert stroked["refinement_mask"].startswith("data:image/png;base64,")

        client.put(f"/sessions/{session_id}/refinement/prompt", json={"prompt": "brass lamp"})
        refined = client.post(f"/sessions/{session_id}/refine").json()

        assert refined["refinement_mask"] is None
        assert refined["generated_image"] == capabilities.refine_result.to_data_url()

    def test_stroke_outside_refinement_mode_is_400(self, client, session_id):
        client.put(f"/sessions/{session_id}/refinement/canvas", json={"width": 64, "height": 48})
        resp = client.post(f"/sessions/{session_id}/refinement/strokes", json={"points": [[1, 1]]})
        assert resp.status_code == 400

    def test_empty_stroke_is_422(self, client, session_id):
        resp = client.post(f"/sessions/{session_id}/refinement/strokes", json={"points": []})
        assert resp.status_code == 422

    def test_use_generated_as_base(self, client, session_id, capabilities):
        _generate(client, session_id)

        body = client.post(f"/sessions/{session_id}/use-generated").json()

        assert body["current_image"] == capabilities.edit_result.to_data_url()
        assert body["generated_image"] is None


class TestBusy:
    def test_mutations_rejected_while_busy(self, client, session_id, orchestrator):
        _upload(client, session_id)
        session = orchestrator.get_session(session_id)
        session.busy[Stage.GENERATE] = object()

        resp = client.post(f"/sessions/{session_id}/generate")
        assert resp.status_code == 409
        assert client.put(f"/sessions/{session_id}/prompt", json={"prompt": "x"}).status_code == 409

        body = client.get(f"/sessions/{session_id}").json()
        assert body["is_busy"] is True
        assert body["busy_stages"] == ["GENERATE"]

    def test_reset_allowed_while_busy(self, client, session_id, orchestrator):
        orchestrator.get_session(session_id).busy[Stage.REFINE] = object()

        body = client.post(f"/sessions/{session_id}/reset").json()
        assert body["is_busy"] is False


class TestFurniture:
    def _stage(self, client, session_id):
        client.post(
            f"/sessions/{session_id}/furniture",
            json={"images_base64": [_data_url(make_png(300, 200))]},
        )
        client.put(f"/sessions/{session_id}/furniture/prompt", json={"prompt": "chair by window"})

    def test_portrait_confirm_flow(self, client, session_id, capabilities):
        _upload(client, session_id, 400, 800)
        self._stage(client, session_id)

        parked = client.post(f"/sessions/{session_id}/furniture/integrate").json()
        assert parked["pending_confirmation"]["kind"] == "INTEGRATE_FURNITURE"
        assert parked["pending_confirmation"]["args"] == {"width": 400, "height": 800}
        assert capabilities.count("integrate_furniture") == 0

        done = client.post(f"/sessions/{session_id}/confirmation/confirm").json()
        assert done["pending_confirmation"] is None
        assert done["generated_image"] == capabilities.integrate_result.to_data_url()
        assert done["furniture_images"] == []

    def test_portrait_cancel_flow(self, client, session_id, capabilities):
        _upload(client, session_id, 400, 800)
        self._stage(client, session_id)
        client.post(f"/sessions/{session_id}/furniture/integrate")

        body = client.post(f"/sessions/{session_id}/confirmation/cancel").json()

        assert body["pending_confirmation"] is None
        assert body["generated_image"] is None
        assert len(body["furniture_images"]) == 1
        assert capabilities.count("integrate_furniture") == 0

    def test_enhance_prompt(self, client, session_id, capabilities):
        self._stage(client, session_id)
        body = client.post(f"/sessions/{session_id}/furniture/enhance").json()
        assert body["furniture_prompt"] == capabilities.enhanced_furniture

    def test_remove_and_clear(self, client, session_id):
        self._stage(client, session_id)

        assert client.delete(f"/sessions/{session_id}/furniture/3").status_code == 404
        assert client.delete(f"/sessions/{session_id}/furniture/0").json()["furniture_images"] == []

        self._stage(client, session_id)
        cleared = client.delete(f"/sessions/{session_id}/furniture").json()
        assert cleared["furniture_images"] == []
        assert cleared["furniture_prompt"] == ""


class TestVideo:
    def test_video_runs_in_background(self, client, session_id, capabilities):
        _generate(client, session_id)

        started = client.post(f"/sessions/{session_id}/video")
        assert started.status_code == 200

        body = started.json()
        for _ in range(100):
            body = client.get(f"/sessions/{session_id}").json()
            if body["video_url"] or body["error"]:
                break
            time.sleep(0.01)

        assert body["error"] is None
        assert body["video_url"].endswith("/room_video.mp4")
        assert capabilities.count("poll_video") == 3

    def test_video_without_generated_image(self, client, session_id):
        _upload(client, session_id)

        body = client.post(f"/sessions/{session_id}/video").json()

        assert body["error"] == "Cannot generate video without a generated image."
        assert body["is_busy"] is False


def test_health(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    from roomshaper.main import app

    with TestClient(app) as test_client:
        body = test_client.get("/health").json()

    assert body["status"] == "ok"
    assert "gemini_api_key_set" in body
