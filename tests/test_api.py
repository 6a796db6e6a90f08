import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend import main
from flux_studio.artifacts import LocalContentStore
from flux_studio.models import JobState, OperationKind
from flux_studio.orchestrator import OperationOrchestrator
from flux_studio.poller import JobPoller
from flux_studio.preferences import Preferences
from tests.fakes import FakeClient, make_image, pending, state


@pytest.fixture
def provider():
    return FakeClient()


@pytest.fixture
def client(provider, sleeper, tmp_path):
    main.app.state.orchestrator = OperationOrchestrator(
        provider,
        LocalContentStore(main.CONTENT_DIR),
        poller=JobPoller(provider, sleep=sleeper),
        preferences=Preferences(tmp_path / "prefs.json"),
        max_attempts=3,
    )
    yield TestClient(main.app)
    main.app.state.orchestrator = None


def image_file(name="photo.png", data=None, content_type="image/png"):
    return (name, data if data is not None else make_image(), content_type)


def uploads_left():
    return list(main.UPLOADS_DIR.iterdir())


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert set(body["providers"]) == {"flux", "stability"}


def test_generate_serves_artifact(client, provider):
    r = client.post("/api/images/generate", json={"prompt": "A red apple", "options": {"aspectRatio": "16:9"}})

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["kind"] == "generate"
    assert body["imageUrl"] == f"/uploads/{body['artifactName']}"
    assert provider.submitted[0][1]["aspect_ratio"] == "16:9"

    served = client.get(body["imageUrl"])
    assert served.status_code == 200
    assert served.content == provider.image


def test_generate_without_prompt_is_400(client, provider):
    r = client.post("/api/images/generate", json={"prompt": ""})
    assert r.status_code == 400
    assert r.json()["errorCode"] == "ValidationError"
    assert provider.submitted == []


def test_edit_removes_upload(client, provider):
    r = client.post(
        "/api/images/edit",
        data={"prompt": "add a hat", "options": json.dumps({"outputFormat": "png"})},
        files={"image": image_file()},
    )
    assert r.status_code == 200
    assert provider.submitted[0][0] is OperationKind.EDIT
    assert uploads_left() == []


def test_inpaint_requires_mask(client):
    r = client.post("/api/images/inpaint", data={"prompt": "remove"}, files={"image": image_file()})
    assert r.status_code == 422


def test_inpaint_submits_mask(client, provider):
    r = client.post(
        "/api/images/inpaint",
        data={"prompt": "remove the cup"},
        files={"image": image_file(), "mask": image_file("mask.png", make_image(color=(255, 255, 255)))},
    )
    assert r.status_code == 200
    assert "mask" in provider.submitted[0][1]


def test_rejects_non_image_upload(client, provider):
    r = client.post(
        "/api/images/expand",
        data={"prompt": "more sky", "options": json.dumps({"top": 100})},
        files={"image": ("notes.txt", b"hello", "text/plain")},
    )
    assert r.status_code == 400
    assert provider.submitted == []
    assert uploads_left() == []


def test_rejects_malformed_options(client):
    r = client.post(
        "/api/images/expand",
        data={"prompt": "more sky", "options": "{top: 1"},
        files={"image": image_file()},
    )
    assert r.status_code == 400
    assert "options" in r.json()["detail"]


def test_fuse_with_one_image_is_400(client, provider):
    r = client.post("/api/images/fuse", data={"prompt": "merge"}, files=[("images", image_file())])
    assert r.status_code == 400
    assert r.json()["errorCode"] == "ValidationError"
    assert provider.submitted == []
    assert uploads_left() == []


def test_fuse_two_images(client, provider):
    files = [("images", image_file("a.png")), ("images", image_file("b.png"))]
    r = client.post("/api/images/fuse", data={"prompt": "merge", "options": '{"layout": "vertical"}'}, files=files)
    assert r.status_code == 200
    assert provider.submitted[0][0] is OperationKind.FUSE


def test_style_transfer_with_style_image(client, provider):
    r = client.post(
        "/api/images/style-transfer",
        files={"image": image_file(), "style_image": image_file("style.jpg", make_image(fmt="JPEG"), "image/jpeg")},
    )
    assert r.status_code == 200
    assert "input_image_2" in provider.submitted[0][1]


def test_upscale_type_selects_mode(client, provider):
    r = client.post("/api/images/upscale", data={"upscale_type": "fast"}, files={"image": image_file()})
    assert r.status_code == 200
    assert provider.submitted[0][1]["mode"] == "fast"


@pytest.mark.parametrize(
    "statuses, code, http_status",
    [
        ([state(JobState.MODERATED_CONTENT)], "ContentModerated", 422),
        ([state(JobState.FAILED)], "JobFailed", 502),
        ([pending()], "JobTimeout", 504),
    ],
)
def test_failure_status_codes(client, provider, statuses, code, http_status):
    provider.statuses = statuses
    r = client.post("/api/images/generate", json={"prompt": "apple"})
    assert r.status_code == http_status
    assert r.json()["errorCode"] == code


def test_status_passthrough(client, provider):
    provider.statuses = [pending()]
    body = client.get("/api/images/status/req-1").json()
    assert body == {"id": "req-1", "state": "pending", "artifactUrl": None, "raw": {"status": "Pending"}}


def test_settings_round_trip(client):
    r = client.put("/api/settings/generate", json={"aspectRatio": "3:2"})
    assert r.status_code == 200
    assert client.get("/api/settings").json() == {"generate": {"aspectRatio": "3:2"}}


def test_invalid_settings(client):
    r = client.put("/api/settings/upscale", json={"mode": "huge"})
    assert r.status_code == 400


def test_stability_account_unavailable_without_router(client):
    assert client.get("/api/account/stability").status_code == 503


def test_saved_upscale_mode_applies_without_upscale_type(client, provider):
    client.put("/api/settings/upscale", json={"mode": "fast"})

    r = client.post("/api/images/upscale", files={"image": image_file()})

    assert r.status_code == 200
    assert provider.submitted[0][1]["mode"] == "fast"


def test_failed_upload_write_removes_earlier_files(tmp_path, monkeypatch):
    original = Path.write_bytes
    written = []

    def flaky_write(self, data):
        written.append(self)
        if len(written) == 2:
            raise OSError("disk full")
        return original(self, data)

    monkeypatch.setattr(Path, "write_bytes", flaky_write)

    with pytest.raises(OSError, match="disk full"):
        main.save_uploads(tmp_path, [("image1", ".png", b"a"), ("image2", ".png", b"b")])

    assert list(tmp_path.iterdir()) == []
