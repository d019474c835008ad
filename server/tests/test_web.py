from __future__ import annotations

import time
from typing import Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from tet_moment.errors import RemoteGenerationError
from tet_moment.services.animation import VideoResult
from tet_moment.services.blobs import BlobRegistry
from tet_moment.services.credentials import KeySelectionProvider
from tet_moment.services.intake import FileIntake, InputImage
from tet_moment.services.portrait import PortraitResult
from tet_moment.services.workflow import CREDENTIAL_INVALID_MESSAGE, WorkflowController
from tet_moment.web.app import create_app, main


class FakePortraitClient:
    async def synthesize_portrait(self, files: Sequence[InputImage]) -> PortraitResult:
        _ = files
        return PortraitResult(data="UE5H")


class FakeAnimationClient:
    def __init__(self, registry: BlobRegistry, error: Optional[Exception] = None) -> None:
        self.registry = registry
        self.error = error

    async def synthesize_video(self, portrait: PortraitResult) -> VideoResult:
        _ = portrait
        if self.error is not None:
            raise self.error
        return VideoResult(handle=self.registry.create(b"V1", "video/mp4"), size_bytes=2)


def _app(error: Optional[Exception] = None):  # noqa: ANN202
    registry = BlobRegistry()
    credentials = KeySelectionProvider("cred")
    controller = WorkflowController(
        intake=FileIntake(registry, max_files=5),
        portrait_client=FakePortraitClient(),
        animation_client=FakeAnimationClient(registry, error=error),
        credentials=credentials,
        registry=registry,
    )
    return create_app(controller=controller, credentials=credentials)


def _upload(count: int) -> list[tuple[str, tuple[str, bytes, str]]]:
    return [("files", (f"p{i}.jpg", f"photo-{i}".encode(), "image/jpeg")) for i in range(count)]


def _wait_for(client: TestClient, state: str) -> dict:
    body: dict = {}
    for _ in range(100):
        body = client.get("/state").json()
        if body["state"] == state:
            return body
        time.sleep(0.01)
    pytest.fail(f"state never reached {state!r}; last snapshot: {body}")


def test_health_reports_ok() -> None:
    with TestClient(_app()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_upload_keeps_five_files_and_serves_previews() -> None:
    with TestClient(_app()) as client:
        body = client.post("/files", files=_upload(7)).json()

        assert body["state"] == "idle"
        assert body["files"] == ["p0.jpg", "p1.jpg", "p2.jpg", "p3.jpg", "p4.jpg"]
        assert len(body["previews"]) == 5
        preview = client.get(f"/blobs/{body['previews'][2]}")
        assert preview.status_code == 200
        assert preview.content == b"photo-2"
        assert preview.headers["content-type"] == "image/jpeg"


def test_upload_rejects_non_images() -> None:
    with TestClient(_app()) as client:
        response = client.post("/files", files=[("files", ("notes.txt", b"hi", "text/plain"))])

    assert response.status_code == 415


def test_remove_file_and_revoked_preview_is_gone() -> None:
    with TestClient(_app()) as client:
        body = client.post("/files", files=_upload(3)).json()
        removed = body["previews"][0]

        after = client.delete("/files/0").json()

        assert after["files"] == ["p1.jpg", "p2.jpg"]
        assert client.get(f"/blobs/{removed}").status_code == 404
        assert client.delete("/files/5").status_code == 404


def test_portrait_video_and_download_flow() -> None:
    with TestClient(_app()) as client:
        client.post("/files", files=_upload(2))
        assert client.post("/video").status_code == 409

        body = client.post("/portrait").json()
        assert body["state"] == "image_ready"
        assert body["portrait"] == "data:image/png;base64,UE5H"
        assert client.get("/portrait.png").content == b"PNG"

        assert client.post("/video").status_code == 202
        body = _wait_for(client, "video_ready")
        assert body["state"] == "video_ready"

        download = client.get("/video.mp4")
        assert download.status_code == 200
        assert download.content == b"V1"
        assert 'filename="ps-tet-family-moment.mp4"' in download.headers["content-disposition"]

        reset = client.post("/files", files=_upload(1)).json()
        assert reset["state"] == "idle"
        assert reset["portrait"] is None
        assert reset["video"] is None
        assert client.get("/video.mp4").status_code == 404


def test_invalid_key_offers_reselection() -> None:
    error = RemoteGenerationError(404, "Requested entity was not found.")
    with TestClient(_app(error=error)) as client:
        client.post("/files", files=_upload(1))
        client.post("/portrait")
        client.post("/video")

        body = _wait_for(client, "failed")
        assert body["error"] == CREDENTIAL_INVALID_MESSAGE
        assert body["credential_problem"] is True
        assert body["credential_selected"] is False

        body = client.post("/credential", json={"api_key": "fresh-key"}).json()
        assert body["state"] == "image_ready"
        assert body["credential_selected"] is True
        assert body["error"] is None


def test_missing_api_key_degrades_health(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("tet_moment.web.app.settings.gemini_api_key", None)

    with TestClient(create_app()) as client:
        health = client.get("/health").json()
        state = client.get("/state")

    assert health["status"] == "degraded"
    assert "GEMINI_API_KEY" in health["init_error"]
    assert state.status_code == 503


def test_path_backed_preview_is_served_from_disk(tmp_path) -> None:  # noqa: ANN001
    photo = tmp_path / "cousin.jpg"
    photo.write_bytes(b"from-disk")
    app = _app()

    with TestClient(app) as client:
        app.state.controller.intake.set_selection([InputImage.from_path(photo)])
        handle = client.get("/state").json()["previews"][0]

        served = client.get(f"/blobs/{handle}")
        assert served.status_code == 200
        assert served.content == b"from-disk"

        photo.unlink()
        assert client.get(f"/blobs/{handle}").status_code == 404



def test_main_serves_the_app_factory_with_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[tuple, dict]] = []
    monkeypatch.setattr("tet_moment.web.app.uvicorn.run", lambda *args, **kwargs: calls.append((args, kwargs)))
    monkeypatch.setattr("tet_moment.web.app.settings.web_host", "0.0.0.0")
    monkeypatch.setattr("tet_moment.web.app.settings.web_port", 8123)

    main()

    assert len(calls) == 1
    args, kwargs = calls[0]
    assert args == ("tet_moment.web.app:create_app",)
    assert kwargs["factory"] is True
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 8123
