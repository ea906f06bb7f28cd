"""
Tests for the HTTP delivery layer

Test Coverage:
- /health and / (no service bootstrap)
- /templates and /templates/{id}/themes with frame settings
- /composite: success, unknown template, capture exhaustion, unexpected errors
"""
import pytest
from fastapi.testclient import TestClient

from booth_compositor import main
from booth_compositor.config.settings import settings
from booth_compositor.domain.errors import CaptureExhausted, TemplateNotFound

API = settings.API_V1_STR


class FakeService:
    def __init__(self, region_map, outcome=None):
        self.region_map = region_map
        self.outcome = outcome
        self.requests = []

    async def process(self, request):
        self.requests.append(request)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return {"session_id": request.session_id, "tiers": {}, "qr_url": "https://booth.example/view?url=x"}


@pytest.fixture
def fake_service(region_map):
    return FakeService(region_map)


@pytest.fixture
def client(fake_service, monkeypatch):
    # skip the lazy bootstrap; the fake stands in for the composite service
    monkeypatch.setattr(main, "_service_ready", True)
    with TestClient(main.app) as c:
        main.app.state.composite_service = fake_service
        yield c
    del main.app.state.composite_service


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["region_map_loaded"] is True


def test_list_templates(client):
    response = client.get(f"{API}/templates")

    assert response.status_code == 200
    templates = {t["id"]: t for t in response.json()["templates"]}
    assert set(templates) == {"frame", "strip"}
    assert (templates["frame"]["total_width"], templates["frame"]["total_height"]) == (800, 1200)


def test_list_themes_applies_frame_settings(client, monkeypatch):
    monkeypatch.setattr(settings, "FRAME_SETTINGS", {"alt": False})

    response = client.get(f"{API}/templates/frame/themes")

    assert response.status_code == 200
    assert response.json()["themes"] == ["classic"]


def test_list_themes_unknown_template(client):
    assert client.get(f"{API}/templates/poster/themes").status_code == 404


def test_composite_success(client, fake_service):
    response = client.post(f"{API}/composite", json={
        "session_id": "s1", "template_id": "frame", "theme_id": "classic", "photos": ["a.jpg", None],
    })

    assert response.status_code == 200
    assert response.json()["output"]["session_id"] == "s1"
    assert fake_service.requests[0].photos == ["a.jpg", None]


def test_composite_unknown_template(client, fake_service):
    fake_service.outcome = TemplateNotFound("poster")

    response = client.post(f"{API}/composite", json={"template_id": "poster"})

    assert response.status_code == 404


def test_composite_capture_exhausted_is_retryable(client, fake_service):
    fake_service.outcome = CaptureExhausted("archive", [("archive@8x", "MemoryError"), ("archive@4x", "MemoryError")])

    response = client.post(f"{API}/composite", json={"template_id": "frame"})

    assert response.status_code == 503
    body = response.json()
    assert body["kind"] == "CaptureExhausted"
    assert body["retryable"] is True
    assert [a["tier"] for a in body["attempts"]] == ["archive@8x", "archive@4x"]


def test_composite_unexpected_error(client, fake_service):
    fake_service.outcome = RuntimeError("boom")

    response = client.post(f"{API}/composite", json={"template_id": "frame"})

    assert response.status_code == 500
    assert "boom" not in response.text
