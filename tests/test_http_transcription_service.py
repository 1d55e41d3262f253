import json

import httpx
import pytest

from lecturescribe import config
from lecturescribe.data.models import TranscriptionUnit
from lecturescribe.services.transcription.base import (
    DispatchTimeout,
    MalformedResponse,
    NetworkError,
    ServiceRejected,
)
from lecturescribe.services.transcription.http_client import (
    HEALTH_PATH,
    TRANSCRIBE_PATH,
    HttpTranscriptionService,
)


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    monkeypatch.setattr(config, "_settings", None)
    monkeypatch.delenv("LECTURESCRIBE_SERVICE_API_KEY", raising=False)


def make_service(handler, api_key=None) -> HttpTranscriptionService:
    transport = httpx.MockTransport(handler)
    return HttpTranscriptionService(
        base_url="https://transcribe.example.com/",
        api_key=api_key,
        client=httpx.Client(transport=transport),
    )


def _unit(context_id=None) -> TranscriptionUnit:
    return TranscriptionUnit(
        payload=b"RIFF-fake-wav",
        content_type="audio/wav",
        chunk_count=2,
        created_at=0.0,
        context_id=context_id,
    )


def test_transcribe_uploads_multipart_and_parses_result():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = request.content.decode("latin-1")
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "text": "Today we cover entropy.",
                    "intelligentTitle": "Entropy basics",
                    "keyTopics": ["entropy", " ", "heat"],
                },
            },
        )

    service = make_service(handler, api_key="secret")
    result = service.transcribe(_unit(context_id="phys-201"), timeout=5.0)

    assert seen["url"] == f"https://transcribe.example.com{TRANSCRIBE_PATH}"
    assert seen["headers"]["X-API-Key"] == "secret"
    assert 'name="audio"; filename="recording.wav"' in seen["body"]
    assert "RIFF-fake-wav" in seen["body"]
    assert 'name="contextId"' in seen["body"]
    assert "phys-201" in seen["body"]
    assert result.text == "Today we cover entropy."
    assert result.title == "Entropy basics"
    assert result.key_topics == ["entropy", "heat"]


def test_missing_context_is_sent_empty():
    bodies = []

    def handler(request):
        bodies.append(request.content.decode("latin-1"))
        return httpx.Response(200, json={"success": True, "data": {"text": "ok"}})

    service = make_service(handler)
    service.transcribe(_unit(), timeout=5.0)

    assert 'name="contextId"\r\n\r\n\r\n' in bodies[0]


def test_unauthorized_is_rejected():
    service = make_service(lambda request: httpx.Response(401, json={"error": "Unauthorized"}))

    with pytest.raises(ServiceRejected) as excinfo:
        service.transcribe(_unit(), timeout=5.0)
    assert excinfo.value.status_code == 401


def test_server_error_message_is_surfaced():
    service = make_service(lambda request: httpx.Response(500, json={"success": False, "error": "model overloaded"}))

    with pytest.raises(ServiceRejected, match="model overloaded"):
        service.transcribe(_unit(), timeout=5.0)


def test_unsuccessful_body_is_rejected():
    service = make_service(lambda request: httpx.Response(200, json={"success": False, "error": "no speech"}))

    with pytest.raises(ServiceRejected, match="no speech"):
        service.transcribe(_unit(), timeout=5.0)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"<html>oops</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"success": True, "data": {"transcript": "wrong key"}}),
    ],
)
def test_malformed_bodies(response):
    service = make_service(lambda request: response)

    with pytest.raises(MalformedResponse):
        service.transcribe(_unit(), timeout=5.0)


def test_timeout_is_translated():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DispatchTimeout):
        make_service(handler).transcribe(_unit(), timeout=1.0)


def test_connection_error_is_translated():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError):
        make_service(handler).transcribe(_unit(), timeout=1.0)


def test_health_check():
    def handler(request):
        assert request.url.path == HEALTH_PATH
        return httpx.Response(200, content=json.dumps({"success": True, "status": "healthy"}))

    assert make_service(handler).check_health() is True


def test_health_check_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert make_service(handler).check_health() is False
    assert make_service(lambda request: httpx.Response(503, json={"status": "down"})).check_health() is False
