"""HTTP transcription backend talking to the lecture transcription server."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ...config import get_settings
from ...data.models import TranscriptionResult, TranscriptionUnit
from ...logging import get_logger
from .base import (
    DispatchTimeout,
    MalformedResponse,
    NetworkError,
    ServiceRejected,
    TranscriptionService,
)

LOGGER = get_logger(__name__)

TRANSCRIBE_PATH = "/api/transcribe/enhanced"
HEALTH_PATH = "/api/health"

_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/mpeg": "mp3",
    "audio/flac": "flac",
}


def _filename_for(content_type: str) -> str:
    base_type = content_type.split(";", 1)[0].strip().lower()
    return f"recording.{_EXTENSIONS.get(base_type, 'pcm')}"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}: {response.reason_phrase}"


class HttpTranscriptionService(TranscriptionService):
    """Multipart upload of one audio unit per request.

    The server answers ``{"success": bool, "data": {"text": ..., "intelligentTitle": ...,
    "keyTopics": [...]}}`` or ``{"success": false, "error": ...}``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.service_url).rstrip("/")
        if not self.base_url:
            raise ValueError("Transcription service URL is not configured")
        self.api_key = api_key if api_key is not None else settings.service_api_key
        self._client = client or httpx.Client(timeout=settings.dispatch_timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"X-API-Key": self.api_key}
        return {}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        files = {"audio": (_filename_for(unit.content_type), unit.payload, unit.content_type)}
        data = {"contextId": unit.context_id or ""}
        LOGGER.debug("Uploading %s bytes to %s", unit.size, self._url(TRANSCRIBE_PATH))
        try:
            response = self._client.post(
                self._url(TRANSCRIBE_PATH),
                headers=self._headers(),
                files=files,
                data=data,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise DispatchTimeout(f"Transcription request timed out after {timeout:.0f}s") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Transcription service unreachable: {exc}") from exc

        if response.status_code == 401:
            raise ServiceRejected("Unauthorized: check the service API key", status_code=401)
        if not response.is_success:
            raise ServiceRejected(_error_message(response), status_code=response.status_code)
        return self._parse(response)

    def _parse(self, response: httpx.Response) -> TranscriptionResult:
        try:
            body: Any = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"Invalid JSON from transcription service: {exc}") from exc
        if not isinstance(body, dict):
            raise MalformedResponse("Transcription response is not a JSON object")
        if not body.get("success", False):
            raise ServiceRejected(str(body.get("error") or "Transcription failed"), status_code=response.status_code)

        data = body.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("text"), str):
            raise MalformedResponse("Transcription response carries no text")

        topics_source = data.get("keyTopics") or []
        key_topics: List[str] = []
        if isinstance(topics_source, list):
            key_topics = [str(topic).strip() for topic in topics_source if str(topic).strip()]
        title = data.get("intelligentTitle") or None
        return TranscriptionResult(
            text=data["text"],
            title=str(title) if title else None,
            key_topics=key_topics,
            raw_response=body,
        )

    def check_health(self) -> bool:
        try:
            response = self._client.get(self._url(HEALTH_PATH), headers=self._headers())
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Health check against %s failed: %s", self.base_url, exc)
            return False
        return bool(isinstance(body, dict) and body.get("success") and body.get("status") == "healthy")

    def close(self) -> None:
        self._client.close()


__all__ = ["HttpTranscriptionService", "TRANSCRIBE_PATH", "HEALTH_PATH"]
