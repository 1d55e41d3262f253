"""OpenAI powered transcription service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ...config import get_settings
from ...data.models import TranscriptionResult, TranscriptionUnit
from ...logging import get_logger
from .base import (
    DispatchError,
    DispatchTimeout,
    MalformedResponse,
    NetworkError,
    ServiceRejected,
    TranscriptionService,
)
from .http_client import _filename_for

LOGGER = get_logger(__name__)


class OpenAITranscriptionService(TranscriptionService):
    def __init__(self, model: Optional[str] = None) -> None:
        settings = get_settings()
        self.model = model or settings.openai_transcription_model
        try:
            import openai
            from openai import OpenAI, OpenAIError  # type: ignore
        except ImportError as exc:  # pragma: no cover - runtime dependency guard
            raise RuntimeError("openai package is required for OpenAITranscriptionService") from exc
        client_kwargs = {}
        if settings.openai_api_key:
            client_kwargs["api_key"] = settings.openai_api_key

        try:
            # Failed units are dropped, never retried.
            self.client = OpenAI(max_retries=0, **client_kwargs)
        except OpenAIError as exc:
            message = str(exc)
            if "api_key" in message.lower():
                raise RuntimeError(
                    "OpenAI API key not configured. Set the OPENAI_API_KEY environment variable "
                    "or LECTURESCRIBE_OPENAI_API_KEY."
                ) from exc
            raise RuntimeError(f"Failed to initialise OpenAI transcription client: {message}") from exc
        self._openai_error_cls = OpenAIError
        self._timeout_error_cls = openai.APITimeoutError
        self._connection_error_cls = openai.APIConnectionError
        self._status_error_cls = openai.APIStatusError

    def transcribe(self, unit: TranscriptionUnit, timeout: float) -> TranscriptionResult:
        if unit.context_id:
            LOGGER.debug("OpenAI backend ignores context %s", unit.context_id)
        response: Any = None
        formats = self._candidate_response_formats()
        for index, response_format in enumerate(formats):
            try:
                response = self.client.audio.transcriptions.create(
                    model=self.model,
                    file=(_filename_for(unit.content_type), unit.payload, unit.content_type),
                    response_format=response_format,
                    timeout=timeout,
                )
                break
            except self._openai_error_cls as exc:
                if self._is_response_format_error(exc) and index < len(formats) - 1:
                    LOGGER.info(
                        "Response format '%s' is not supported by model '%s'; retrying with '%s'",
                        response_format,
                        self.model,
                        formats[index + 1],
                    )
                    continue
                raise self._translate_error(exc) from exc

        text, raw_response = self._parse_transcription_response(response)
        return TranscriptionResult(text=text, raw_response=raw_response)

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()

    def _translate_error(self, exc: Exception) -> DispatchError:
        # Timeout is a subclass of the connection error in the SDK; test it first.
        if isinstance(exc, self._timeout_error_cls):
            return DispatchTimeout(f"OpenAI transcription timed out: {exc}")
        if isinstance(exc, self._connection_error_cls):
            return NetworkError(f"OpenAI API unreachable: {exc}")
        if isinstance(exc, self._status_error_cls):
            return ServiceRejected(str(exc), status_code=getattr(exc, "status_code", None))
        return ServiceRejected(str(exc))

    def _candidate_response_formats(self) -> List[str]:
        return ["json", "text"]

    def _is_response_format_error(self, exc: Exception) -> bool:
        message = str(getattr(exc, "message", None) or exc)
        return "response_format" in message and "unsupported" in message.lower()

    def _parse_transcription_response(self, response: Any) -> Tuple[str, Optional[Dict[str, Any]]]:
        if response is None:
            raise MalformedResponse("OpenAI returned an empty response")

        data: Optional[Dict[str, Any]] = None
        if isinstance(response, str):
            return response, {"text": response}
        if isinstance(response, dict):
            data = response
        elif hasattr(response, "model_dump"):
            try:
                data = response.model_dump()
            except Exception as exc:
                raise MalformedResponse(f"Unreadable OpenAI response: {exc}") from exc
        elif hasattr(response, "text"):
            text = getattr(response, "text", None)
            if isinstance(text, str):
                return text, {"text": text}

        if not isinstance(data, dict) or not isinstance(data.get("text"), str):
            raise MalformedResponse("OpenAI response carries no text")
        return data["text"], data


__all__ = ["OpenAITranscriptionService"]
