from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, OpenAIError

from .models import Segment
from .settings import ConfigError, Settings

logger = logging.getLogger(__name__)

WHITESPACE = re.compile(r"\s+")
SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


class TranscriptionErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    SERVICE_ERROR = "service_error"
    NETWORK_ERROR = "network_error"

    @property
    def structural(self) -> bool:
        return self in STRUCTURAL_KINDS


STRUCTURAL_KINDS = frozenset(
    {TranscriptionErrorKind.NOT_FOUND, TranscriptionErrorKind.TOO_SMALL, TranscriptionErrorKind.TOO_LARGE}
)


class TranscriptionError(RuntimeError):
    def __init__(
        self,
        kind: TranscriptionErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.body = body


def echo_pattern(prompt: str) -> re.Pattern[str] | None:
    sentences = [s.strip() for s in SENTENCE_END.split(prompt) if s.strip()]
    if not sentences:
        return None
    alternatives = [r"\s+".join(re.escape(word) for word in sentence.split()) for sentence in sentences]
    return re.compile("|".join(alternatives), re.IGNORECASE)


def clean_transcript(text: str, pattern: re.Pattern[str] | None = None) -> str:
    if pattern is not None:
        text = pattern.sub(" ", text)
    return WHITESPACE.sub(" ", text).strip()


def _response_text(response: Any) -> str:
    if isinstance(response, str):
        return response
    text = getattr(response, "text", None)
    if text is not None:
        return str(text)
    if isinstance(response, dict):
        return str(response.get("text", ""))
    return str(response)


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    if body:
        return str(body)
    return fallback


def build_client(settings: Settings) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.require_api_key(),
        base_url=settings.base_url,
        timeout=settings.request_timeout_sec,
        max_retries=0,
    )


class Transcriber:
    def __init__(self, settings: Settings, client: Any = None, *, detect_language: bool = True) -> None:
        self.settings = settings
        self.client = client
        self.detect_language = detect_language
        self._echo = echo_pattern(settings.prompt)

    def _client(self) -> Any:
        if self.client is None:
            self.client = build_client(self.settings)
        return self.client

    def check(self, segment: Segment) -> int:
        """Reject segments that can never succeed. Returns the byte size."""
        path = segment.path
        if not path.exists():
            raise TranscriptionError(
                TranscriptionErrorKind.NOT_FOUND,
                f"Segment {segment.number} file not found",
            )
        size = path.stat().st_size
        if size < self.settings.min_segment_bytes:
            raise TranscriptionError(
                TranscriptionErrorKind.TOO_SMALL,
                f"Segment {segment.number} is too small or empty ({size} bytes)",
            )
        if size > self.settings.max_upload_bytes:
            raise TranscriptionError(
                TranscriptionErrorKind.TOO_LARGE,
                f"Segment {segment.number} exceeds {self.settings.max_upload_bytes // (1024 * 1024)}MB limit "
                f"({size / (1024 * 1024):.2f} MB)",
            )
        return size

    def request_params(self) -> dict[str, Any]:
        """Request fields; the translate prompt is only sent while language detection is on."""
        params: dict[str, Any] = {
            "model": self.settings.model,
            "response_format": "text",
            "language": self.settings.output_language,
            "temperature": self.settings.temperature,
        }
        if self.detect_language and self.settings.prompt:
            params["prompt"] = self.settings.prompt
        return params

    async def transcribe(self, segment: Segment) -> str:
        size = self.check(segment)
        try:
            audio = segment.path.read_bytes()
        except OSError as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.NOT_FOUND,
                f"Segment {segment.number} could not be read: {exc}",
            ) from exc
        logger.info(
            "Transcribing segment %s (%.2f MB) with %s",
            segment.number,
            size / (1024 * 1024),
            self.settings.model,
        )

        try:
            response = await self._client().audio.transcriptions.create(
                file=(segment.path.name, audio, "audio/wav"),
                **self.request_params(),
            )
        except APIStatusError as exc:
            body = exc.body
            raise TranscriptionError(
                TranscriptionErrorKind.SERVICE_ERROR,
                f"Error transcribing segment {segment.number}: {exc.status_code} - {_error_message(body, exc.message)}",
                status_code=exc.status_code,
                body=body,
            ) from exc
        except APIConnectionError as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.NETWORK_ERROR,
                f"Error transcribing segment {segment.number}: {exc}",
            ) from exc
        except (OpenAIError, ConfigError) as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.SERVICE_ERROR,
                f"Error transcribing segment {segment.number}: {exc}",
            ) from exc

        text = clean_transcript(_response_text(response), self._echo)
        logger.info("Segment %s transcribed: %s chars", segment.number, len(text))
        return text
