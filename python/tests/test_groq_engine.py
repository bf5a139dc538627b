from __future__ import annotations

import asyncio
import types
from pathlib import Path

import httpx
import pytest
from openai import APIConnectionError, APIResponseValidationError, APIStatusError

from chunkscribe.groq_engine import (
    Transcriber,
    TranscriptionError,
    TranscriptionErrorKind,
    clean_transcript,
    echo_pattern,
)
from chunkscribe.models import Segment
from chunkscribe.settings import DEFAULT_PROMPT, MAX_UPLOAD_BYTES, Settings

URL = "https://api.groq.com/openai/v1/audio/transcriptions"


class FakeTranscriptions:
    def __init__(self, actions: list[object]):
        self.actions = actions
        self.calls: list[dict[str, object]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.actions:
            raise RuntimeError("no more actions configured")
        action = self.actions.pop(0)
        if isinstance(action, Exception):
            raise action
        return action


class FakeClient:
    def __init__(self, actions: list[object]):
        self.audio = types.SimpleNamespace(transcriptions=FakeTranscriptions(actions))


def _segment(tmp_path: Path, size: int = 4096, index: int = 0) -> Segment:
    path = tmp_path / f"segment_{index:03d}.wav"
    path.write_bytes(b"RIFF" + b"\0" * (size - 4))
    return Segment(index=index, path=path, start_sec=index * 90.0, duration_sec=90.0, size_bytes=size)


def _status_error(status: int, body: object) -> APIStatusError:
    response = httpx.Response(status, request=httpx.Request("POST", URL))
    return APIStatusError(f"Error code: {status}", response=response, body=body)


def test_transcribe_sends_fixed_parameters_and_cleans_text(tmp_path: Path):
    client = FakeClient([f"  {DEFAULT_PROMPT}\n Hello   there,\n\ngeneral  kenobi.  "])
    transcriber = Transcriber(Settings(), client=client)
    segment = _segment(tmp_path)

    text = asyncio.run(transcriber.transcribe(segment))

    assert text == "Hello there, general kenobi."
    call = client.audio.transcriptions.calls[0]
    assert call["model"] == "whisper-large-v3"
    assert call["response_format"] == "text"
    assert call["language"] == "en"
    assert call["temperature"] == 0.1
    assert call["prompt"] == DEFAULT_PROMPT
    name, audio, content_type = call["file"]
    assert name == "segment_000.wav"
    assert audio == segment.path.read_bytes()
    assert content_type == "audio/wav"


def test_transcribe_without_language_detection_omits_prompt(tmp_path: Path):
    client = FakeClient([types.SimpleNamespace(text="plain words")])
    transcriber = Transcriber(Settings(output_language="de"), client=client, detect_language=False)

    text = asyncio.run(transcriber.transcribe(_segment(tmp_path)))

    assert text == "plain words"
    call = client.audio.transcriptions.calls[0]
    assert "prompt" not in call
    assert call["language"] == "de"


def test_oversized_segment_fails_without_network_call(tmp_path: Path):
    path = tmp_path / "segment_000.wav"
    with path.open("wb") as handle:
        handle.truncate(MAX_UPLOAD_BYTES + 1)
    segment = Segment(index=0, path=path, start_sec=0.0, duration_sec=90.0, size_bytes=MAX_UPLOAD_BYTES + 1)
    client = FakeClient([])

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(Transcriber(Settings(), client=client).transcribe(segment))

    assert excinfo.value.kind is TranscriptionErrorKind.TOO_LARGE
    assert client.audio.transcriptions.calls == []


def test_missing_and_tiny_segments_are_rejected(tmp_path: Path):
    client = FakeClient([])
    transcriber = Transcriber(Settings(), client=client)

    tiny = _segment(tmp_path, size=512)
    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(transcriber.transcribe(tiny))
    assert excinfo.value.kind is TranscriptionErrorKind.TOO_SMALL

    tiny.path.unlink()
    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(transcriber.transcribe(tiny))
    assert excinfo.value.kind is TranscriptionErrorKind.NOT_FOUND
    assert excinfo.value.kind.structural
    assert client.audio.transcriptions.calls == []


def test_service_error_keeps_status_and_body(tmp_path: Path):
    body = {"error": {"message": "Rate limit reached for model whisper-large-v3"}}
    client = FakeClient([_status_error(429, body)])

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(Transcriber(Settings(), client=client).transcribe(_segment(tmp_path)))

    error = excinfo.value
    assert error.kind is TranscriptionErrorKind.SERVICE_ERROR
    assert error.status_code == 429
    assert error.body == body
    assert "429 - Rate limit reached" in str(error)
    assert not error.kind.structural


def test_connection_failure_is_a_network_error(tmp_path: Path):
    client = FakeClient([APIConnectionError(request=httpx.Request("POST", URL))])

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(Transcriber(Settings(), client=client).transcribe(_segment(tmp_path)))

    assert excinfo.value.kind is TranscriptionErrorKind.NETWORK_ERROR


def test_unexpected_response_is_a_service_error(tmp_path: Path):
    response = httpx.Response(200, request=httpx.Request("POST", URL))
    client = FakeClient([APIResponseValidationError(response, "<html>", message="bad body")])

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(Transcriber(Settings(), client=client).transcribe(_segment(tmp_path)))

    assert excinfo.value.kind is TranscriptionErrorKind.SERVICE_ERROR
    assert "bad body" in str(excinfo.value)


def test_missing_credential_fails_the_segment_not_the_run(tmp_path: Path):
    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(Transcriber(Settings(api_key="")).transcribe(_segment(tmp_path)))

    assert excinfo.value.kind is TranscriptionErrorKind.SERVICE_ERROR
    assert "GROQ_API_KEY" in str(excinfo.value)


def test_unreadable_segment_is_not_found(tmp_path: Path, monkeypatch):
    client = FakeClient([])
    segment = _segment(tmp_path)

    def deny(self):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "read_bytes", deny)

    with pytest.raises(TranscriptionError) as excinfo:
        asyncio.run(Transcriber(Settings(), client=client).transcribe(segment))

    assert excinfo.value.kind is TranscriptionErrorKind.NOT_FOUND
    assert client.audio.transcriptions.calls == []


def test_clean_transcript_removes_echoed_prompt_case_insensitively():
    pattern = echo_pattern(DEFAULT_PROMPT)
    raw = "please  transcribe this audio\nin english. Good morning.\tIf the speaker is using another language, translate it to English."

    assert clean_transcript(raw, pattern) == "Good morning."
    assert clean_transcript("  a \n\n b  ") == "a b"
    assert echo_pattern("") is None
