from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "whisper-large-v3"
DEFAULT_PROMPT = (
    "Please transcribe this audio in English. "
    "If the speaker is using another language, translate it to English."
)

MIN_SEGMENT_BYTES = 1024
MAX_UPLOAD_BYTES = 25 * 1024 * 1024


class ConfigError(ValueError):
    pass


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True, frozen=True)
class Settings:
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    output_language: str = "en"
    prompt: str = DEFAULT_PROMPT
    temperature: float = 0.1
    request_timeout_sec: float = 600.0
    job_timeout_sec: float = 3600.0

    data_dir: Path = field(default_factory=lambda: Path.home() / ".chunkscribe")
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"

    segment_seconds: float = 90.0
    settle_delay_sec: float = 1.0
    min_segment_bytes: int = MIN_SEGMENT_BYTES
    max_upload_bytes: int = MAX_UPLOAD_BYTES

    coverage_tolerance_sec: float = 5.0
    min_fill_sec: float = 2.0
    coverage_warn_percent: float = 95.0

    max_attempts: int = 3
    retry_delay_sec: float = 3.0
    inter_segment_pause_sec: float = 2.0

    @classmethod
    def from_env(cls) -> "Settings":
        api_key = os.environ.get("GROQ_API_KEY", "").strip() or os.environ.get("OPENAI_API_KEY", "").strip()
        data_dir = os.environ.get("APP_DATA_DIR", "").strip()
        defaults = cls()
        return cls(
            api_key=api_key,
            base_url=os.environ.get("TRANSCRIBE_BASE_URL", "").strip() or DEFAULT_BASE_URL,
            model=os.environ.get("TRANSCRIBE_MODEL", "").strip() or DEFAULT_MODEL,
            output_language=os.environ.get("OUTPUT_LANGUAGE", "").strip() or "en",
            request_timeout_sec=_env_float("REQUEST_TIMEOUT_SEC", defaults.request_timeout_sec),
            job_timeout_sec=_env_float("JOB_TIMEOUT_SEC", defaults.job_timeout_sec),
            data_dir=Path(data_dir).expanduser() if data_dir else defaults.data_dir,
            ffmpeg_bin=os.environ.get("FFMPEG_BIN", "").strip() or "ffmpeg",
            ffprobe_bin=os.environ.get("FFPROBE_BIN", "").strip() or "ffprobe",
            segment_seconds=_env_float("SEGMENT_SECONDS", defaults.segment_seconds),
        )

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError("GROQ_API_KEY is missing. Set it in the environment or in a .env file.")
        return self.api_key

    def with_overrides(self, **changes: object) -> "Settings":
        return replace(self, **changes)
