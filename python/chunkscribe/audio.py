from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable

from .models import Segment
from .settings import Settings

logger = logging.getLogger(__name__)

SEGMENT_PATTERN = re.compile(r"^segment_(\d+)\.wav$")
AUDIO_FILTERS = ("volume=2.0", "highpass=f=80", "lowpass=f=8000", "loudnorm")
SAMPLE_RATE_HZ = 16000

Runner = Callable[[list[str]], Awaitable[bytes]]


class MediaEngineError(RuntimeError):
    pass


class SegmentationError(RuntimeError):
    pass


async def run(cmd: list[str]) -> bytes:
    logger.debug("Running %s", " ".join(cmd))
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise MediaEngineError(f"{cmd[0]} not found: {exc}") from exc

    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            logger.warning("Stopping %s after cancellation", Path(cmd[0]).name)
            process.kill()
            await process.wait()
        raise
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip().splitlines()
        tail = message[-1] if message else f"exit code {process.returncode}"
        raise MediaEngineError(f"{Path(cmd[0]).name} failed: {tail}")
    return stdout


async def probe_duration_seconds(source: Path, *, ffprobe_bin: str = "ffprobe", runner: Runner = run) -> float:
    cmd = [
        ffprobe_bin,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        str(source),
    ]
    stdout = await runner(cmd)
    payload = json.loads(stdout.decode("utf-8") or "{}")
    duration = float(payload.get("format", {}).get("duration", 0) or 0)
    if duration <= 0:
        raise MediaEngineError(f"Could not read duration of {source.name}")
    return duration


def segment_filename(slot: int) -> str:
    return f"segment_{slot:03d}.wav"


def parse_segment_slot(path: Path) -> int | None:
    match = SEGMENT_PATTERN.match(path.name)
    if not match:
        return None
    return int(match.group(1))


def normalize_args() -> list[str]:
    return [
        "-vn",
        "-af",
        ",".join(AUDIO_FILTERS),
        "-ac",
        "1",
        "-ar",
        str(SAMPLE_RATE_HZ),
        "-c:a",
        "pcm_s16le",
    ]


def split_command(ffmpeg_bin: str, source: Path, out_dir: Path, segment_sec: float) -> list[str]:
    return [
        ffmpeg_bin,
        "-y",
        "-i",
        str(source),
        *normalize_args(),
        "-f",
        "segment",
        "-segment_time",
        f"{segment_sec:g}",
        "-segment_format",
        "wav",
        "-reset_timestamps",
        "1",
        "-avoid_negative_ts",
        "make_zero",
        str(out_dir / "segment_%03d.wav"),
    ]


def render_command(ffmpeg_bin: str, source: Path, out_path: Path, start_sec: float, duration_sec: float) -> list[str]:
    return [
        ffmpeg_bin,
        "-y",
        "-ss",
        f"{start_sec:.3f}",
        "-t",
        f"{duration_sec:.3f}",
        "-i",
        str(source),
        *normalize_args(),
        str(out_path),
    ]


def list_segment_files(work_dir: Path) -> list[Path]:
    files = [p for p in work_dir.iterdir() if p.is_file() and parse_segment_slot(p) is not None]
    return sorted(files, key=lambda p: parse_segment_slot(p) or 0)


def clear_stale_segments(work_dir: Path) -> int:
    removed = 0
    for path in list_segment_files(work_dir):
        path.unlink(missing_ok=True)
        removed += 1
    return removed


def order_segments(segments: list[Segment]) -> list[Segment]:
    """Sort by the slot embedded in each file name and renumber from 0."""
    ordered = sorted(segments, key=lambda s: (parse_segment_slot(s.path) or 0, s.start_sec))
    return [replace(segment, index=idx) for idx, segment in enumerate(ordered)]


class Segmenter:
    def __init__(
        self,
        settings: Settings,
        *,
        runner: Runner = run,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.sleep = sleep

    async def segment(self, source_path: Path, work_dir: Path, target_duration_sec: float | None = None) -> list[Segment]:
        segment_sec = target_duration_sec or self.settings.segment_seconds
        work_dir.mkdir(parents=True, exist_ok=True)

        stale = clear_stale_segments(work_dir)
        if stale:
            logger.info("Removed %s stale segment files from %s", stale, work_dir)

        try:
            await self.runner(split_command(self.settings.ffmpeg_bin, source_path, work_dir, segment_sec))
        except MediaEngineError as exc:
            raise SegmentationError(f"Audio splitting failed: {exc}") from exc

        # The segment muxer may still be flushing the last file when ffmpeg exits.
        await self.sleep(self.settings.settle_delay_sec)

        segments = self.collect(work_dir, segment_sec)
        if not segments:
            raise SegmentationError(f"No usable audio segments were produced from {source_path.name}")
        logger.info("Split %s into %s segments of %ss", source_path.name, len(segments), f"{segment_sec:g}")
        return segments

    def collect(self, work_dir: Path, segment_sec: float) -> list[Segment]:
        collected: list[Segment] = []
        for path in list_segment_files(work_dir):
            size = path.stat().st_size
            slot = parse_segment_slot(path) or 0
            if size <= self.settings.min_segment_bytes:
                logger.warning("Discarding %s (%s bytes)", path.name, size)
                path.unlink(missing_ok=True)
                continue
            collected.append(
                Segment(
                    index=len(collected),
                    path=path,
                    start_sec=slot * segment_sec,
                    duration_sec=segment_sec,
                    size_bytes=size,
                )
            )
        return collected

    async def render(self, source_path: Path, out_path: Path, start_sec: float, duration_sec: float) -> None:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        await self.runner(render_command(self.settings.ffmpeg_bin, source_path, out_path, start_sec, duration_sec))
