from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable
from uuid import uuid4

from .audio import SegmentationError, Segmenter
from .coverage import CoverageValidator
from .groq_engine import Transcriber
from .models import PipelineResult, ProcessingSummary, SourceMedia, TranscriptionOutcome
from .paths import remove_request_dir, segments_dir
from .retry import transcribe_with_retry
from .settings import Settings

logger = logging.getLogger(__name__)

TRANSCRIPT_SEPARATOR = "\n\n"

ProgressCallback = Callable[[dict[str, Any]], None]


class PipelineError(RuntimeError):
    pass


class PipelineTimeoutError(PipelineError):
    pass


def build_transcript(outcomes: list[TranscriptionOutcome]) -> str:
    return TRANSCRIPT_SEPARATOR.join(o.text for o in sorted(outcomes, key=lambda o: o.index))


def progress_payload(
    *,
    request_id: str,
    stage: str,
    percent: float,
    eta_seconds: int | None,
    chunks_done: int,
    chunks_total: int,
    message: str,
) -> dict[str, object]:
    return {
        "requestId": request_id,
        "stage": stage,
        "percent": round(max(0.0, min(100.0, percent)), 2),
        "etaSeconds": eta_seconds,
        "chunksDone": chunks_done,
        "chunksTotal": chunks_total,
        "message": message,
    }


class TranscriptionPipeline:
    """Segment a source file, transcribe every segment in order and join the results.

    Segments are transcribed one at a time. A segment that cannot be
    transcribed becomes a placeholder in the transcript; only a failure to
    produce any segments at all raises ``PipelineError``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        segmenter: Segmenter | None = None,
        validator: CoverageValidator | None = None,
        transcriber: Transcriber | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.settings = settings
        self.segmenter = segmenter or Segmenter(settings, sleep=sleep)
        self.validator = validator or CoverageValidator(settings, self.segmenter)
        self.transcriber = transcriber
        self.sleep = sleep
        self.on_progress = on_progress

    async def process(
        self,
        source: SourceMedia,
        *,
        detect_language: bool = True,
        request_id: str | None = None,
    ) -> PipelineResult:
        request_id = request_id or str(uuid4())
        try:
            return await asyncio.wait_for(
                self._run(source, request_id, detect_language),
                timeout=self.settings.job_timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            raise PipelineTimeoutError(
                f"Processing {source.display_name} exceeded {self.settings.job_timeout_sec:g}s"
            ) from exc
        finally:
            source.path.unlink(missing_ok=True)
            remove_request_dir(self.settings.data_dir, request_id)

    def _report(self, request_id: str, **fields: Any) -> None:
        if self.on_progress is not None:
            self.on_progress(progress_payload(request_id=request_id, **fields))

    def _transcriber(self, detect_language: bool) -> Transcriber:
        if self.transcriber is not None:
            return self.transcriber
        return Transcriber(self.settings, detect_language=detect_language)

    async def _run(self, source: SourceMedia, request_id: str, detect_language: bool) -> PipelineResult:
        logger.info("Processing %s (%s bytes), language detection %s", source.display_name, source.size_bytes, detect_language)
        work_dir = segments_dir(self.settings.data_dir, request_id)
        segment_sec = self.settings.segment_seconds

        self._report(
            request_id,
            stage="segment",
            percent=3,
            eta_seconds=None,
            chunks_done=0,
            chunks_total=0,
            message="Splitting audio into segments...",
        )
        try:
            segments = await self.segmenter.segment(source.path, work_dir, segment_sec)
        except SegmentationError as exc:
            raise PipelineError(str(exc)) from exc

        segments, coverage = await self.validator.validate_and_fill(segments, source.path, work_dir, segment_sec)
        source.duration_sec = coverage.total_duration_sec
        total = len(segments)

        transcriber = self._transcriber(detect_language)
        outcomes: list[TranscriptionOutcome] = []
        started = time.monotonic()

        for position, segment in enumerate(segments):
            self._report(
                request_id,
                stage="transcribe",
                percent=10 + (position / max(total, 1)) * 85,
                eta_seconds=None,
                chunks_done=position,
                chunks_total=total,
                message=f"Transcribing segment {segment.number}/{total}...",
            )
            outcome = await transcribe_with_retry(
                segment,
                transcriber.transcribe,
                max_attempts=self.settings.max_attempts,
                delay_sec=self.settings.retry_delay_sec,
                sleep=self.sleep,
            )
            outcomes.append(outcome)
            segment.path.unlink(missing_ok=True)

            if not outcome.succeeded:
                logger.warning("Segment %s failed after %s attempts", segment.number, outcome.attempts)

            done = position + 1
            elapsed = time.monotonic() - started
            eta = int(elapsed / done * (total - done))
            self._report(
                request_id,
                stage="transcribe",
                percent=10 + (done / max(total, 1)) * 85,
                eta_seconds=eta,
                chunks_done=done,
                chunks_total=total,
                message=f"Segment {segment.number}/{total} {'done' if outcome.succeeded else 'failed'}",
            )

            if done < total:
                await self.sleep(self.settings.inter_segment_pause_sec)

        summary = ProcessingSummary.from_outcomes(outcomes)
        logger.info(
            "Transcribed %s/%s segments of %s (%s%% success)",
            summary.succeeded,
            summary.total_segments,
            source.display_name,
            summary.success_percentage,
        )
        return PipelineResult(
            source_name=source.display_name,
            transcript=build_transcript(outcomes),
            summary=summary,
            outcomes=outcomes,
            coverage=coverage,
            detect_language=detect_language,
        )
