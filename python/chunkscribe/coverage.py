from __future__ import annotations

import logging
import math
from dataclasses import replace
from pathlib import Path

from .audio import MediaEngineError, Runner, Segmenter, order_segments, parse_segment_slot, probe_duration_seconds, segment_filename
from .models import CoverageReport, Segment
from .settings import Settings

logger = logging.getLogger(__name__)


class CoverageGapWarning(UserWarning):
    pass


def covered_seconds(segments: list[Segment], total_duration_sec: float) -> float:
    covered = 0.0
    for segment in segments:
        covered += max(0.0, min(segment.end_sec, total_duration_sec) - segment.start_sec)
    return covered


def missing_slots(segments: list[Segment], total_duration_sec: float, segment_sec: float) -> list[int]:
    present = {parse_segment_slot(s.path) for s in segments}
    expected = math.ceil(total_duration_sec / segment_sec)
    return [slot for slot in range(expected) if slot not in present]


class CoverageValidator:
    def __init__(self, settings: Settings, segmenter: Segmenter, *, runner: Runner | None = None) -> None:
        self.settings = settings
        self.segmenter = segmenter
        self.runner = runner or segmenter.runner

    async def probe(self, source_path: Path) -> float | None:
        try:
            return await probe_duration_seconds(
                source_path,
                ffprobe_bin=self.settings.ffprobe_bin,
                runner=self.runner,
            )
        except (MediaEngineError, ValueError) as exc:
            logger.warning("Could not read duration of %s, skipping coverage check: %s", source_path.name, exc)
            return None

    async def validate_and_fill(
        self,
        segments: list[Segment],
        source_path: Path,
        work_dir: Path,
        target_duration_sec: float | None = None,
    ) -> tuple[list[Segment], CoverageReport]:
        segment_sec = target_duration_sec or self.settings.segment_seconds
        total = await self.probe(source_path)
        if total is None:
            return segments, CoverageReport(
                total_duration_sec=None,
                covered_sec=len(segments) * segment_sec,
            )

        logger.info(
            "Source %s is %.2fs, expecting %s segments",
            source_path.name,
            total,
            math.ceil(total / segment_sec),
        )
        # The last slot is usually shorter than the target duration.
        segments = [
            replace(s, duration_sec=max(0.0, min(s.duration_sec, total - s.start_sec)))
            for s in segments
        ]
        report = CoverageReport(total_duration_sec=total, covered_sec=0.0)

        missing = total - len(segments) * segment_sec
        if missing > self.settings.coverage_tolerance_sec:
            logger.warning("Missing %.2fs of audio, creating additional segments", missing)
            segments = await self._fill(segments, source_path, work_dir, total, segment_sec, report)

        segments = order_segments(segments)
        report.covered_sec = covered_seconds(segments, total)

        percentage = report.percentage or 0.0
        logger.info("Final coverage: %.1f%% (%s segments)", percentage, len(segments))
        if percentage < self.settings.coverage_warn_percent:
            warning = CoverageGapWarning(
                f"Audio coverage is only {percentage:.1f}%. Some content may be missing."
            )
            report.warnings.append(warning)
            logger.warning("%s", warning)
        return segments, report

    async def _fill(
        self,
        segments: list[Segment],
        source_path: Path,
        work_dir: Path,
        total: float,
        segment_sec: float,
        report: CoverageReport,
    ) -> list[Segment]:
        filled = list(segments)
        for slot in missing_slots(segments, total, segment_sec):
            start = slot * segment_sec
            span = min(segment_sec, total - start)
            if span < self.settings.min_fill_sec:
                continue

            out_path = work_dir / segment_filename(slot)
            logger.info("Creating additional segment for %.2fs - %.2fs", start, start + span)
            try:
                await self.segmenter.render(source_path, out_path, start, span)
                size = out_path.stat().st_size
            except (MediaEngineError, OSError) as exc:
                warning = CoverageGapWarning(f"Failed to create segment at {start:.2f}s: {exc}")
                report.warnings.append(warning)
                logger.warning("%s", warning)
                break

            if size <= self.settings.min_segment_bytes:
                logger.warning("Skipping additional segment at %.2fs: %s bytes", start, size)
                out_path.unlink(missing_ok=True)
                continue

            filled.append(
                Segment(
                    index=len(filled),
                    path=out_path,
                    start_sec=start,
                    duration_sec=span,
                    size_bytes=size,
                )
            )
            report.synthesized += 1
        return filled
