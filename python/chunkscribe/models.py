from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class SourceMedia:
    path: Path
    display_name: str
    size_bytes: int
    duration_sec: float | None = None

    @classmethod
    def from_path(cls, path: Path, display_name: str | None = None) -> "SourceMedia":
        return cls(
            path=path,
            display_name=display_name or path.name,
            size_bytes=path.stat().st_size,
        )


@dataclass(slots=True)
class Segment:
    index: int
    path: Path
    start_sec: float
    duration_sec: float
    size_bytes: int

    @property
    def end_sec(self) -> float:
        return self.start_sec + self.duration_sec

    @property
    def number(self) -> int:
        return self.index + 1


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True)
class TranscriptionOutcome:
    index: int
    status: OutcomeStatus
    text: str
    attempts: int
    failure: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass(slots=True)
class ProcessingSummary:
    total_segments: int
    succeeded: int
    failed_indices: list[int]
    success_percentage: int

    @classmethod
    def from_outcomes(cls, outcomes: list[TranscriptionOutcome]) -> "ProcessingSummary":
        ordered = sorted(outcomes, key=lambda o: o.index)
        succeeded = sum(1 for o in ordered if o.succeeded)
        total = len(ordered)
        percentage = int(succeeded * 100 / total + 0.5) if total else 0
        return cls(
            total_segments=total,
            succeeded=succeeded,
            failed_indices=[o.index for o in ordered if not o.succeeded],
            success_percentage=percentage,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalChunks": self.total_segments,
            "processedChunks": self.succeeded,
            "failedChunks": [idx + 1 for idx in self.failed_indices],
            "successPercentage": self.success_percentage,
        }


@dataclass(slots=True)
class CoverageReport:
    total_duration_sec: float | None
    covered_sec: float
    synthesized: int = 0
    warnings: list[Warning] = field(default_factory=list)

    @property
    def percentage(self) -> float | None:
        if not self.total_duration_sec:
            return None
        return min(100.0, self.covered_sec / self.total_duration_sec * 100)

    def to_payload(self) -> dict[str, Any]:
        percentage = self.percentage
        return {
            "durationSec": round(self.total_duration_sec, 3) if self.total_duration_sec else None,
            "coveredSec": round(self.covered_sec, 3),
            "coveragePercent": round(percentage, 1) if percentage is not None else None,
            "synthesizedChunks": self.synthesized,
            "warnings": [str(w) for w in self.warnings],
        }


@dataclass(slots=True)
class PipelineResult:
    source_name: str
    transcript: str
    summary: ProcessingSummary
    outcomes: list[TranscriptionOutcome]
    coverage: CoverageReport
    detect_language: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "sourceName": self.source_name,
            "detectLanguage": self.detect_language,
            "transcript": self.transcript,
            "summary": self.summary.to_payload(),
            "coverage": self.coverage.to_payload(),
            "chunks": [
                {
                    "index": o.index + 1,
                    "success": o.succeeded,
                    "attempts": o.attempts,
                    "transcript": o.text,
                }
                for o in sorted(self.outcomes, key=lambda o: o.index)
            ],
        }
