from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Awaitable, Callable

from .groq_engine import TranscriptionError, TranscriptionErrorKind
from .models import OutcomeStatus, Segment, TranscriptionOutcome

logger = logging.getLogger(__name__)

FAILURE_LABELS = {
    TranscriptionErrorKind.NOT_FOUND: "file not found",
    TranscriptionErrorKind.TOO_SMALL: "too small or empty",
    TranscriptionErrorKind.TOO_LARGE: "exceeds upload limit",
    TranscriptionErrorKind.SERVICE_ERROR: "service error",
    TranscriptionErrorKind.NETWORK_ERROR: "network error",
}


def placeholder(segment: Segment, attempts: int, kind: TranscriptionErrorKind) -> str:
    noun = "attempt" if attempts == 1 else "attempts"
    return (
        f"[MISSING: Segment {segment.number} failed to transcribe after {attempts} {noun} "
        f"({FAILURE_LABELS[kind]})]"
    )


async def transcribe_with_retry(
    segment: Segment,
    transcribe: Callable[[Segment], Awaitable[str]],
    *,
    max_attempts: int = 3,
    delay_sec: float = 3.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> TranscriptionOutcome:
    failures: Counter[TranscriptionErrorKind] = Counter()
    attempts = 0

    while attempts < max_attempts:
        attempts += 1
        try:
            text = await transcribe(segment)
        except TranscriptionError as exc:
            failures[exc.kind] += 1
            logger.warning(
                "Segment %s attempt %s/%s failed: %s",
                segment.number,
                attempts,
                max_attempts,
                exc,
            )
            if exc.kind.structural:
                break
            if attempts < max_attempts:
                await sleep(delay_sec)
            continue

        return TranscriptionOutcome(
            index=segment.index,
            status=OutcomeStatus.SUCCESS,
            text=text,
            attempts=attempts,
        )

    dominant = failures.most_common(1)[0][0] if failures else TranscriptionErrorKind.SERVICE_ERROR
    return TranscriptionOutcome(
        index=segment.index,
        status=OutcomeStatus.FAILED,
        text=placeholder(segment, attempts, dominant),
        attempts=attempts,
        failure=dominant.value,
    )
