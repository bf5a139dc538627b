from __future__ import annotations

import logging
from typing import Any

from openai import APIConnectionError, APIStatusError

from .groq_engine import build_client
from .settings import Settings

logger = logging.getLogger(__name__)

AUDIO_MODEL_MARKERS = ("whisper", "distil")


def is_audio_model(model_id: str) -> bool:
    return any(marker in model_id for marker in AUDIO_MODEL_MARKERS)


async def check_api(settings: Settings, client: Any = None) -> dict[str, Any]:
    """List the service's models to prove the credential works.

    Returns a payload with ``success`` and the transcription models on
    success, or ``error`` with the status and message otherwise.
    """
    if client is None:
        client = build_client(settings)

    try:
        page = await client.models.list()
    except APIStatusError as exc:
        logger.warning("Model listing failed with %s", exc.status_code)
        return {"error": True, "status": exc.status_code, "message": exc.body or exc.message}
    except APIConnectionError as exc:
        return {"error": True, "message": str(exc)}

    models = [
        {"id": model.id, "owned_by": getattr(model, "owned_by", None)}
        for model in page.data
        if is_audio_model(model.id)
    ]
    return {
        "success": True,
        "message": "API key is working!",
        "availableAudioModels": models,
    }
