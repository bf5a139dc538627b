#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import shutil
import sys
from pathlib import Path
from uuid import uuid4

from dotenv import load_dotenv

# Ensure local package is importable when running from source.
SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

from chunkscribe.diagnostics import check_api
from chunkscribe.exporters import export_docx, export_txt, transcript_filename
from chunkscribe.models import SourceMedia
from chunkscribe.paths import remove_request_dir, uploads_dir
from chunkscribe.pipeline import PipelineError, TranscriptionPipeline
from chunkscribe.settings import ConfigError, Settings

logger = logging.getLogger("chunkscribe.worker")


def emit(event_type: str, payload: object) -> None:
    print(json.dumps({"type": event_type, "payload": payload}, ensure_ascii=False), flush=True)


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def stage_upload(settings: Settings, source_path: Path, request_id: str) -> SourceMedia:
    """Copy the source into the request's upload area; the pipeline owns and deletes the copy."""
    target = uploads_dir(settings.data_dir, request_id) / source_path.name
    shutil.copy2(source_path, target)
    return SourceMedia.from_path(target, display_name=source_path.name)


def export_target(path: Path, source_name: str, suffix: str) -> Path:
    if path.is_dir():
        return path / transcript_filename(source_name, suffix)
    return path


def command_run_job(args: argparse.Namespace) -> int:
    request_id = args.request_id or str(uuid4())
    try:
        settings = Settings.from_env()
        if args.segment_seconds:
            settings = settings.with_overrides(segment_seconds=float(args.segment_seconds))
    except ConfigError as exc:
        emit("error", {"requestId": request_id, "message": str(exc)})
        return 1

    source_path = Path(args.source).expanduser().resolve()
    if not source_path.exists():
        emit("error", {"requestId": request_id, "message": f"Source file not found: {source_path}"})
        return 1

    try:
        settings.require_api_key()
    except ConfigError as exc:
        emit("error", {"requestId": request_id, "message": str(exc)})
        return 1

    try:
        source = stage_upload(settings, source_path, request_id)
    except OSError as exc:
        remove_request_dir(settings.data_dir, request_id)
        emit("error", {"requestId": request_id, "message": f"Could not stage upload: {exc}"})
        return 1

    pipeline = TranscriptionPipeline(settings, on_progress=lambda payload: emit("progress", payload))
    try:
        result = asyncio.run(
            pipeline.process(source, detect_language=args.detect_language, request_id=request_id)
        )
    except PipelineError as exc:
        logger.error("Processing %s failed: %s", source_path.name, exc)
        emit("error", {"requestId": request_id, "message": str(exc)})
        return 1

    payload = result.to_payload()
    payload["requestId"] = request_id

    try:
        if args.export_txt:
            txt_path = export_target(Path(args.export_txt), source_path.name, ".txt")
            export_txt(result, txt_path)
            payload["txtPath"] = str(txt_path)
        if args.export_docx:
            docx_path = export_target(Path(args.export_docx), source_path.name, ".docx")
            export_docx(result, docx_path)
            payload["docxPath"] = str(docx_path)
    except (OSError, RuntimeError) as exc:
        logger.error("Export of %s failed: %s", source_path.name, exc)
        emit("error", {"requestId": request_id, "message": f"Export failed: {exc}"})
        return 1

    emit("result", payload)
    return 0


def command_check_api(_args: argparse.Namespace) -> int:
    try:
        payload = asyncio.run(check_api(Settings.from_env()))
    except ConfigError as exc:
        payload = {"error": True, "message": str(exc)}
    emit("result", payload)
    return 0 if payload.get("success") else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="chunkscribe worker")
    sub = parser.add_subparsers(dest="command", required=True)

    run_job = sub.add_parser("run-job")
    run_job.add_argument("--source", required=True)
    run_job.add_argument("--request-id", required=False)
    run_job.add_argument("--segment-seconds", type=float, required=False)
    run_job.add_argument(
        "--detect-language",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="auto-detect the source language and translate into the output language",
    )
    run_job.add_argument("--export-txt", required=False)
    run_job.add_argument("--export-docx", required=False)
    run_job.set_defaults(func=command_run_job)

    check = sub.add_parser("check-api")
    check.set_defaults(func=command_check_api)

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(override=False)
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
