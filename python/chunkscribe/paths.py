from __future__ import annotations

import shutil
from pathlib import Path


def requests_dir(data_dir: Path) -> Path:
    path = data_dir / "requests"
    path.mkdir(parents=True, exist_ok=True)
    return path


def request_dir(data_dir: Path, request_id: str) -> Path:
    path = requests_dir(data_dir) / request_id
    path.mkdir(parents=True, exist_ok=True)
    return path


def segments_dir(data_dir: Path, request_id: str) -> Path:
    path = request_dir(data_dir, request_id) / "segments"
    path.mkdir(parents=True, exist_ok=True)
    return path


def uploads_dir(data_dir: Path, request_id: str) -> Path:
    path = request_dir(data_dir, request_id) / "upload"
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_request_dir(data_dir: Path, request_id: str) -> None:
    shutil.rmtree(data_dir / "requests" / request_id, ignore_errors=True)
