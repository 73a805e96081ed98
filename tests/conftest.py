# SPDX-License-Identifier: GPL-3.0-or-later
# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
for candidate in (REPO_ROOT, SRC_ROOT):
    if str(candidate) not in sys.path:
        sys.path.insert(0, str(candidate))

from drive_uploader.constants import CHUNK_GRANULARITY
from drive_uploader.settings import UploaderSettings
from tests._helpers.drive_fakes import FakeResumableServer, FakeService

# Variabili che non devono filtrare dall'ambiente dello sviluppatore nei test
_ENV_KEYS = (
    "DRIVE_FOLDER_ID",
    "DRIVE_UPLOAD_CHUNK_SIZE",
    "SERVICE_ACCOUNT_FILE",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "DRIVE_IMPERSONATE_SUBJECT",
    "DRIVE_HTTP_TIMEOUT_S",
    "DRIVE_MAX_ATTEMPTS",
    "LOG_REDACTION",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """ENV pulito e nessuna attesa reale nei backoff."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("drive_uploader.env_utils._ENV_LOADED", True)
    monkeypatch.setattr("time.sleep", lambda _s: None)


@pytest.fixture
def settings() -> UploaderSettings:
    return UploaderSettings(folder_id="folder-123", max_attempts=3, http_timeout_s=5.0)


@pytest.fixture
def server() -> FakeResumableServer:
    return FakeResumableServer()


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory: crea un file di `size` byte con contenuto deterministico."""

    def _make(size: int, name: str = "video.mp4") -> Path:
        pattern = bytes(range(256))
        data = (pattern * (size // 256 + 1))[:size]
        p = tmp_path / name
        p.write_bytes(data)
        return p

    return _make


@pytest.fixture
def chunk() -> int:
    return CHUNK_GRANULARITY
