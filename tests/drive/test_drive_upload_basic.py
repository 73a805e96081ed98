# SPDX-License-Identifier: GPL-3.0-or-later
# tests/drive/test_drive_upload_basic.py
from __future__ import annotations

import types
from pathlib import Path

import pytest
from googleapiclient.errors import HttpError

from drive_uploader.drive.upload import build_file_metadata, ensure_upload_file, guess_mime_type, upload_basic
from drive_uploader.exceptions import ConfigError, DriveUploadError


@pytest.fixture
def report(tmp_path: Path) -> Path:
    p = tmp_path / "report.pdf"
    p.write_bytes(b"%PDF-1.4 contenuto")
    return p


def test_multipart_upload_sends_metadata_and_media(service, report: Path):
    result = upload_basic(service, report, "Report Q3.pdf", None, "folder-123")

    assert result == {"id": "id1", "name": "Report Q3.pdf", "kind": "drive#file"}
    created = service.files_api.created[0]
    assert created["body"] == {"name": "Report Q3.pdf", "parents": ["folder-123"]}
    assert created["supportsAllDrives"] is True
    assert created["fields"] == "id, name, mimeType, kind"
    media = created["media_body"]
    assert media.mimetype() == "application/pdf"
    assert media.resumable() is False


def test_media_upload_applies_metadata_with_update(service, report: Path):
    result = upload_basic(service, report, "report.pdf", "application/pdf", "folder-123", "media")

    created = service.files_api.created[0]
    assert "body" not in created
    assert created["fields"] == "id"
    update = service.files_api.updated[0]
    assert update["fileId"] == "id1"
    assert update["body"] == {"name": "report.pdf"}
    assert update["addParents"] == "folder-123"
    assert result["name"] == "report.pdf"


def test_resumable_sdk_upload(service, report: Path):
    result = upload_basic(service, report, "", None, "folder-123", "resumable", chunk_size=262144)

    created = service.files_api.created[0]
    # nome vuoto → nome del file locale
    assert created["body"]["name"] == "report.pdf"
    assert created["media_body"].resumable() is True
    assert result["id"] == "id1"


def test_unknown_upload_type_is_config_error(service, report: Path):
    with pytest.raises(ConfigError):
        upload_basic(service, report, "x", None, "folder-123", "chunked")
    assert service.files_api.created == []


@pytest.mark.parametrize("bad", ["", "   ", None])
def test_invalid_path_is_rejected(service, bad):
    with pytest.raises(DriveUploadError) as ei:
        upload_basic(service, bad, "x", None, "folder-123")
    assert "Invalid file path" in str(ei.value)


def test_missing_file_is_rejected(service, tmp_path: Path):
    with pytest.raises(DriveUploadError):
        upload_basic(service, tmp_path / "assente.bin", "x", None, "folder-123")


def test_api_error_becomes_drive_upload_error(service, report: Path):
    service.files_api.errors.append(HttpError(types.SimpleNamespace(status=403, reason="Forbidden"), b"denied"))
    with pytest.raises(DriveUploadError) as ei:
        upload_basic(service, report, "report.pdf", None, "folder-123")
    assert ei.value.status == 403
    assert ei.value.file_path == report


def test_transient_api_error_is_retried(service, report: Path):
    service.files_api.errors.append(HttpError(types.SimpleNamespace(status=503, reason="Unavailable"), b"later"))
    result = upload_basic(service, report, "report.pdf", None, "folder-123")
    assert result["id"] == "id1"


@pytest.mark.parametrize("upload_type", ["multipart", "media"])
def test_max_attempts_limits_single_shot_retries(service, report: Path, upload_type):
    for _ in range(2):
        service.files_api.errors.append(HttpError(types.SimpleNamespace(status=503, reason="Unavailable"), b"later"))

    with pytest.raises(DriveUploadError) as ei:
        upload_basic(service, report, "report.pdf", None, "folder-123", upload_type, max_attempts=1)

    assert ei.value.status == 503
    assert service.files_api.created == []
    # un solo tentativo consumato: il secondo errore resta in coda
    assert len(service.files_api.errors) == 1


def test_retry_budget_exhausted_is_drive_upload_error(service, report: Path, monkeypatch):
    monkeypatch.setattr("drive_uploader.drive.client.backoff_delay", lambda *_a, **_k: 100.0)
    for _ in range(3):
        service.files_api.errors.append(HttpError(types.SimpleNamespace(status=503, reason="Unavailable"), b"later"))

    with pytest.raises(DriveUploadError) as ei:
        upload_basic(service, report, "report.pdf", None, "folder-123", max_attempts=5)

    assert "Budget di retry esaurito" in str(ei.value)
    assert service.files_api.created == []


def test_helpers():
    assert guess_mime_type("video.mp4") == "video/mp4"
    assert guess_mime_type("senza-estensione") == "application/octet-stream"
    assert guess_mime_type("a.pdf", "text/plain") == "text/plain"
    assert build_file_metadata("a.txt", None) == {"name": "a.txt"}
    with pytest.raises(DriveUploadError):
        ensure_upload_file("")
