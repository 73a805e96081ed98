# SPDX-License-Identifier: GPL-3.0-or-later
# tests/test_exceptions.py
from __future__ import annotations

from pathlib import Path

import pytest

from drive_uploader.exceptions import (
    EXIT_CODES,
    ConfigError,
    DriveUploadError,
    ResumeError,
    TransportError,
    UploaderError,
    exit_code_for,
)


def test_str_includes_safe_context_only():
    err = DriveUploadError(
        "Upload fallito",
        file_path=Path("/home/utente/privato/video.mp4"),
        drive_id="1AbCdEfGhIjKlMnOp",
        status=403,
    )
    msg = str(err)
    assert msg.startswith("Upload fallito [")
    assert "file=video.mp4" in msg
    assert "/home/utente" not in msg
    # solo gli ultimi 6 caratteri dell'ID
    assert "drive_id=…KlMnOp" in msg
    assert "status=403" in msg


def test_str_without_context_is_plain_message():
    assert str(ConfigError("chunk_size non valido")) == "chunk_size non valido"
    assert str(UploaderError()) == "UploaderError"


def test_resume_error_carries_response_and_status():
    err = ResumeError("Bad request", response=('{"error": "x"}', 400))
    assert err.response == ('{"error": "x"}', 400)
    assert err.status == 400
    assert isinstance(err, DriveUploadError)
    assert "status=400" in str(err)


def test_resume_error_without_response_has_no_status():
    err = ResumeError("sessione persa")
    assert err.response is None
    assert err.status is None
    assert str(err) == "sessione persa"
    # status esplicito senza risposta grezza
    assert ResumeError("x", status=503).status == 503


def test_hierarchy():
    assert issubclass(TransportError, DriveUploadError)
    assert issubclass(DriveUploadError, UploaderError)
    assert issubclass(ConfigError, UploaderError)


@pytest.mark.parametrize(
    "exc, code",
    [
        (UploaderError("x"), 1),
        (ConfigError("x"), 2),
        (DriveUploadError("x"), 22),
        (TransportError("x"), 23),
        (ResumeError("x"), 24),
        (RuntimeError("x"), EXIT_CODES["UploaderError"]),
    ],
)
def test_exit_code_for(exc, code):
    assert exit_code_for(exc) == code
