# SPDX-License-Identifier: GPL-3.0-or-later
# tests/test_cli.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

import drive_uploader.cli as cli
from drive_uploader.cli_runner import run_cli_orchestrator
from drive_uploader.exceptions import ResumeError
from drive_uploader.uploader import DriveUploader
from tests._helpers.drive_fakes import SESSION_URI


def _run(argv: list[str]) -> int:
    return run_cli_orchestrator("drive-uploader", cli._parse_args, cli.main, argv)


@pytest.fixture
def wired(monkeypatch, server, service):
    """DriveUploader reale collegato al server e al service finti."""

    def _factory(**kwargs: Any) -> DriveUploader:
        return DriveUploader(http=server, service=service, **kwargs)

    monkeypatch.setattr(cli, "DriveUploader", _factory)
    return server


def test_upload_basic_prints_file_id(wired, service, make_file, capsys):
    path = make_file(100, name="report.pdf")

    code = _run(["upload", str(path), "--folder", "folder-9"])

    assert code == 0
    assert capsys.readouterr().out.strip() == "id1"
    created = service.files_api.created[0]
    assert created["body"] == {"name": "report.pdf", "parents": ["folder-9"]}


def test_upload_media_with_name_and_mime(wired, service, make_file, capsys):
    path = make_file(100, name="raw.bin")

    code = _run(["upload", str(path), "--folder", "f", "--name", "dati.csv", "--mime", "text/csv", "--upload-type", "media"])

    assert code == 0
    assert service.files_api.updated[0]["body"] == {"name": "dati.csv"}
    assert service.files_api.created[0]["media_body"].mimetype() == "text/csv"


def test_upload_resumable_json_output(wired, make_file, chunk, capsys):
    path = make_file(chunk + 5)

    code = _run(["upload", str(path), "--folder", "f", "--resumable", "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["id"] == "file-123"
    assert payload["name"] == "video.mp4"
    assert bytes(wired.received) == path.read_bytes()


def test_resume_command(wired, make_file, chunk, capsys):
    path = make_file(2 * chunk)
    wired.received.extend(path.read_bytes()[:chunk])

    code = _run(["resume", SESSION_URI, str(path)])

    assert code == 0
    assert capsys.readouterr().out.strip() == "file-123"


def test_resume_expired_session_exit_code(wired, make_file, capsys):
    path = make_file(10)
    wired.injected = [404]

    code = _run(["resume", SESSION_URI, str(path)])

    assert code == 24
    assert "you must restart" in capsys.readouterr().err


def test_invalid_chunk_size_is_config_error(wired, make_file, capsys):
    path = make_file(10)
    code = _run(["upload", str(path), "--folder", "f", "--resumable", "--chunk-size", "1000"])
    assert code == 2
    assert "chunk_size" in capsys.readouterr().err


def test_missing_folder_is_config_error(wired, make_file):
    assert _run(["upload", str(make_file(10))]) == 2


def test_missing_file_is_upload_error(wired, tmp_path: Path, capsys):
    code = _run(["upload", str(tmp_path / "assente.bin"), "--folder", "f"])
    assert code == 22
    assert "Invalid file path" in capsys.readouterr().err


def test_interrupt_prints_resume_hint(monkeypatch, server, make_file, chunk, capsys):
    path = make_file(3 * chunk)

    def _factory(**kwargs: Any) -> DriveUploader:
        up = DriveUploader(http=server, **kwargs)

        def _on_first_chunk(*_a: Any, **_k: Any) -> Any:
            raise KeyboardInterrupt

        monkeypatch.setattr(up, "start_resumable", _on_first_chunk)
        return up

    monkeypatch.setattr(cli, "DriveUploader", _factory)

    code = _run(["upload", str(path), "--folder", "f", "--resumable"])

    assert code == 130
    err = capsys.readouterr().err
    assert "drive-uploader resume" in err
    assert SESSION_URI in err


def test_orchestrator_maps_domain_errors(capsys):
    def _main(_args: Any) -> int:
        raise ResumeError("Bad request", response=("", 400))

    code = run_cli_orchestrator("drive-uploader", lambda _argv: cli._parse_args(["resume", "u", "p"]), _main)

    assert code == 24
    assert "Bad request" in capsys.readouterr().err


def test_run_raises_system_exit(wired, make_file):
    with pytest.raises(SystemExit) as ei:
        cli.run(["upload", str(make_file(10)), "--folder", "f"])
    assert ei.value.code == 0


def test_log_file_receives_structured_events(wired, make_file, tmp_path: Path):
    log_file = tmp_path / "upload.log"
    code = _run(["upload", str(make_file(10)), "--folder", "f", "--log-file", str(log_file)])
    assert code == 0
    text = log_file.read_text(encoding="utf-8")
    assert "phase_completed" in text
    assert "phase=upload" in text


def test_log_file_collects_drive_module_events(wired, make_file, tmp_path: Path):
    log_file = tmp_path / "upload.log"
    code = _run(["upload", str(make_file(10, name="a.txt")), "--folder", "f", "--log-file", str(log_file)])
    assert code == 0
    text = log_file.read_text(encoding="utf-8")
    # evento emesso dal logger di drive_uploader.drive.upload, non dalla CLI
    assert "drive_uploader.drive.upload: drive.upload.basic.done" in text
    assert "drive_uploader.cli: phase_completed" in text
