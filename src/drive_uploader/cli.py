#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-3.0-or-later
"""CLI `drive-uploader`.

Comandi:
- upload PATH [--folder ID] [--name N] [--mime M] [--upload-type T] [--resumable]
  [--chunk-size N] [--config FILE] [--json] [--log-file FILE]
- resume URI PATH [--folder ID] [--config FILE] [--json]

Con `--resumable`, un Ctrl+C stampa su stderr la session URI da passare a `resume`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .cli_runner import run_cli_orchestrator
from .constants import UPLOAD_TYPES
from .drive.client import drive_metrics_scope, get_retry_metrics
from .drive.resumable import ChunkProgress
from .drive.upload import ensure_upload_file
from .logging_utils import attach_log_file, get_structured_logger, mask_session_uri, phase_scope
from .settings import UploaderSettings, load_settings
from .uploader import DriveUploader


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drive-uploader", description="Upload di file su Google Drive")
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--folder", help="ID cartella Drive di destinazione (default: DRIVE_FOLDER_ID)")
    common.add_argument("--config", type=Path, help="File YAML di configurazione")
    common.add_argument("--json", action="store_true", help="Stampa il file Drive come JSON")
    common.add_argument("--log-file", type=Path, help="File di log aggiuntivo (rotazione a 1 MiB)")

    up = subparsers.add_parser("upload", parents=[common], help="Carica un file")
    up.add_argument("path", type=Path, help="File locale da caricare")
    up.add_argument("--name", help="Nome del file su Drive (default: nome locale)")
    up.add_argument("--mime", help="MIME type (default: dedotto dal nome)")
    up.add_argument("--upload-type", choices=UPLOAD_TYPES, default="multipart", help="Tipo di upload single-shot")
    up.add_argument("--resumable", action="store_true", help="Upload a chunk con sessione riprendibile")
    up.add_argument("--chunk-size", type=int, help="Dimensione chunk in byte (multiplo di 262144)")

    rs = subparsers.add_parser("resume", parents=[common], help="Riprende un upload interrotto")
    rs.add_argument("uri", help="Session URI restituita da un upload resumable")
    rs.add_argument("path", type=Path, help="Stesso file locale dell'upload interrotto")
    return parser


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return _build_parser().parse_args(argv)


def _settings_for(args: argparse.Namespace, logger: logging.Logger) -> UploaderSettings:
    settings = load_settings(args.config, logger=logger)
    return settings.with_overrides(folder_id=args.folder, chunk_size=getattr(args, "chunk_size", None))


def _progress_logger(logger: logging.Logger) -> Any:
    def _on_chunk(progress: ChunkProgress) -> None:
        logger.info(
            "cli.upload.progress",
            extra={"progress": progress.progress, "byte_range": progress.byte_range, "file_size": progress.file_size},
        )

    return _on_chunk


def _emit(result: Optional[Dict[str, Any]], *, json_output: bool) -> None:
    if json_output:
        print(json.dumps(result or {}, sort_keys=True, ensure_ascii=False))
    elif result:
        print(result.get("id", ""))


def _interrupted(logger: logging.Logger, uploader: DriveUploader, path: Path) -> None:
    uri = uploader.resume_uri or ""
    logger.warning(
        "cli.upload.interrupted",
        extra={"session_uri": mask_session_uri(uri), "offset": uploader.offset},
    )
    print(f"Upload interrotto. Per riprendere: drive-uploader resume '{uri}' '{path}'", file=sys.stderr)


def _run_upload(args: argparse.Namespace, logger: logging.Logger) -> int:
    uploader = DriveUploader(settings=_settings_for(args, logger), logger=logger)
    path = ensure_upload_file(args.path)
    name = args.name or path.name

    with phase_scope(logger, stage="upload") as phase:
        if args.resumable:
            uploader.init_resumable(name, args.mime, file_size=path.stat().st_size)
            try:
                result = uploader.start_resumable(path, on_chunk=_progress_logger(logger))
            except KeyboardInterrupt:
                _interrupted(logger, uploader, path)
                raise
        else:
            result = uploader.upload_basic(path, name, args.mime, args.upload_type)
        phase.set_artifacts(1 if result else 0)

    _emit(result, json_output=bool(args.json))
    return 0


def _run_resume(args: argparse.Namespace, logger: logging.Logger) -> int:
    uploader = DriveUploader(settings=_settings_for(args, logger), logger=logger)
    with phase_scope(logger, stage="resume") as phase:
        try:
            result = uploader.resume(args.uri, args.path, on_chunk=_progress_logger(logger))
        except KeyboardInterrupt:
            _interrupted(logger, uploader, Path(args.path))
            raise
        phase.set_artifacts(1 if result else 0)

    _emit(result, json_output=bool(args.json))
    return 0


def main(args: argparse.Namespace) -> int:
    """Entrypoint CLI orchestrato via `run_cli_orchestrator`."""
    run_id = uuid.uuid4().hex
    log_file = getattr(args, "log_file", None)
    if log_file:
        # eventi dei moduli drive (upload, resumable, retry) nello stesso file
        attach_log_file("drive_uploader", log_file, run_id=run_id)
    logger = get_structured_logger("drive_uploader.cli", run_id=run_id, log_file=log_file)
    with drive_metrics_scope():
        try:
            if args.command == "upload":
                return _run_upload(args, logger)
            if args.command == "resume":
                return _run_resume(args, logger)
        finally:
            metrics = get_retry_metrics()
            if metrics.get("retries_total"):
                logger.info("cli.retry_metrics", extra={"retry_metrics": metrics})
    logger.error("cli.command.unsupported", extra={"command": args.command})
    return 2


def run(argv: Optional[Sequence[str]] = None) -> None:
    """Console script `drive-uploader`."""
    raise SystemExit(run_cli_orchestrator("drive-uploader", _parse_args, main, argv))


if __name__ == "__main__":
    run()
