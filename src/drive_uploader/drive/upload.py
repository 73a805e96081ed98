# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/drive/upload.py
from __future__ import annotations

import mimetypes
from os import PathLike
from pathlib import Path
from typing import Any, Dict, Optional, Union, cast

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from ..constants import DEFAULT_CHUNK_SIZE, DEFAULT_FILE_FIELDS, DEFAULT_MAX_ATTEMPTS, DEFAULT_MIME_TYPE, UPLOAD_TYPES
from ..exceptions import ConfigError, DriveUploadError
from ..logging_utils import get_structured_logger, mask_partial, tail_path
from .client import _retry, _RetryBudgetExceeded

logger = get_structured_logger("drive_uploader.drive.upload")


# ---------------------------------------------------------------------------
# Helpers generali
# ---------------------------------------------------------------------------


def guess_mime_type(file_name: str, mime_type: Optional[str] = None) -> str:
    """MIME esplicito se fornito, altrimenti dedotto dal nome (fallback octet-stream)."""
    if mime_type:
        return mime_type
    guessed, _enc = mimetypes.guess_type(file_name)
    return guessed or DEFAULT_MIME_TYPE


def ensure_upload_file(file_path: Union[str, PathLike[str], None]) -> Path:
    """Valida il path locale da caricare (vuoto o non-file → DriveUploadError)."""
    if not file_path or not str(file_path).strip():
        raise DriveUploadError(f"Invalid file path: {file_path!r}")
    p = Path(file_path).expanduser()
    if not p.is_file():
        raise DriveUploadError("Invalid file path: file non trovato.", file_path=p)
    return p


def build_file_metadata(file_name: str, folder_id: Optional[str]) -> Dict[str, Any]:
    """Metadati Drive del file: nome e cartella padre."""
    body: Dict[str, Any] = {"name": file_name}
    if folder_id:
        body["parents"] = [folder_id]
    return body


def _http_status(err: Exception) -> Optional[int]:
    if isinstance(err, HttpError):
        try:
            return int(err.resp.status)
        except (TypeError, ValueError, AttributeError):
            return None
    return None


# ---------------------------------------------------------------------------
# Upload single-shot (multipart | media | resumable via SDK)
# ---------------------------------------------------------------------------


def _create_multipart(
    service: Any, body: Dict[str, Any], media: MediaFileUpload, fields: str, *, max_attempts: int
) -> Dict[str, Any]:
    def _call() -> Any:
        return service.files().create(body=body, media_body=media, fields=fields, supportsAllDrives=True).execute()

    return cast(Dict[str, Any], _retry(_call, max_attempts=max_attempts, op_name="files.create.multipart"))


def _create_media(
    service: Any, body: Dict[str, Any], media: MediaFileUpload, fields: str, *, max_attempts: int
) -> Dict[str, Any]:
    # Simple upload: solo contenuto, i metadati vengono applicati con un update successivo.
    def _create() -> Any:
        return service.files().create(media_body=media, fields="id", supportsAllDrives=True).execute()

    created = cast(Dict[str, Any], _retry(_create, max_attempts=max_attempts, op_name="files.create.media"))
    params: Dict[str, Any] = {
        "fileId": created["id"],
        "body": {"name": body["name"]},
        "fields": fields,
        "supportsAllDrives": True,
    }
    if body.get("parents"):
        params["addParents"] = ",".join(body["parents"])

    def _update() -> Any:
        return service.files().update(**params).execute()

    return cast(Dict[str, Any], _retry(_update, max_attempts=max_attempts, op_name="files.update.metadata"))


def _create_resumable(
    service: Any,
    body: Dict[str, Any],
    media: MediaFileUpload,
    fields: str,
    *,
    num_retries: int,
) -> Dict[str, Any]:
    request = service.files().create(body=body, media_body=media, fields=fields, supportsAllDrives=True)
    response: Optional[Dict[str, Any]] = None
    while response is None:
        status, response = request.next_chunk(num_retries=num_retries)
        if status is not None:
            logger.debug(
                "drive.upload.basic.chunk",
                extra={"progress": round(status.progress() * 100, 2), "offset": status.resumable_progress},
            )
    return response


def upload_basic(
    service: Any,
    file_path: Union[str, PathLike[str]],
    file_name: str,
    mime_type: Optional[str],
    folder_id: Optional[str],
    upload_type: str = "multipart",
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    num_retries: int = 3,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    fields: str = DEFAULT_FILE_FIELDS,
    redact_logs: bool = False,
) -> Dict[str, Any]:
    """Upload in un colpo solo tramite il client Drive v3.

    `upload_type`: multipart (default) | media | resumable (gestito dall'SDK).
    `max_attempts`: tentativi per multipart/media (`_retry`); per resumable vale `num_retries`.
    Ritorna il dict del file Drive (`id`, `name`, `mimeType`, `kind`).

    Raises:
        ConfigError: `upload_type` non supportato.
        DriveUploadError: path non valido o errore dell'API Drive.
    """
    if upload_type not in UPLOAD_TYPES:
        raise ConfigError(f"upload_type non supportato: {upload_type!r} (ammessi: {', '.join(UPLOAD_TYPES)})")
    local = ensure_upload_file(file_path)
    if not file_name:
        file_name = local.name
    mime = guess_mime_type(file_name, mime_type)
    body = build_file_metadata(file_name, folder_id)

    resumable = upload_type == "resumable"
    media = MediaFileUpload(str(local), mimetype=mime, resumable=resumable, chunksize=chunk_size if resumable else -1)

    log_folder = mask_partial(folder_id, keep=6) if redact_logs else folder_id
    try:
        if upload_type == "multipart":
            result = _create_multipart(service, body, media, fields, max_attempts=max_attempts)
        elif upload_type == "media":
            result = _create_media(service, body, media, fields, max_attempts=max_attempts)
        else:
            result = _create_resumable(service, body, media, fields, num_retries=num_retries)
    except (HttpError, OSError, _RetryBudgetExceeded) as e:
        logger.error(
            "drive.upload.basic.error",
            extra={
                "folder": log_folder,
                "file_path": tail_path(local),
                "upload_type": upload_type,
                "status": _http_status(e),
                "error_message": str(e)[:300],
            },
        )
        raise DriveUploadError(f"Upload fallito: {e}", file_path=local, status=_http_status(e)) from e

    file_id = cast(str, result.get("id", ""))
    logger.info(
        "drive.upload.basic.done",
        extra={
            "folder": log_folder,
            "file_id": mask_partial(file_id, keep=6) if redact_logs else file_id,
            "file_path": tail_path(local),
            "upload_type": upload_type,
            "mime_type": mime,
        },
    )
    return result


__all__ = [
    "upload_basic",
    "guess_mime_type",
    "ensure_upload_file",
    "build_file_metadata",
]
