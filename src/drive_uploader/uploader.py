# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/uploader.py
"""DriveUploader: upload single-shot e resumable (chunk, abort, resume) su Google Drive.

Uso tipico
----------
    uploader = DriveUploader(folder_id)
    uploader.upload_basic(path, "report.pdf", "application/pdf")

    uri = uploader.init_resumable("video.mp4", "video/mp4")
    uploader.start_resumable(path)              # sincrono: dict del file

    for result in uploader.iter_resumable(path):  # un passo per chunk
        if must_stop:
            uploader.abort()
    uploader.resume(uri, path)                  # riparte dall'offset noto al server

Macchina a stati (`state`):
    idle → initiated → uploading → complete | aborted | failed

Invarianti:
- l'offset segue sempre il server (header Range di ogni 308), mai il puntatore locale;
- `on_chunk` scatta una volta per ogni porzione di file confermata dal server;
- 429/5xx ed errori di rete → backoff, query di stato, riallineamento (max `max_attempts`);
- 404/410 → sessione scaduta: `ResumeError`, va riavviato l'upload.
"""

from __future__ import annotations

import logging
import time
from os import PathLike
from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterator, Literal, Optional, Union

from .constants import (
    STATUS_COMPLETE,
    STATUS_RESUME_INCOMPLETE,
    STATUS_SESSION_GONE,
    STATUS_TRANSIENT,
)
from .drive.client import (
    backoff_delay,
    ensure_folder_id,
    get_authorized_session,
    get_drive_service,
    load_credentials,
    record_backoff,
    record_retry,
)
from .drive.resumable import (
    ChunkProgress,
    compute_progress,
    initiate_session,
    next_offset,
    parse_drive_file,
    put_chunk,
    query_status,
)
from .drive.upload import build_file_metadata, ensure_upload_file, guess_mime_type, upload_basic
from .exceptions import DriveUploadError, ResumeError, TransportError
from .logging_utils import get_structured_logger, mask_session_uri, tail_path
from .settings import UploaderSettings, load_settings, validate_chunk_size

UploadState = Literal["idle", "initiated", "uploading", "complete", "aborted", "failed"]
OnChunk = Callable[[ChunkProgress], None]
DriveFile = Dict[str, Any]

# Risposte 308 consecutive senza avanzamento prima di dichiarare la sessione bloccata
_MAX_STALLED_RESPONSES = 5


class DriveUploader:
    """Carica file in una cartella Drive (tipicamente una cartella condivisa)."""

    def __init__(
        self,
        folder_id: Optional[str] = None,
        chunk_size: Optional[int] = None,
        *,
        credentials: Any = None,
        service: Any = None,
        http: Any = None,
        settings: Optional[UploaderSettings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings if settings is not None else load_settings()
        self._folder_id: Optional[str] = (folder_id or self._settings.folder_id or "").strip() or None
        self._chunk_size = validate_chunk_size(chunk_size if chunk_size is not None else self._settings.chunk_size)
        self._credentials = credentials
        self._service = service
        self._http = http
        self._logger = logger or get_structured_logger(
            "drive_uploader.uploader", redact_logs=self._settings.redact_logs
        )

        self._state: UploadState = "idle"
        self._resume_uri: Optional[str] = None
        self._offset = 0
        self._should_abort = False

    # ------------------------------------------------------------------ props

    @property
    def folder_id(self) -> Optional[str]:
        return self._folder_id

    @folder_id.setter
    def folder_id(self, value: str) -> None:
        """Cartella di destinazione dei prossimi upload."""
        self._folder_id = ensure_folder_id(value)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def resume_uri(self) -> Optional[str]:
        """Session URI dell'ultimo `init_resumable`/`resume` (None se mai aperta)."""
        return self._resume_uri

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def offset(self) -> int:
        """Byte confermati dal server nella sessione corrente."""
        return self._offset

    @property
    def service(self) -> Any:
        if self._service is None:
            self._service = get_drive_service(self._get_credentials())
        return self._service

    @property
    def http(self) -> Any:
        if self._http is None:
            self._http = get_authorized_session(self._get_credentials())
        return self._http

    def _get_credentials(self) -> Any:
        if self._credentials is None:
            self._credentials = load_credentials(self._settings)
        return self._credentials

    # ------------------------------------------------------------ single-shot

    def upload_basic(
        self,
        file_path: Union[str, PathLike[str]],
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
        upload_type: str = "multipart",
    ) -> DriveFile:
        """Upload in un'unica richiesta (file piccoli). Ritorna il dict del file Drive."""
        return upload_basic(
            self.service,
            file_path,
            file_name or "",
            mime_type,
            ensure_folder_id(self._folder_id),
            upload_type,
            chunk_size=self._chunk_size,
            num_retries=self._settings.max_attempts - 1,
            max_attempts=self._settings.max_attempts,
            redact_logs=self._settings.redact_logs,
        )

    # -------------------------------------------------------------- resumable

    def init_resumable(self, file_name: str, mime_type: Optional[str] = None, *, file_size: Optional[int] = None) -> str:
        """Apre la sessione resumable; va chiamato prima di `start_resumable`.

        Ritorna la session URI: conservarla per un eventuale `resume()`.
        """
        if not file_name:
            raise DriveUploadError("Nome file mancante per la sessione resumable.")
        mime = guess_mime_type(file_name, mime_type)
        uri = initiate_session(
            self.http,
            metadata=build_file_metadata(file_name, ensure_folder_id(self._folder_id)),
            mime_type=mime,
            file_size=file_size,
            timeout=self._settings.http_timeout_s,
            max_attempts=self._settings.max_attempts,
        )
        self._resume_uri = uri
        self._offset = 0
        self._state = "initiated"
        return uri

    def start_resumable(self, file_path: Union[str, PathLike[str]], on_chunk: Optional[OnChunk] = None) -> Optional[DriveFile]:
        """Carica il file a chunk e attende la fine.

        Ritorna il dict del file Drive, oppure None se l'upload è stato interrotto con `abort()`.
        """
        return _drain(self.iter_resumable(file_path, on_chunk))

    def iter_resumable(
        self, file_path: Union[str, PathLike[str]], on_chunk: Optional[OnChunk] = None
    ) -> Iterator[Optional[DriveFile]]:
        """Variante a generatore: un passo per chunk inviato.

        Produce None finché l'upload è incompleto e il dict del file all'ultimo chunk.
        `abort()` ferma il generatore prima del chunk successivo.
        """
        if not self._resume_uri or self._state == "idle":
            raise DriveUploadError("init_resumable() must be called before start_resumable()")
        local = ensure_upload_file(file_path)
        return self._run_session(self._resume_uri, local, self._offset, on_chunk)

    def resume(
        self,
        resume_uri: str,
        file_path: Union[str, PathLike[str]],
        on_chunk: Optional[OnChunk] = None,
    ) -> Optional[DriveFile]:
        """Riprende un upload interrotto e attende la fine (vedi `iter_resume`)."""
        return _drain(self.iter_resume(resume_uri, file_path, on_chunk))

    def iter_resume(
        self,
        resume_uri: str,
        file_path: Union[str, PathLike[str]],
        on_chunk: Optional[OnChunk] = None,
    ) -> Iterator[Optional[DriveFile]]:
        """Interroga la sessione e riprende dall'offset riportato dal server.

        - 308 → prosegue dal byte successivo all'header Range (0 se assente);
        - 200/201 → già completato: produce il dict del file;
        - 400 → ResumeError("Bad request");
        - 404/410/500/503 → ResumeError: upload non avviato/scaduto, va riavviato;
        - altri status → ResumeError.
        """
        if not resume_uri:
            raise DriveUploadError("Session URI mancante per il resume.")
        local = ensure_upload_file(file_path)
        file_size = local.stat().st_size

        resp = query_status(self.http, resume_uri, file_size, timeout=self._settings.http_timeout_s)
        status = resp.status_code
        body = resp.text or ""
        self._resume_uri = resume_uri
        self._logger.info(
            "drive.resumable.resume_query",
            extra={"session_uri": mask_session_uri(resume_uri), "status": status, "file_path": tail_path(local)},
        )

        if status == STATUS_RESUME_INCOMPLETE:
            offset = next_offset(resp)
            self._check_offset(offset, file_size, status=status)
            self._offset = offset
            self._state = "initiated"
            return self._run_session(resume_uri, local, offset, on_chunk)
        if status in STATUS_COMPLETE:
            self._offset = file_size
            self._state = "complete"
            return iter([parse_drive_file(body)])

        self._state = "failed"
        if status == 400:
            raise ResumeError("Bad request", response=(body, status), file_path=local)
        if status in STATUS_SESSION_GONE or status in (500, 503):
            raise ResumeError("Upload has not started, you must restart.", response=(body, status), file_path=local)
        raise ResumeError(f"Unexpected status from the upload session: {status}", response=(body, status), file_path=local)

    def abort(self) -> None:
        """Interrompe l'upload resumable in corso prima del prossimo chunk."""
        self._should_abort = True

    # ---------------------------------------------------------------- interni

    def _check_offset(self, offset: int, file_size: int, *, status: int) -> None:
        if offset > file_size:
            self._state = "failed"
            raise DriveUploadError(
                f"Il server riporta {offset} byte ricevuti ma il file locale ne ha {file_size}: file diverso?",
                status=status,
            )

    def _backoff(self, err: Exception, attempts: int, *, status: Optional[int] = None) -> None:
        if attempts >= self._settings.max_attempts:
            self._state = "failed"
            raise err
        record_retry(err, status=status)
        sleep_s = backoff_delay(attempts)
        self._logger.warning(
            "drive.resumable.retry",
            extra={"attempt": attempts, "sleep_s": round(sleep_s, 3), "status": status, "offset": self._offset},
        )
        time.sleep(sleep_s)
        record_backoff(sleep_s)

    def _notify(self, on_chunk: Optional[OnChunk], fh: IO[bytes], data: bytes, start: int, end: int, file_size: int) -> None:
        """Notifica i byte [start, end) confermati dal server."""
        if on_chunk is None:
            return
        if end <= start:
            if file_size == 0:
                on_chunk(ChunkProgress(chunk=b"", progress=100.0, file_size=0, byte_range=None))
            return
        length = end - start
        if len(data) >= length:
            accepted = data[:length]
        else:
            fh.seek(start)
            accepted = fh.read(length)
        on_chunk(
            ChunkProgress(
                chunk=accepted,
                progress=compute_progress(end, file_size),
                file_size=file_size,
                byte_range=(start, end - 1),
            )
        )

    def _run_session(
        self,
        session_uri: str,
        local: Path,
        offset: int,
        on_chunk: Optional[OnChunk],
    ) -> Iterator[Optional[DriveFile]]:
        self._should_abort = False
        self._state = "uploading"
        self._offset = offset
        file_size = local.stat().st_size
        timeout = self._settings.http_timeout_s
        attempts = 0
        stalled = 0
        must_query = False

        self._logger.info(
            "drive.resumable.started",
            extra={
                "session_uri": mask_session_uri(session_uri),
                "file_path": tail_path(local),
                "file_size": file_size,
                "offset": offset,
                "chunk_size": self._chunk_size,
            },
        )

        try:
            with local.open("rb") as fh:
                while True:
                    if self._should_abort:
                        self._state = "aborted"
                        self._logger.info(
                            "drive.resumable.aborted",
                            extra={"session_uri": mask_session_uri(session_uri), "offset": offset},
                        )
                        return

                    data = b""
                    try:
                        if must_query:
                            resp = query_status(self.http, session_uri, file_size, timeout=timeout)
                        else:
                            fh.seek(offset)
                            data = fh.read(self._chunk_size)
                            resp = put_chunk(self.http, session_uri, data, offset, file_size, timeout=timeout)
                    except TransportError as e:
                        attempts += 1
                        self._backoff(e, attempts)
                        must_query = True
                        continue
                    must_query = False
                    status = resp.status_code

                    if status in STATUS_COMPLETE:
                        self._notify(on_chunk, fh, data, offset, file_size, file_size)
                        self._offset = file_size
                        self._state = "complete"
                        drive_file = parse_drive_file(resp.text)
                        self._logger.info(
                            "drive.resumable.done",
                            extra={
                                "file_path": tail_path(local),
                                "file_id": (drive_file or {}).get("id"),
                                "file_size": file_size,
                                "status": status,
                            },
                        )
                        yield drive_file
                        return

                    if status == STATUS_RESUME_INCOMPLETE:
                        new_offset = next_offset(resp)
                        self._check_offset(new_offset, file_size, status=status)
                        if new_offset > offset:
                            stalled = 0
                            attempts = 0
                            self._notify(on_chunk, fh, data, offset, new_offset, file_size)
                        else:
                            stalled += 1
                            if stalled > _MAX_STALLED_RESPONSES:
                                self._state = "failed"
                                raise DriveUploadError(
                                    f"La sessione non avanza (offset fermo a {offset}).", status=status
                                )
                        offset = new_offset
                        self._offset = offset
                        self._logger.debug(
                            "drive.resumable.chunk",
                            extra={
                                "offset": offset,
                                "status": status,
                                "progress": compute_progress(offset, file_size),
                            },
                        )
                        yield None
                        continue

                    if status in STATUS_SESSION_GONE:
                        self._state = "failed"
                        raise ResumeError(
                            "Upload session expired or not found, you must restart.",
                            response=(resp.text or "", status),
                            file_path=local,
                        )

                    if status in STATUS_TRANSIENT:
                        attempts += 1
                        self._backoff(
                            DriveUploadError(f"chunk upload failed with status: {status}", status=status),
                            attempts,
                            status=status,
                        )
                        must_query = True
                        continue

                    self._state = "failed"
                    raise DriveUploadError(f"chunk upload failed with status: {status}", status=status, file_path=local)
        except GeneratorExit:
            if self._state == "uploading":
                self._state = "aborted"
                self._logger.info(
                    "drive.resumable.aborted",
                    extra={"session_uri": mask_session_uri(session_uri), "offset": self._offset},
                )
            raise
        except Exception:
            if self._state == "uploading":
                self._state = "failed"
            raise


def _drain(steps: Iterator[Optional[DriveFile]]) -> Optional[DriveFile]:
    result: Optional[DriveFile] = None
    for result in steps:
        pass
    return result


__all__ = ["DriveUploader", "ChunkProgress", "UploadState"]
