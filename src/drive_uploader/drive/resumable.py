# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/drive/resumable.py
"""Primitive del protocollo *resumable upload* di Drive v3 (HTTP raw).

Cosa fa
-------
- Apre una sessione (`POST ...?uploadType=resumable`) e restituisce la session URI
  letta dall'header `Location`.
- Invia i chunk con `PUT <session URI>` + `Content-Range: bytes <a>-<b>/<size>`.
- Interroga lo stato di una sessione interrotta con un `PUT` vuoto e
  `Content-Range: bytes */<size>`.
- Interpreta le risposte: 200/201 = completato (body JSON del file),
  308 = incompleto (header `Range: bytes=0-<last>`; assente = nessun byte ricevuto).

Lo stato della sessione (offset, abort, retry) è orchestrato da
`drive_uploader.uploader.DriveUploader`; qui restano funzioni senza stato.

Dipendenze
----------
- requests (sessione HTTP; tipicamente `google.auth.transport.requests.AuthorizedSession`)
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, cast

import requests
from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError as AuthTransportError

from ..constants import (
    DEFAULT_FILE_FIELDS,
    DEFAULT_HTTP_TIMEOUT_S,
    DEFAULT_MAX_ATTEMPTS,
    DRIVE_UPLOAD_URL,
    STATUS_TRANSIENT,
)
from ..exceptions import ConfigError, DriveUploadError, TransportError
from ..logging_utils import get_structured_logger, mask_session_uri
from .client import _retry, _RetryBudgetExceeded

logger = get_structured_logger("drive_uploader.drive.resumable")

_RANGE_RE = re.compile(r"(\d+)\s*-\s*(\d+)")


@dataclass(frozen=True)
class ChunkProgress:
    """Avanzamento notificato a `on_chunk` per ogni chunk accettato dal server.

    `byte_range` è inclusivo (start, end); None per un file vuoto.
    """

    chunk: bytes
    progress: float
    file_size: int
    byte_range: Optional[Tuple[int, int]]


def compute_progress(bytes_done: int, file_size: int) -> float:
    """Percentuale (2 decimali) dei byte confermati sul totale."""
    if file_size <= 0:
        return 100.0
    return round(bytes_done / file_size * 100, 2)


# ---------------------------------------------------------------------------
# Parsing risposte
# ---------------------------------------------------------------------------


def parse_range(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Estrae (first, last) da un header `Range: bytes=0-42`; None se assente/illeggibile."""
    if not value:
        return None
    m = _RANGE_RE.search(value)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def next_offset(response: requests.Response) -> int:
    """Primo byte da inviare dopo una risposta 308 (0 se il server non ha ricevuto nulla)."""
    rng = parse_range(response.headers.get("Range"))
    return rng[1] + 1 if rng else 0


def parse_drive_file(body: Optional[str]) -> Optional[Dict[str, Any]]:
    """Dict del file Drive se il body JSON contiene un `id`, altrimenti None."""
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("id"):
        return cast(Dict[str, Any], payload)
    return None


# ---------------------------------------------------------------------------
# Richieste HTTP
# ---------------------------------------------------------------------------


def _send(http: Any, method: str, url: str, **kwargs: Any) -> requests.Response:
    """Esegue la richiesta; errori di rete (anche nel refresh del token) → TransportError."""
    try:
        return cast(requests.Response, http.request(method, url, **kwargs))
    except (requests.RequestException, AuthTransportError) as e:
        raise TransportError(f"{method} verso la sessione di upload fallita: {e}") from e
    except RefreshError as e:
        raise ConfigError(f"Refresh del token di accesso fallito: {e}") from e


def content_range(start: int, data_len: int, file_size: Optional[int]) -> str:
    """Valore dell'header Content-Range per un chunk (o per una query se `data_len == 0`)."""
    total = "*" if file_size is None else str(file_size)
    if data_len <= 0:
        return f"bytes */{total}"
    return f"bytes {start}-{start + data_len - 1}/{total}"


def initiate_session(
    http: Any,
    *,
    metadata: Mapping[str, Any],
    mime_type: str,
    file_size: Optional[int] = None,
    fields: str = DEFAULT_FILE_FIELDS,
    timeout: float = DEFAULT_HTTP_TIMEOUT_S,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> str:
    """Apre una sessione resumable e ritorna la session URI (`Location`).

    Raises:
        DriveUploadError: risposta diversa da 200 o senza `Location`.
        TransportError: errore di rete persistente.
    """
    headers = {
        "Content-Type": "application/json; charset=UTF-8",
        "X-Upload-Content-Type": mime_type,
    }
    if file_size is not None:
        headers["X-Upload-Content-Length"] = str(file_size)
    params = {"uploadType": "resumable", "supportsAllDrives": "true", "fields": fields}

    def _call() -> requests.Response:
        resp = cast(
            requests.Response,
            http.request("POST", DRIVE_UPLOAD_URL, params=params, json=dict(metadata), headers=headers, timeout=timeout),
        )
        if resp.status_code in STATUS_TRANSIENT:
            resp.raise_for_status()
        return resp

    try:
        resp = cast(requests.Response, _retry(_call, max_attempts=max_attempts, op_name="files.create.resumable"))
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        raise DriveUploadError("Apertura sessione resumable fallita.", status=status) from e
    except (requests.RequestException, AuthTransportError) as e:
        raise TransportError(f"Apertura sessione resumable fallita: {e}") from e
    except RefreshError as e:
        raise ConfigError(f"Refresh del token di accesso fallito: {e}") from e
    except _RetryBudgetExceeded as e:
        raise DriveUploadError(f"Apertura sessione resumable fallita: {e}") from e

    if resp.status_code != 200:
        logger.error(
            "drive.resumable.initiate_error",
            extra={"status": resp.status_code, "error_message": (resp.text or "")[:300]},
        )
        raise DriveUploadError("Apertura sessione resumable fallita.", status=resp.status_code)

    session_uri = resp.headers.get("Location")
    if not session_uri:
        raise DriveUploadError("Risposta senza header Location: session URI assente.", status=resp.status_code)

    logger.info(
        "drive.resumable.initiated",
        extra={
            "session_uri": mask_session_uri(session_uri),
            "mime_type": mime_type,
            "file_size": file_size,
        },
    )
    return session_uri


def query_status(
    http: Any,
    session_uri: str,
    file_size: Optional[int],
    *,
    timeout: float = DEFAULT_HTTP_TIMEOUT_S,
) -> requests.Response:
    """PUT vuoto sulla session URI per conoscere i byte già ricevuti dal server."""
    headers = {"Content-Range": content_range(0, 0, file_size), "Content-Length": "0"}
    return _send(http, "PUT", session_uri, data=b"", headers=headers, timeout=timeout)


def put_chunk(
    http: Any,
    session_uri: str,
    data: bytes,
    start: int,
    file_size: int,
    *,
    timeout: float = DEFAULT_HTTP_TIMEOUT_S,
) -> requests.Response:
    """Invia un chunk `[start, start+len(data))` della sessione."""
    headers = {
        "Content-Range": content_range(start, len(data), file_size),
        "Content-Length": str(len(data)),
    }
    return _send(http, "PUT", session_uri, data=data, headers=headers, timeout=timeout)


__all__ = [
    "ChunkProgress",
    "compute_progress",
    "parse_range",
    "next_offset",
    "parse_drive_file",
    "content_range",
    "initiate_session",
    "query_status",
    "put_chunk",
]
