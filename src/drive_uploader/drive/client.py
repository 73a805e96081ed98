from __future__ import annotations

import google.auth
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError, RefreshError
from google.auth.exceptions import TransportError as AuthTransportError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
import requests

# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/drive/client.py
"""
Client, credenziali e policy di retry per Google Drive (v3).

Superficie pubblica (usata da `drive_uploader.uploader`):
- load_credentials(settings)
    Service Account se è configurato un file JSON (SERVICE_ACCOUNT_FILE /
    GOOGLE_APPLICATION_CREDENTIALS), altrimenti Application Default Credentials.
    Scope: Drive. Delegazione opzionale (`impersonate_subject`).
- get_drive_service(credentials)
    Client Drive v3 (`googleapiclient`) per gli upload single-shot.
- get_authorized_session(credentials)
    `AuthorizedSession` (requests) per il protocollo resumable raw.
- drive_metrics_scope() / get_retry_metrics()
    Metriche dei retry (retries, backoff cumulato, ultimo status/error) in un blocco.

Note d’uso:
- Nessun `print()`; tutta la diagnostica passa dal logging strutturato.
- Policy retry/metriche centralizzata, riutilizzata da upload/resumable via `_retry(...)`.
"""

import os
import random
import time
from collections import defaultdict
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional, cast

from ..constants import DEFAULT_MAX_ATTEMPTS, DRIVE_SCOPE, STATUS_TRANSIENT
from ..exceptions import ConfigError
from ..logging_utils import get_structured_logger
from ..settings import UploaderSettings

logger = get_structured_logger("drive_uploader.drive.client")


# ------------------------------- Metriche & Retry ---------------------------------


@dataclass
class _DriveRetryMetrics:
    """Metriche interne per i retry Drive (aggregate sul blocco corrente).

    Campi:
      - retries_total: numero totale di retry effettuati (esclusi i tentativi iniziali riusciti).
      - retries_by_error: mappa {NomeEccezione: conteggio}.
      - backoff_total_ms: somma delle attese (sleep) in millisecondi effettuate tra i tentativi.
      - last_error: stringa breve con l’ultimo errore osservato.
      - last_status: ultimo HTTP status osservato (se disponibile).
    """

    retries_total: int = 0
    retries_by_error: Dict[str, int] = field(default_factory=lambda: cast(Dict[str, int], defaultdict(int)))
    backoff_total_ms: int = 0
    last_error: Optional[str] = None
    last_status: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "retries_total": self.retries_total,
            "retries_by_error": dict(self.retries_by_error),
            "backoff_total_ms": self.backoff_total_ms,
            "last_error": self.last_error,
            "last_status": self.last_status,
        }


_METRICS_CTX: ContextVar[Optional[_DriveRetryMetrics]] = ContextVar("drive_metrics_ctx", default=None)


@contextmanager
def drive_metrics_scope() -> Generator[_DriveRetryMetrics, None, None]:
    """Context manager per attivare la raccolta metriche dei retry Drive in un blocco.

    Esempio:
        with drive_metrics_scope():
            ... chiamate che usano _retry(...) ...
        snapshot = get_retry_metrics()
    """
    metrics = _DriveRetryMetrics()
    token = _METRICS_CTX.set(metrics)
    try:
        yield metrics
    finally:
        _METRICS_CTX.reset(token)


def get_retry_metrics() -> Dict[str, Any]:
    """Ritorna uno snapshot (dict) delle metriche correnti; dict vuoto se non attive."""
    m = _METRICS_CTX.get()
    return m.as_dict() if m is not None else {}


def record_retry(err: Exception, *, status: Optional[int] = None) -> None:
    """Aggiorna le metriche correnti (se attive) per un nuovo tentativo."""
    m = _METRICS_CTX.get()
    if m is None:
        return
    m.retries_total += 1
    m.retries_by_error[type(err).__name__] += 1
    m.last_error = str(err)[:300]
    m.last_status = status if status is not None else _status_of(err)


def record_backoff(sleep_s: float) -> None:
    m = _METRICS_CTX.get()
    if m is not None:
        m.backoff_total_ms += int(round(sleep_s * 1000))


class _RetryBudgetExceeded(RuntimeError):
    """Interno: sollevato quando si supera il budget massimo di attesa cumulata."""


def _status_of(err: Exception) -> Optional[int]:
    """Estrae lo status HTTP da HttpError (googleapiclient) o requests.HTTPError."""
    if isinstance(err, HttpError):
        status_val = getattr(err.resp, "status", None)
    else:
        status_val = getattr(getattr(err, "response", None), "status_code", None)
    try:
        return int(status_val) if status_val is not None else None
    except (TypeError, ValueError):
        return None


def _is_retryable_error(err: Exception) -> bool:
    """Valuta se un'eccezione è transiente e merita un nuovo tentativo.

    Criteri:
    - HttpError / requests.HTTPError 5xx e 429 (Too Many Requests) → retry.
    - requests.ConnectionError / Timeout → retry.
    - Messaggi comuni di rete (timeout, reset, unavailable, quota, ecc.) → retry.
    """
    if isinstance(err, (HttpError, requests.HTTPError)):
        return _status_of(err) in STATUS_TRANSIENT
    if isinstance(err, (requests.ConnectionError, requests.Timeout, AuthTransportError)):
        return True
    if isinstance(err, RefreshError):
        return False

    msg = str(err).lower()
    transient_snippets = (
        "timed out",
        "timeout",
        "temporarily unavailable",
        "connection reset",
        "connection aborted",
        "reset by peer",
        "rate limit",
        "too many requests",
        "quota exceeded",
    )
    return any(s in msg for s in transient_snippets)


def backoff_delay(attempt: int, *, base_delay_s: float = 0.5) -> float:
    """Attesa con backoff esponenziale + full jitter per il tentativo `attempt` (1-based)."""
    return random.uniform(0, base_delay_s * (2 ** (attempt - 1)))


def _retry(
    op: Callable[[], Any],
    *,
    is_retryable: Optional[Callable[[Exception], bool]] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_s: float = 0.5,
    max_total_sleep_s: float = 20.0,
    op_name: str = "drive-op",
) -> Any:
    """Esegue `op()` con backoff esponenziale + jitter, rispettando un budget massimo."""
    attempts = 0
    total_sleep = 0.0
    while True:
        try:
            attempts += 1
            return op()
        except Exception as e:  # noqa: BLE001
            retryable = _is_retryable_error(e) if is_retryable is None else bool(is_retryable(e))
            if not retryable or attempts >= max_attempts:
                logger.debug(
                    "drive.retry.giveup",
                    extra={
                        "op": op_name,
                        "attempts": attempts,
                        "retryable": retryable,
                        "exc_type": type(e).__name__,
                        "error_message": str(e)[:300],
                    },
                )
                raise

            record_retry(e)

            sleep_s = backoff_delay(attempts, base_delay_s=base_delay_s)
            if total_sleep + sleep_s > max_total_sleep_s:
                sleep_s = max(0.0, max_total_sleep_s - total_sleep)
                if sleep_s == 0.0:
                    logger.debug(
                        "drive.retry.budget_exceeded",
                        extra={
                            "op": op_name,
                            "attempts": attempts,
                            "total_sleep_s": round(total_sleep, 3),
                            "budget_s": max_total_sleep_s,
                        },
                    )
                    raise _RetryBudgetExceeded(f"Budget di retry esaurito per {op_name}") from e

            logger.debug(
                "drive.retry.backoff",
                extra={
                    "op": op_name,
                    "attempt": attempts,
                    "sleep_s": round(sleep_s, 3),
                    "total_sleep_s": round(total_sleep, 3),
                },
            )
            time.sleep(sleep_s)
            total_sleep += sleep_s
            record_backoff(sleep_s)


# ------------------------------- Credenziali & client ------------------------------


def _resolve_service_account_file(settings: Optional[UploaderSettings]) -> Optional[str]:
    """Risolve il percorso assoluto del JSON del service account (None → usa ADC)."""
    cand = settings.service_account_file if settings is not None else None
    if not cand:
        return None
    path = os.path.abspath(os.path.expanduser(str(cand)))
    if not os.path.isfile(path):
        raise ConfigError(
            "File del service account non trovato. Verificare SERVICE_ACCOUNT_FILE / "
            "GOOGLE_APPLICATION_CREDENTIALS.",
            file_path=path,
        )
    return path


def load_credentials(settings: Optional[UploaderSettings] = None) -> Any:
    """Carica le credenziali Google con scope Drive (Service Account o ADC)."""
    sa_path = _resolve_service_account_file(settings)
    subject = settings.impersonate_subject if settings is not None else None
    try:
        if sa_path:
            creds = Credentials.from_service_account_file(sa_path, scopes=[DRIVE_SCOPE])
            if subject:
                creds = creds.with_subject(subject)
        else:
            creds, _project = google.auth.default(scopes=[DRIVE_SCOPE])
    except DefaultCredentialsError as e:
        raise ConfigError(
            "Credenziali Google non trovate: impostare SERVICE_ACCOUNT_FILE o "
            "GOOGLE_APPLICATION_CREDENTIALS (Application Default Credentials)."
        ) from e
    except (GoogleAuthError, ValueError, KeyError, OSError) as e:
        raise ConfigError(f"Caricamento credenziali fallito: {e}", file_path=sa_path) from e

    logger.debug(
        "drive.credentials.loaded",
        extra={
            "sa_file": Path(sa_path).name if sa_path else None,
            "source": "service_account" if sa_path else "adc",
            "impersonation": bool(sa_path and subject),
        },
    )
    return creds


def get_drive_service(credentials: Any) -> Any:
    """Costruisce e restituisce un client Google Drive v3."""
    try:
        service = build("drive", "v3", credentials=credentials, cache_discovery=False)
    except Exception as e:  # noqa: BLE001
        raise ConfigError(f"Creazione client Google Drive fallita: {e}") from e
    logger.debug("drive.client.built", extra={"scopes": "drive"})
    return service


def get_authorized_session(credentials: Any) -> AuthorizedSession:
    """Sessione HTTP (requests) autenticata per il protocollo resumable raw."""
    return AuthorizedSession(credentials)


def ensure_folder_id(folder_id: Optional[str]) -> str:
    """Normalizza e valida l'ID della cartella di destinazione (config-boundary)."""
    folder_id = (folder_id or "").strip()
    if not folder_id:
        raise ConfigError("Google Drive: folder_id mancante o vuoto.")
    return folder_id


__all__ = [
    "load_credentials",
    "get_drive_service",
    "get_authorized_session",
    "ensure_folder_id",
    "backoff_delay",
    "record_retry",
    "record_backoff",
    "_retry",  # riuso intra-pacchetto (upload/resumable)
    "drive_metrics_scope",
    "get_retry_metrics",
]
