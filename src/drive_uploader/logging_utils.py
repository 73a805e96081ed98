# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/logging_utils.py
"""Logging strutturato per drive-uploader.

Obiettivi:
- Logger **idempotente**, con filtri di **contesto** (run_id) e **redazione**.
- Niente `print`: tutti i moduli usano logging strutturato (console + opzionale file).
- Utility di **masking** coerenti per ID, session URI e percorsi.

Formato di output (console/file):
    %(asctime)s %(levelname)s %(name)s: %(message)s |
    run_id=<run> event=<evt> [file_path=<p> phase=<ph> duration_ms=<ms> offset=<n> status=<s>]

Indice funzioni principali (ruolo):
- `get_structured_logger(name, *, context=None, log_file=None, run_id=None, level=None)`:
    istanzia un logger con handler console (sempre) e file (opzionale),
    aggiunge i filtri di contesto e redazione.
- `phase_scope(logger, *, stage)`:
    telemetria di fase (phase_started/phase_completed/phase_failed + duration_ms).
- `redact_secrets(msg)`:
    redige token Bearer e `upload_id` delle session URI in testo libero.
- `mask_partial(value, keep=3)`, `mask_session_uri(uri)`, `tail_path(p)`:
    utility per mascherare valori da includere in `extra`.

Linee guida implementative:
- **Redazione centralizzata**: se `redact_logs` è attivo il filtro applica la redazione
  al messaggio e ai campi extra sensibili (`session_uri`, `Authorization`, ...).
- **Idempotenza**: chiamate ripetute a `get_structured_logger` non creano handler duplicati.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import TracebackType
from typing import Any, Literal, Optional, Type, Union

_SENSITIVE_KEYS = {"SERVICE_ACCOUNT_FILE", "GOOGLE_APPLICATION_CREDENTIALS", "Authorization", "session_uri"}

_UPLOAD_ID_RE = re.compile(r"(upload_id=)[^&\s]+", re.IGNORECASE)


# ---------------------------------------------
# Redazione (API semplice usata dai moduli)
# ---------------------------------------------
def redact_secrets(msg: str) -> str:
    """Redige token/credenziali se accidentalmente presenti in un testo libero."""
    if not msg:
        return msg
    out = msg
    replacements = (
        (re.compile(r"Authorization\s*:\s*Bearer\s+\S+", re.IGNORECASE), "Authorization: Bearer ***"),
        (re.compile(r"access_token=[^&\s]+", re.IGNORECASE), "access_token=***"),
        (_UPLOAD_ID_RE, r"\1***"),
    )
    for pattern, replacement in replacements:
        out = pattern.sub(replacement, out)
    return out


def mask_partial(value: Optional[str], keep: int = 3) -> str:
    """Maschera parzialmente un identificativo: 'abcdef' -> 'abc...'."""
    if not value:
        return ""
    return value[:keep] + "..." if len(value) > keep else value


def mask_session_uri(uri: Optional[str]) -> str:
    """Maschera l'`upload_id` di una session URI (vale come credenziale per la sessione)."""
    if not uri:
        return ""
    return _UPLOAD_ID_RE.sub(lambda m: m.group(1) + mask_partial(m.group(0)[len(m.group(1)) :], keep=6), uri)


def tail_path(p: Union[Path, str], keep_segments: int = 2) -> str:
    """Restituisce la coda del path per logging compatto (accetta `Path` o `str`)."""
    parts = list(Path(p).parts)
    return "/".join(parts[-keep_segments:]) if parts else str(p)


# ---------------------------------------------
# Structured logging
# ---------------------------------------------
@dataclass
class _CtxView:
    run_id: Optional[str] = None
    redact_logs: bool = False


def _ctx_view_from(context: Any = None, run_id: Optional[str] = None) -> _CtxView:
    """Estrae una vista minima del contesto per i filtri di logging."""
    cv = _CtxView()
    if context is not None:
        cv.redact_logs = bool(getattr(context, "redact_logs", False))
        cv.run_id = getattr(context, "run_id", None) or run_id
    else:
        cv.run_id = run_id
    return cv


class _ContextFilter(logging.Filter):
    """Arricchisce ogni record con campi standardizzati."""

    def __init__(self, ctx: _CtxView):
        super().__init__()
        self.ctx = ctx

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = self.ctx.run_id or "-"
        if not hasattr(record, "event"):
            msg = record.msg if isinstance(record.msg, str) else ""
            record.event = msg.strip() or "log"
        return True


class _RedactFilter(logging.Filter):
    """Applica redazione ai messaggi quando attiva."""

    def __init__(self, enabled: bool):
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.enabled:
            return True
        try:
            if isinstance(record.msg, str):
                record.msg = redact_secrets(record.msg)
            for field in _SENSITIVE_KEYS:
                if hasattr(record, field):
                    value = getattr(record, field)
                    if field == "session_uri":
                        setattr(record, field, mask_session_uri(str(value)))
                    else:
                        setattr(record, field, "***")
        except Exception:
            # mai bloccare il logging per un errore di redazione
            pass
        return True


class _KVFormatter(logging.Formatter):
    """Formatter semplice e leggibile, con campi chiave-valore stabili."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        kv = []
        for k in (
            "run_id",
            "event",
            "file_path",
            "phase",
            "duration_ms",
            "offset",
            "status",
        ):
            v = getattr(record, k, None)
            if v not in (None, ""):
                kv.append(f"{k}={v}")
        if kv:
            return f"{base} | " + " ".join(kv)
        return base


def _make_console_handler(level: int, fmt: str) -> logging.Handler:
    ch = logging.StreamHandler(stream=sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(_KVFormatter(fmt))
    return ch


def _make_file_handler(path: Path, level: int, fmt: str) -> logging.Handler:
    fh = RotatingFileHandler(path, encoding="utf-8", maxBytes=1024 * 1024, backupCount=3)
    fh.setLevel(level)
    fh.setFormatter(_KVFormatter(fmt))
    return fh


def _ensure_no_duplicate_handlers(lg: logging.Logger, key: str) -> None:
    """Evita handler duplicati (idempotenza)."""
    to_remove = [h for h in lg.handlers if getattr(h, "_logging_utils_key", None) == key]
    for h in to_remove:
        lg.removeHandler(h)


def _set_logger_filter(lg: logging.Logger, flt: logging.Filter, key: str) -> None:
    """Sostituisce (se presente) un filtro identificato dal key e lo rimpiazza."""
    to_remove = [f for f in lg.filters if getattr(f, "_logging_utils_key", None) == key]
    for f in to_remove:
        lg.removeFilter(f)
    flt._logging_utils_key = key  # type: ignore[attr-defined]
    lg.addFilter(flt)


def get_structured_logger(
    name: str,
    *,
    context: Any = None,
    log_file: Optional[Path] = None,
    run_id: Optional[str] = None,
    level: int | str | None = None,
    redact_logs: Optional[bool] = None,
    propagate: Optional[bool] = None,
) -> logging.Logger:
    """Restituisce un logger configurato e idempotente.

    Parametri:
        name:     nome del logger (es. 'drive_uploader.uploader').
        context:  oggetto con attributi opzionali `.redact_logs`, `.run_id`.
        log_file: path file log; se presente aggiunge un file handler (dir già creata a monte).
        run_id:   identificativo run usato se `context.run_id` assente.
        level:    livello logging (default: ENV `DRIVE_UPLOADER_LOG_LEVEL`, fallback INFO).
        redact_logs: abilita/disabilita redazione (default: `context.redact_logs`, poi ENV).

    Ritorna:
        logging.Logger pronto all'uso.
    """
    # 1) Livello
    if level is None:
        level = os.getenv("DRIVE_UPLOADER_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    # 2) Redazione
    if redact_logs is None:
        if context is not None and getattr(context, "redact_logs", None) is not None:
            redact_logs = bool(getattr(context, "redact_logs"))
        else:
            redact_logs = os.getenv("LOG_REDACTION", "").strip().lower() in {"1", "true", "yes", "on"}

    lg = logging.getLogger(name)
    lg.setLevel(level)
    if propagate is None:
        env_override = os.getenv("DRIVE_UPLOADER_LOG_PROPAGATE", "").strip().lower()
        propagate = env_override in {"1", "true", "yes", "on"}
    # Sotto pytest i log vengono intercettati da caplog (root): serve la propagazione.
    if not propagate and (os.getenv("PYTEST_CURRENT_TEST") or "pytest" in sys.modules):
        propagate = True
    lg.propagate = propagate

    ctx = _ctx_view_from(context, run_id)
    ctx.redact_logs = bool(redact_logs)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    ctx_filter = _ContextFilter(ctx)
    redact_filter = _RedactFilter(bool(redact_logs))
    _set_logger_filter(lg, ctx_filter, f"{name}::ctx_filter")
    _set_logger_filter(lg, redact_filter, f"{name}::redact_filter")
    setattr(lg, "_logging_ctx_view", ctx)

    key_console = f"{name}::console"
    _ensure_no_duplicate_handlers(lg, key_console)
    ch = _make_console_handler(level, fmt)
    ch._logging_utils_key = key_console  # type: ignore[attr-defined]
    ch.addFilter(ctx_filter)
    ch.addFilter(redact_filter)
    lg.addHandler(ch)

    if log_file:
        key_file = f"{name}::file::{str(log_file)}"
        _ensure_no_duplicate_handlers(lg, key_file)
        fh = _make_file_handler(log_file, level, fmt)
        fh._logging_utils_key = key_file  # type: ignore[attr-defined]
        fh.addFilter(ctx_filter)
        fh.addFilter(redact_filter)
        lg.addHandler(fh)

    return lg


def attach_log_file(
    prefix: str,
    log_file: Path,
    *,
    run_id: Optional[str] = None,
    redact_logs: Optional[bool] = None,
) -> list[str]:
    """Aggiunge il file handler a tutti i logger già istanziati sotto `prefix`.

    I logger di modulo non propagano (vedi `get_structured_logger`), quindi il file
    va agganciato a ciascuno. Ritorna i nomi dei logger riconfigurati.
    """
    names = sorted(
        name
        for name, lg in logging.Logger.manager.loggerDict.items()
        if isinstance(lg, logging.Logger) and (name == prefix or name.startswith(prefix + "."))
    )
    for name in names:
        get_structured_logger(name, log_file=log_file, run_id=run_id, redact_logs=redact_logs)
    return names


# ---------------------------------------------
# Telemetria di fase
# ---------------------------------------------
class phase_scope:
    """Context manager per telemetria di fase con campi strutturati.

    Eventi emessi:
      - event=phase_started | phase_completed | phase_failed
      - Campi: phase, run_id (dal filtro di contesto), duration_ms, artifact_count (opz.).
    """

    def __init__(self, logger: logging.Logger, *, stage: str):
        self.logger = logger
        self.stage = stage
        ctx_view = getattr(logger, "_logging_ctx_view", None)
        self._run_id = getattr(ctx_view, "run_id", None) if ctx_view is not None else None
        self._t0: Optional[float] = None
        self._artifact_count: Optional[int] = None

    def set_artifacts(self, count: Optional[int]) -> None:
        self._artifact_count = int(count) if count is not None else None

    def __enter__(self) -> "phase_scope":
        from time import monotonic as _monotonic

        self._t0 = _monotonic()
        extra = self._base_extra()
        extra.update({"event": "phase_started", "status": "start"})
        self.logger.info("phase_started", extra=extra)
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> Literal[False]:
        from time import monotonic as _monotonic

        extra: dict[str, Any] = self._base_extra()
        if self._t0 is not None:
            extra["duration_ms"] = int(round((_monotonic() - self._t0) * 1000))
        if self._artifact_count is not None:
            extra["artifact_count"] = self._artifact_count

        if exc:
            extra["error"] = redact_secrets(str(exc))
            extra["status"] = "failed"
            self.logger.error("phase_failed", extra={"event": "phase_failed", **extra})
            return False
        extra["status"] = "success"
        self.logger.info("phase_completed", extra={"event": "phase_completed", **extra})
        return False

    def _base_extra(self) -> dict[str, Any]:
        return {"phase": self.stage, "run_id": self._run_id or "-"}


__all__ = [
    "get_structured_logger",
    "phase_scope",
    "attach_log_file",
    "redact_secrets",
    "mask_partial",
    "mask_session_uri",
    "tail_path",
]
