# SPDX-License-Identifier: GPL-3.0-or-later
"""Loader centralizzato della configurazione (YAML opzionale + ENV) con helper typed."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .constants import CHUNK_GRANULARITY, DEFAULT_CHUNK_SIZE, DEFAULT_HTTP_TIMEOUT_S, DEFAULT_MAX_ATTEMPTS
from .env_utils import get_bool, get_env_var, get_int
from .exceptions import ConfigError


def _coerce_int(value: Any, default: int) -> int:
    """Converte value in int, oppure ritorna default."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class UploaderSettings:
    """Parametri runtime dell'uploader (immutabili: usare `with_overrides`)."""

    folder_id: Optional[str] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    service_account_file: Optional[str] = None
    impersonate_subject: Optional[str] = None
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    redact_logs: bool = False
    config_path: Optional[Path] = None

    def with_overrides(self, **overrides: Any) -> "UploaderSettings":
        """Ritorna una copia con i soli override non-None applicati."""
        clean = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **clean) if clean else self


def validate_chunk_size(chunk_size: Any) -> int:
    """Verifica che il chunk sia un intero positivo multiplo di 256 KiB."""
    try:
        value = int(chunk_size)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"chunk_size non numerico: {chunk_size!r}") from e
    if value <= 0 or value % CHUNK_GRANULARITY != 0:
        raise ConfigError(f"chunk_size deve essere un multiplo positivo di {CHUNK_GRANULARITY} byte (ricevuto {value}).")
    return value


def _get_value(data: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    """Recupera un campo annidato usando dot-notation."""
    current: Any = data
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.is_file():
        raise ConfigError("File di configurazione non trovato.", file_path=config_path)
    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Impossibile leggere/parsing YAML: {e}", file_path=config_path) from e
    if not isinstance(payload, dict):
        raise ConfigError("Struttura YAML non valida: atteso un dict.", file_path=config_path)
    return payload


def load_settings(
    config_path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> UploaderSettings:
    """Costruisce `UploaderSettings` da YAML (opzionale) sovrascritto dalle variabili d'ambiente.

    Chiavi YAML: drive.folder_id, drive.service_account_file, drive.impersonate_subject,
    upload.chunk_size, upload.http_timeout_s, upload.max_attempts, logging.redact.
    """
    data: Dict[str, Any] = {}
    resolved: Optional[Path] = None
    if config_path is not None:
        resolved = Path(config_path).expanduser().resolve()
        data = _read_yaml(resolved)

    folder_id = get_env_var("DRIVE_FOLDER_ID", env=env) or _get_value(data, "drive.folder_id")
    sa_file = (
        get_env_var("SERVICE_ACCOUNT_FILE", env=env)
        or get_env_var("GOOGLE_APPLICATION_CREDENTIALS", env=env)
        or _get_value(data, "drive.service_account_file")
    )
    subject = get_env_var("DRIVE_IMPERSONATE_SUBJECT", env=env) or _get_value(data, "drive.impersonate_subject")

    chunk_size = get_env_var("DRIVE_UPLOAD_CHUNK_SIZE", env=env) or _get_value(
        data, "upload.chunk_size", DEFAULT_CHUNK_SIZE
    )
    max_attempts = get_int(
        "DRIVE_MAX_ATTEMPTS", _coerce_int(_get_value(data, "upload.max_attempts"), DEFAULT_MAX_ATTEMPTS), env=env
    )
    timeout_raw = get_env_var("DRIVE_HTTP_TIMEOUT_S", env=env) or _get_value(
        data, "upload.http_timeout_s", DEFAULT_HTTP_TIMEOUT_S
    )
    try:
        timeout = float(timeout_raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"http_timeout_s non valido: {timeout_raw!r}", file_path=resolved) from e
    if timeout <= 0:
        raise ConfigError(f"http_timeout_s deve essere > 0 (ricevuto {timeout}).", file_path=resolved)
    if max_attempts < 1:
        raise ConfigError(f"max_attempts deve essere >= 1 (ricevuto {max_attempts}).", file_path=resolved)

    settings = UploaderSettings(
        folder_id=str(folder_id) if folder_id else None,
        chunk_size=validate_chunk_size(chunk_size),
        service_account_file=str(sa_file) if sa_file else None,
        impersonate_subject=str(subject) if subject else None,
        http_timeout_s=timeout,
        max_attempts=max_attempts,
        redact_logs=get_bool("LOG_REDACTION", bool(_get_value(data, "logging.redact", False)), env=env),
        config_path=resolved,
    )
    if logger:
        logger.info(
            "settings.loaded",
            extra={
                "file_path": str(resolved) if resolved else None,
                "chunk_size": settings.chunk_size,
                "has_folder": bool(settings.folder_id),
            },
        )
    return settings


__all__ = ["UploaderSettings", "load_settings", "validate_chunk_size"]
