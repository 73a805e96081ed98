# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/exceptions.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Tuple

"""
Eccezioni SSoT per drive-uploader.

Ruoli principali:
- `UploaderError`: base per tutte le eccezioni di dominio (no I/O, no exit).
- `ConfigError`: configurazione/argomenti non validi (chunk size, folder id, credenziali).
- `DriveUploadError`: fallimento di un upload (single-shot o chunk).
- `TransportError`: errore di rete su richieste HTTP raw (wrappa `requests`).
- `ResumeError`: sessione resumable non riprendibile (porta la risposta grezza).
- `EXIT_CODES` + `exit_code_for`: tabella centralizzata per la CLI.

Linee guida:
- Nessuna eccezione fa I/O o termina il processo.
- I messaggi includono contesto “safe” in __str__ (tail(file), mask id, status HTTP).
"""

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class UploaderError(Exception):
    """Eccezione generica per errori bloccanti dell'uploader.

    Accetta un messaggio e un payload contestuale opzionale (file_path, drive_id, status)
    utile per logging strutturato e diagnosi.
    """

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        file_path: Optional[str | Path] = None,
        drive_id: Optional[str] = None,
        status: Optional[int] = None,
        **_: Any,
    ) -> None:
        super().__init__(message or "")
        self.file_path: Optional[str | Path] = file_path
        self.drive_id: Optional[str] = drive_id
        self.status: Optional[int] = status

    @staticmethod
    def _safe_file_repr(fp: str | Path) -> str:
        """Mostra solo il nome (niente path assoluti)."""
        try:
            return Path(fp).name or str(fp)
        except Exception:
            return str(fp)

    @staticmethod
    def _mask_id(val: str, keep: int = 6) -> str:
        """Maschera l'ID Drive lasciando solo gli ultimi `keep` caratteri."""
        s = str(val)
        if len(s) <= keep:
            return s
        return f"…{s[-keep:]}"

    def __str__(self) -> str:
        base_msg = super().__str__() or self.__class__.__name__
        context_parts: list[str] = []
        if self.file_path:
            context_parts.append(f"file={self._safe_file_repr(self.file_path)}")
        if self.drive_id:
            context_parts.append(f"drive_id={self._mask_id(self.drive_id)}")
        if self.status is not None:
            context_parts.append(f"status={self.status}")
        context_info = f" [{' | '.join(context_parts)}]" if context_parts else ""
        return f"{base_msg}{context_info}"


# ---------------------------------------------------------------------------
# Errori tipizzati
# ---------------------------------------------------------------------------


class ConfigError(UploaderError):
    """Errore di caricamento o validazione della configurazione."""

    pass


class DriveUploadError(UploaderError):
    """Errore nel caricamento su Google Drive."""

    pass


class TransportError(DriveUploadError):
    """Errore di rete (timeout, reset, DNS) durante una richiesta HTTP raw."""

    pass


class ResumeError(DriveUploadError):
    """La sessione resumable non può proseguire: va riavviato l'upload.

    `response` è la coppia (body, status) della richiesta fallita (None se assente).
    """

    def __init__(
        self,
        message: Optional[str] = None,
        response: Optional[Tuple[str, int]] = None,
        **kwargs: Any,
    ) -> None:
        if response is not None:
            kwargs.setdefault("status", response[1])
        super().__init__(message, **kwargs)
        self.response: Optional[Tuple[str, int]] = response


# ---------------------------------------------------------------------------
# Exit codes centralizzati (nessun side-effect)
# ---------------------------------------------------------------------------

EXIT_CODES = {
    "UploaderError": 1,
    "ConfigError": 2,
    "DriveUploadError": 22,
    "TransportError": 23,
    "ResumeError": 24,
}


def exit_code_for(exc: BaseException) -> int:
    """Restituisce il codice di uscita per un’eccezione (fallback a UploaderError=1)."""
    return EXIT_CODES.get(type(exc).__name__, EXIT_CODES["UploaderError"])


__all__ = [
    "UploaderError",
    "ConfigError",
    "DriveUploadError",
    "TransportError",
    "ResumeError",
    "EXIT_CODES",
    "exit_code_for",
]
