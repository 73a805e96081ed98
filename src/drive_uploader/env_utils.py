# SPDX-License-Identifier: GPL-3.0-or-later
from __future__ import annotations

"""Env utilities senza side-effects a import-time.

Espone:
- ``ensure_dotenv_loaded()``: carica .env on-demand (idempotente).
- ``get_env_var(name, default=None, required=False)``: lettura sicura.
- ``get_bool(name, default=False)``: parsing booleano da ENV.
- ``get_int(name, default=0)``: parsing intero da ENV.
"""

import os
from collections.abc import Mapping
from typing import Optional

from dotenv import load_dotenv

from .logging_utils import get_structured_logger

__all__ = [
    "ensure_dotenv_loaded",
    "get_env_var",
    "get_bool",
    "get_int",
]

_LOGGER = get_structured_logger("drive_uploader.env_utils")
_ENV_LOADED = False

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def ensure_dotenv_loaded() -> bool:
    """Carica il file .env una sola volta su richiesta esplicita.

    Ritorna True se il caricamento è stato eseguito in questa chiamata,
    False se già caricato in precedenza.
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return False
    loaded = load_dotenv()  # carica da CWD; non forza override
    _ENV_LOADED = True
    _LOGGER.debug("env.loaded", extra={"loaded": bool(loaded)})
    return True


def _source(env: Mapping[str, str] | None) -> Mapping[str, str]:
    if env is not None:
        return env
    ensure_dotenv_loaded()
    return os.environ


def get_env_var(
    name: str,
    default: Optional[str] = None,
    *,
    required: bool = False,
    env: Mapping[str, str] | None = None,
) -> Optional[str]:
    """Ritorna il valore di una variabile d'ambiente.

    - Trimma spazi; se vuota, tratta come non impostata.
    - Se ``required`` e non presente, solleva ``KeyError``.
    - Passando ``env`` si evita il caricamento di .env (mapping custom, es. nei test).
    """
    val = _source(env).get(name)
    if val is None:
        if required:
            raise KeyError(f"ENV missing: {name}")
        return default
    sval = str(val).strip()
    if sval == "":
        if required:
            raise KeyError(f"ENV empty: {name}")
        return default
    return sval


def get_bool(name: str, default: bool = False, *, env: Mapping[str, str] | None = None) -> bool:
    """Parsa un booleano da ENV usando valori comuni truthy/falsy.

    Truthy: 1,true,yes,on (case-insensitive). Falsy: 0,false,no,off.
    Se non impostata o non riconosciuta, ritorna ``default``.
    """
    val = _source(env).get(name)
    if val is None:
        return bool(default)
    s = str(val).strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return bool(default)


def get_int(name: str, default: int = 0, *, env: Mapping[str, str] | None = None) -> int:
    """Parsa un intero da ENV; ritorna `default` se mancante o non valido."""
    val = _source(env).get(name)
    if val is None:
        return int(default)
    try:
        return int(str(val).strip())
    except ValueError:
        return int(default)
