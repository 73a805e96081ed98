# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/cli_runner.py
from __future__ import annotations

import argparse
import sys
from typing import Callable, Optional, Sequence

from .exceptions import UploaderError, exit_code_for

CliMainFn = Callable[[argparse.Namespace], int | None]
ParseArgsFn = Callable[[Optional[Sequence[str]]], argparse.Namespace]


def run_cli_orchestrator(
    entry_name: str,
    parse_args: ParseArgsFn,
    main_fn: CliMainFn,
    argv: Optional[Sequence[str]] = None,
) -> int:
    """Wrapper condiviso per comandi CLI basati su argparse.

    - Esegue il parsing degli argomenti tramite `parse_args`.
    - Passa il namespace a `main_fn`.
    - Accetta un return value opzionale `int` da `main_fn` per exit code custom.
    - Converte le eccezioni note in exit code coerenti tramite `exit_code_for`.
    - Gestisce `KeyboardInterrupt` restituendo 130 (Ctrl+C).

    Ritorna l'exit code (il chiamante decide se passarlo a `sys.exit`).
    """

    args = parse_args(argv)
    setattr(args, "_entry_name", entry_name)

    try:
        result = main_fn(args)
    except KeyboardInterrupt:
        return 130
    except UploaderError as exc:
        print(f"{entry_name}: {exc}", file=sys.stderr)
        return exit_code_for(exc)
    except Exception as exc:  # noqa: BLE001 - ultima linea di difesa
        print(f"{entry_name}: errore inatteso: {exc}", file=sys.stderr)
        return exit_code_for(exc)

    if isinstance(result, int):
        return result
    return 0


__all__ = ["run_cli_orchestrator", "CliMainFn", "ParseArgsFn"]
