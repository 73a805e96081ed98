# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from drive_uploader.cli import run

if __name__ == "__main__":
    run()
