# SPDX-License-Identifier: GPL-3.0-or-later
# src/drive_uploader/constants.py
"""Costanti condivise (protocollo Drive v3, default di upload)."""

from __future__ import annotations

# Scope OAuth completo per Drive (upload in cartelle condivise / Shared Drives)
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"

# Endpoint di upload (resumable/multipart/media)
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"

# Granularità imposta da Drive: ogni chunk (tranne l'ultimo) è multiplo di 256 KiB
CHUNK_GRANULARITY = 256 * 1024
DEFAULT_CHUNK_SIZE = CHUNK_GRANULARITY

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_FILE_FIELDS = "id, name, mimeType, kind"

UPLOAD_TYPES = ("multipart", "media", "resumable")

# Status HTTP del protocollo resumable
STATUS_COMPLETE = frozenset({200, 201})
STATUS_RESUME_INCOMPLETE = 308
STATUS_SESSION_GONE = frozenset({404, 410})
STATUS_TRANSIENT = frozenset({429, 500, 502, 503, 504})

DEFAULT_HTTP_TIMEOUT_S = 60.0
DEFAULT_MAX_ATTEMPTS = 6
