# SPDX-License-Identifier: GPL-3.0-or-later
"""drive-uploader: upload single-shot e resumable su Google Drive (v3)."""

from .drive.resumable import ChunkProgress
from .exceptions import ConfigError, DriveUploadError, ResumeError, TransportError, UploaderError
from .uploader import DriveUploader

__version__ = "1.0.0"

__all__ = [
    "DriveUploader",
    "ChunkProgress",
    "UploaderError",
    "ConfigError",
    "DriveUploadError",
    "TransportError",
    "ResumeError",
]
