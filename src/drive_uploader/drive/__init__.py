# SPDX-License-Identifier: GPL-3.0-or-later
"""Package interno 'drive' (client/upload/resumable).

Struttura:
- drive_uploader/drive/client.py    → credenziali, client Drive v3, retry/metriche
- drive_uploader/drive/upload.py    → upload single-shot (multipart | media | resumable SDK)
- drive_uploader/drive/resumable.py → primitive HTTP del protocollo resumable

L'orchestrazione (stato della sessione, abort, resume) vive in `drive_uploader.uploader`.
"""

from typing import List

__all__: List[str] = []
