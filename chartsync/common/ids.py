from __future__ import annotations

import time
import uuid


def generate_id() -> str:
    """
    Client-generated document id: `<epoch_ms>-<9 hex chars>`.

    Sortable by creation time, unique enough for per-user collections.
    """
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
