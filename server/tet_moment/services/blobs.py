from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Blob:
    """In-memory payload addressed by a revocable handle."""

    handle: str
    data: bytes
    media_type: str
    path: Optional[Path] = None


class BlobRegistry:
    """Issue and revoke opaque ``blob:`` handles to in-memory bytes.

    Previews and downloaded videos are exposed to the user through these
    handles. Whoever creates a handle owns it and must revoke it once the
    payload is superseded, otherwise the bytes stay pinned in memory.
    """

    def __init__(self) -> None:
        self._blobs: dict[str, Blob] = {}

    def create(self, data: bytes, media_type: str, *, path: Optional[Path] = None) -> str:
        """Register a payload. With ``path`` set the bytes stay on disk and ``data`` may be empty."""
        handle = f"blob:{uuid.uuid4().hex}"
        self._blobs[handle] = Blob(handle=handle, data=data, media_type=media_type, path=path)
        return handle

    def get(self, handle: str) -> Optional[Blob]:
        return self._blobs.get(handle)

    def revoke(self, handle: Optional[str]) -> bool:
        """Release a handle; returns False for unknown or already revoked handles."""
        if not handle:
            return False
        removed = self._blobs.pop(handle, None)
        if removed is None:
            logger.debug("Ignoring revoke of unknown handle %s", handle)
            return False
        return True

    def live_handles(self) -> list[str]:
        return list(self._blobs)

    def __contains__(self, handle: object) -> bool:
        return handle in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)
