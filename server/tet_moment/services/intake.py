from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from tet_moment.config import settings
from tet_moment.services.blobs import BlobRegistry

logger = logging.getLogger(__name__)

MAX_FILES = 5

SelectionListener = Callable[[list["InputImage"]], None]


@dataclass(slots=True)
class InputImage:
    """One user-supplied portrait photo.

    Either the bytes are held in memory or ``path`` names a file that is read
    only when the image is encoded.
    """

    name: str
    media_type: str
    data: Optional[bytes] = None
    path: Optional[Path] = None
    preview_handle: Optional[str] = None
    released: bool = False

    @classmethod
    def from_path(cls, path: Path, media_type: Optional[str] = None) -> "InputImage":
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            media_type=media_type or guessed or "application/octet-stream",
            path=path,
        )


class FileIntake:
    """Current photo selection plus the preview handles issued for it.

    Every change re-emits the full selection to listeners, which is how the
    workflow controller learns that earlier results are stale.
    """

    def __init__(
        self,
        registry: BlobRegistry,
        *,
        max_files: Optional[int] = None,
    ) -> None:
        self._registry = registry
        self._max_files = max_files if max_files is not None else (settings.max_upload_files or MAX_FILES)
        self._files: list[InputImage] = []
        self._listeners: list[SelectionListener] = []

    @property
    def max_files(self) -> int:
        return self._max_files

    @property
    def files(self) -> list[InputImage]:
        return list(self._files)

    @property
    def preview_handles(self) -> list[str]:
        return [f.preview_handle for f in self._files if f.preview_handle]

    def subscribe(self, listener: SelectionListener) -> None:
        self._listeners.append(listener)

    def set_selection(self, raw_files: Iterable[InputImage]) -> list[InputImage]:
        """Replace the selection with at most ``max_files`` of ``raw_files``.

        Extra files are dropped silently. Handles from the previous selection
        are revoked before new ones are issued.
        """
        selected = list(raw_files)[: self._max_files]
        for previous in self._files:
            self._release(previous)

        for image in selected:
            image.released = False
            image.preview_handle = self._registry.create(image.data or b"", image.media_type, path=image.path)
        self._files = selected
        logger.info("Selection replaced: %d file(s)", len(selected))
        self._emit()
        return self.files

    def remove_at(self, index: int) -> list[InputImage]:
        if index < 0 or index >= len(self._files):
            raise IndexError(f"No selected file at index {index}")
        removed = self._files.pop(index)
        self._release(removed)
        logger.info("Removed %s from selection; %d file(s) left", removed.name, len(self._files))
        self._emit()
        return self.files

    def clear(self) -> None:
        """Drop the selection and release every handle without notifying listeners."""
        for image in self._files:
            self._release(image)
        self._files = []

    def _release(self, image: InputImage) -> None:
        self._registry.revoke(image.preview_handle)
        image.preview_handle = None
        image.released = True

    def _emit(self) -> None:
        snapshot = self.files
        for listener in self._listeners:
            listener(snapshot)
