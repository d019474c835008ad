from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from typing import Any, Sequence

from tet_moment.errors import ReadError
from tet_moment.services.intake import InputImage


@dataclass(frozen=True, slots=True)
class EncodedImagePart:
    """Base64 payload plus the media type declared by the source file."""

    data: str
    media_type: str

    def as_inline_data(self) -> dict[str, Any]:
        return {"inlineData": {"mimeType": self.media_type, "data": self.data}}


def _b64(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")


async def encode(image: InputImage) -> EncodedImagePart:
    """Encode one selected image for inclusion in a request payload.

    Reading a path-backed image and the base64 of a multi-megabyte photo are
    both done in a worker thread so the event loop stays responsive.
    """
    if image.released:
        raise ReadError(f"{image.name} was released from the selection")
    payload = image.data
    if payload is None and image.path is not None:
        try:
            payload = await asyncio.to_thread(image.path.read_bytes)
        except OSError as exc:
            raise ReadError(f"Could not read {image.name}: {exc}") from exc
    if payload is None:
        raise ReadError(f"{image.name} has no readable content")
    try:
        data = await asyncio.to_thread(_b64, bytes(payload))
    except (TypeError, ValueError, binascii.Error) as exc:
        raise ReadError(f"Could not read {image.name}: {exc}") from exc
    return EncodedImagePart(data=data, media_type=image.media_type)


async def encode_all(images: Sequence[InputImage]) -> list[EncodedImagePart]:
    """Encode all images concurrently, keeping selection order."""
    return list(await asyncio.gather(*(encode(image) for image in images)))
