from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from tet_moment.config import settings
from tet_moment.errors import EmptySelectionError, NoImageReturnedError, ReadError
from tet_moment.services.encoding import encode_all
from tet_moment.services.gemini import GeminiClient
from tet_moment.services.intake import InputImage

logger = logging.getLogger(__name__)

PORTRAIT_PROMPT = (
    "Create a new, single, composite image featuring the people from all the uploaded photos. "
    "The scene should be a warm, happy family gathered around a table, enjoying a festive Tet "
    "meal together. All family members should be dressed in beautiful, traditional Vietnamese "
    "Ao Dai outfits in vibrant Tet colors like red and gold. The overall atmosphere must be "
    "joyful and celebratory. In the bottom right corner, please subtly integrate a simple, "
    "elegant 'P/S' logo. The final output should be a single image."
)


@dataclass(frozen=True, slots=True)
class PortraitResult:
    """Generated portrait as returned by the image service (base64 PNG)."""

    data: str
    media_type: str = "image/png"

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ReadError(f"Portrait payload is not valid base64: {exc}") from exc


def extract_image_data(response: Any) -> Optional[str]:
    """Return the first inline image payload of the first candidate, if any."""
    if not isinstance(response, dict):
        return None
    candidates = response.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    for part in parts or []:
        if not isinstance(part, dict):
            continue
        inline = part.get("inlineData") or part.get("inline_data")
        if isinstance(inline, dict):
            data = inline.get("data")
            if isinstance(data, str) and data:
                return data
    return None


class PortraitSynthesisClient:
    """Composite family portrait from up to five photos via the Gemini image model."""

    def __init__(
        self,
        client: GeminiClient,
        *,
        model: Optional[str] = None,
        prompt: str = PORTRAIT_PROMPT,
    ) -> None:
        self._client = client
        self._model = model or settings.gemini_image_model
        self._prompt = prompt

    async def synthesize_portrait(self, files: Sequence[InputImage]) -> PortraitResult:
        if not files:
            raise EmptySelectionError()

        encoded = await encode_all(files)
        parts: list[dict[str, Any]] = [{"text": self._prompt}]
        parts.extend(part.as_inline_data() for part in encoded)

        logger.info("Requesting portrait from %s with %d photo(s)", self._model, len(encoded))
        response = await self._client.generate_content(self._model, parts, response_modalities=("IMAGE",))
        data = extract_image_data(response)
        if data is None:
            raise NoImageReturnedError()
        return PortraitResult(data=data)
