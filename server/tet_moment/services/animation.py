from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tet_moment.config import settings
from tet_moment.errors import (
    CredentialError,
    GenerationTimeoutError,
    MissingResultError,
    RemoteGenerationError,
)
from tet_moment.services.blobs import BlobRegistry
from tet_moment.services.credentials import CredentialProvider
from tet_moment.services.gemini import GeminiClient, GenerationOperation
from tet_moment.services.portrait import PortraitResult

logger = logging.getLogger(__name__)

VIDEO_PROMPT = (
    "An 8-second animated video based on the provided image of a family celebrating Tet. "
    "The family members should show subtle, realistic motion: gently laughing, smiling, and "
    "interacting warmly with each other while enjoying their meal. The atmosphere is festive "
    "and joyful. Include a background of gentle, happy Tet music and soft ambient sounds of a "
    "family gathering. Towards the very end of the video (last 2 seconds), apply a magical, "
    "noticeable sparkling effect to everyone's teeth to highlight their bright smiles. A 'P/S' "
    "logo should be visible in the bottom right corner throughout the video."
)

ClientFactory = Callable[[str], Any]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(slots=True)
class VideoResult:
    """Downloaded clip, addressed through a revocable blob handle."""

    handle: str
    size_bytes: int
    media_type: str = "video/mp4"
    filename: str = "ps-tet-family-moment.mp4"


def _default_client_factory(api_key: str) -> GeminiClient:
    return GeminiClient(
        api_key=api_key,
        api_base=settings.gemini_api_base,
        request_timeout_seconds=settings.gemini_request_timeout_seconds,
        http2=settings.gemini_http2,
    )


class AnimationSynthesisClient:
    """Animate a portrait with Veo: submit, poll the operation, download.

    A fresh transport is built for every request so that a credential the
    user re-selects between attempts is picked up. The poll loop sleeps first
    and fetches second; the two never overlap, and a terminal operation is
    never fetched again. Cancelling the awaiting task abandons the operation
    without leaving anything behind.
    """

    def __init__(
        self,
        *,
        credentials: CredentialProvider,
        registry: BlobRegistry,
        client_factory: Optional[ClientFactory] = None,
        model: Optional[str] = None,
        prompt: str = VIDEO_PROMPT,
        poll_interval_seconds: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
        resolution: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._credentials = credentials
        self._registry = registry
        self._client_factory = client_factory or _default_client_factory
        self._model = model or settings.gemini_video_model
        self._prompt = prompt
        self._poll_interval_seconds = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.video_poll_interval_seconds
        )
        if self._poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self._max_wait_seconds = max(
            0.0,
            max_wait_seconds if max_wait_seconds is not None else settings.video_max_wait_seconds,
        )
        self._resolution = resolution or settings.video_resolution
        self._aspect_ratio = aspect_ratio or settings.video_aspect_ratio
        self._sleep = sleep

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "sampleCount": 1,
            "resolution": self._resolution,
            "aspectRatio": self._aspect_ratio,
        }

    async def synthesize_video(self, portrait: PortraitResult) -> VideoResult:
        api_key = (self._credentials.current() or "").strip()
        if not api_key:
            raise CredentialError("No API key selected for video generation")

        client = self._client_factory(api_key)
        try:
            operation = await client.submit_video(
                self._model,
                prompt=self._prompt,
                image_b64=portrait.data,
                image_media_type="image/png",
                parameters=self.parameters,
            )
            operation = await self._wait_for_completion(client, operation)

            if operation.has_error:
                raise RemoteGenerationError(operation.error_code, operation.error_message or "")
            if not operation.video_uri:
                raise MissingResultError()

            payload = await client.download(operation.video_uri, api_key=api_key)
        finally:
            await client.aclose()

        handle = self._registry.create(payload, "video/mp4")
        logger.info("Video ready (%d bytes) as %s", len(payload), handle)
        return VideoResult(
            handle=handle,
            size_bytes=len(payload),
            filename=settings.video_download_filename,
        )

    async def _wait_for_completion(self, client: Any, operation: GenerationOperation) -> GenerationOperation:
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self._max_wait_seconds if self._max_wait_seconds > 0 else None
        polls = 0

        while not operation.done:
            if deadline is not None and loop.time() >= deadline:
                raise GenerationTimeoutError(operation.name, self._max_wait_seconds)
            await self._sleep(self._poll_interval_seconds)
            operation = await client.get_operation(operation.name)
            polls += 1
            logger.debug("Operation %s poll #%d done=%s", operation.name, polls, operation.done)

        logger.info(
            "Operation %s finished after %d poll(s) in %.1fs",
            operation.name,
            polls,
            loop.time() - started,
        )
        return operation
