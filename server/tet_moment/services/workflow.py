from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from tet_moment.config import settings
from tet_moment.errors import (
    CredentialError,
    EmptySelectionError,
    WorkflowBusyError,
    WorkflowStateError,
)
from tet_moment.services.animation import VideoResult
from tet_moment.services.base import AnimationSynthesizer, PortraitSynthesizer
from tet_moment.services.blobs import BlobRegistry
from tet_moment.services.credentials import CredentialProvider
from tet_moment.services.intake import FileIntake, InputImage
from tet_moment.services.portrait import PortraitResult

logger = logging.getLogger(__name__)

VIDEO_PROGRESS_MESSAGES = (
    "Gathering the Tet decorations...",
    "Setting the festive table...",
    "Animating your family's smiles...",
    "Adding the final sparkle...",
    "This can take a few minutes...",
)

# Error text the video service returns for an unknown or revoked key.
CREDENTIAL_NOT_FOUND_SIGNAL = "Requested entity was not found"

EMPTY_SELECTION_MESSAGE = "Please upload at least one photo."
PORTRAIT_FAILED_MESSAGE = "Failed to generate the family image. Please try again."
CREDENTIAL_REQUIRED_MESSAGE = "API Key selection is required for video generation."
CREDENTIAL_INVALID_MESSAGE = "API Key not found or invalid. Please select a valid key and try again."


class WorkflowState(str, Enum):
    """Progress of one session through portrait and video generation."""

    IDLE = "idle"
    GENERATING_IMAGE = "generating_image"
    IMAGE_READY = "image_ready"
    GENERATING_VIDEO = "generating_video"
    VIDEO_READY = "video_ready"
    FAILED = "failed"

    @property
    def is_busy(self) -> bool:
        return self in {WorkflowState.GENERATING_IMAGE, WorkflowState.GENERATING_VIDEO}


@dataclass(slots=True)
class Failure:
    """Reason attached to the FAILED state."""

    message: str
    error: BaseException
    credential_problem: bool = False


StateListener = Callable[["WorkflowController"], None]


class WorkflowController:
    """Drive a session from selected photos to a downloadable video.

    Synthesis errors never escape ``generate_portrait``/``generate_video``;
    they are mapped to a user-facing message and the FAILED state. Misuse
    (triggering while busy, or video without a portrait) raises.

    Each run carries a token. A selection change bumps it, so a result that
    arrives for a superseded run is dropped and its resources are released.
    """

    def __init__(
        self,
        *,
        intake: FileIntake,
        portrait_client: PortraitSynthesizer,
        animation_client: AnimationSynthesizer,
        credentials: CredentialProvider,
        registry: BlobRegistry,
        progress_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._intake = intake
        self._portrait_client = portrait_client
        self._animation_client = animation_client
        self._credentials = credentials
        self._registry = registry
        self._progress_interval_seconds = (
            progress_interval_seconds
            if progress_interval_seconds is not None
            else settings.video_progress_interval_seconds
        )
        self._clock = clock

        self._state = WorkflowState.IDLE
        self._portrait: Optional[PortraitResult] = None
        self._video: Optional[VideoResult] = None
        self._failure: Optional[Failure] = None
        self._credential_selected = False
        # Set after the service rejected the key; forces a prompt even if the
        # provider still reports a credential.
        self._must_reprompt = False
        self._portrait_in_flight = False
        self._video_in_flight = False
        self._video_started_at: Optional[float] = None
        self._run_token = 0
        self._listeners: list[StateListener] = []

        intake.subscribe(self._on_selection_changed)

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def portrait(self) -> Optional[PortraitResult]:
        return self._portrait

    @property
    def video(self) -> Optional[VideoResult]:
        return self._video

    @property
    def failure(self) -> Optional[Failure]:
        return self._failure

    @property
    def is_busy(self) -> bool:
        """True while a synthesis call is pending, even if a reset changed the state."""
        return self._portrait_in_flight or self._video_in_flight or self._state.is_busy

    @property
    def credential_selected(self) -> bool:
        return self._credential_selected

    @property
    def intake(self) -> FileIntake:
        return self._intake

    @property
    def registry(self) -> BlobRegistry:
        return self._registry

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: WorkflowState) -> None:
        if state is not self._state:
            logger.info("Workflow %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in self._listeners:
            listener(self)

    def _fail(self, error: BaseException, message: str, *, credential_problem: bool = False) -> None:
        logger.warning("Workflow failed: %s (%s)", message, type(error).__name__)
        self._failure = Failure(message=message, error=error, credential_problem=credential_problem)
        self._set_state(WorkflowState.FAILED)

    def _release_video(self) -> None:
        if self._video is not None:
            self._registry.revoke(self._video.handle)
            self._video = None

    def _discard_results(self) -> None:
        self._portrait = None
        self._release_video()
        self._failure = None

    def _on_selection_changed(self, files: list[InputImage]) -> None:
        self._run_token += 1
        self._discard_results()
        self._video_started_at = None
        self._set_state(WorkflowState.IDLE)

    def _ensure_not_busy(self) -> None:
        if self.is_busy:
            raise WorkflowBusyError(f"Generation already in progress ({self._state.value})")

    async def generate_portrait(self) -> WorkflowState:
        self._ensure_not_busy()
        self._portrait_in_flight = True
        try:
            return await self._generate_portrait()
        finally:
            self._portrait_in_flight = False

    async def _generate_portrait(self) -> WorkflowState:
        files = self._intake.files
        self._run_token += 1
        token = self._run_token
        self._discard_results()

        if not files:
            self._fail(EmptySelectionError(), EMPTY_SELECTION_MESSAGE)
            return self._state

        self._set_state(WorkflowState.GENERATING_IMAGE)
        try:
            portrait = await self._portrait_client.synthesize_portrait(files)
        except Exception as exc:
            if token != self._run_token:
                logger.info("Dropping portrait failure for a superseded selection: %s", exc)
                return self._state
            logger.exception("Image generation failed")
            self._fail(exc, PORTRAIT_FAILED_MESSAGE)
            return self._state

        if token != self._run_token:
            logger.info("Dropping portrait for a superseded selection")
            return self._state
        self._portrait = portrait
        self._set_state(WorkflowState.IMAGE_READY)
        return self._state

    async def _ensure_credential(self) -> bool:
        if self._credential_selected:
            return True
        try:
            if self._must_reprompt or not await self._credentials.has_credential():
                await self._credentials.prompt_for_credential()
        except Exception as exc:
            logger.exception("API key selection failed")
            error = exc if isinstance(exc, CredentialError) else CredentialError(str(exc))
            if error is not exc:
                error.__cause__ = exc
            self._fail(error, CREDENTIAL_REQUIRED_MESSAGE, credential_problem=True)
            return False
        self._credential_selected = True
        self._must_reprompt = False
        return True

    async def generate_video(self) -> WorkflowState:
        self._ensure_not_busy()
        portrait = self._portrait
        if portrait is None:
            raise WorkflowStateError("Generate a portrait before requesting a video")
        self._video_in_flight = True
        try:
            return await self._generate_video(portrait)
        finally:
            self._video_in_flight = False

    async def _generate_video(self, portrait: PortraitResult) -> WorkflowState:
        if not await self._ensure_credential():
            return self._state

        self._run_token += 1
        token = self._run_token
        self._release_video()
        self._failure = None
        self._video_started_at = self._clock()
        self._set_state(WorkflowState.GENERATING_VIDEO)
        try:
            video = await self._animation_client.synthesize_video(portrait)
        except asyncio.CancelledError:
            if token == self._run_token:
                logger.info("Video generation cancelled")
                self._video_started_at = None
                self._set_state(WorkflowState.IMAGE_READY)
            raise
        except Exception as exc:
            if token != self._run_token:
                logger.info("Dropping video failure for a superseded run: %s", exc)
                return self._state
            logger.exception("Video generation failed")
            self._video_started_at = None
            self._fail_video(exc)
            return self._state

        if token != self._run_token:
            logger.info("Dropping video for a superseded run")
            self._registry.revoke(video.handle)
            return self._state
        self._video_started_at = None
        self._video = video
        self._set_state(WorkflowState.VIDEO_READY)
        return self._state

    def _fail_video(self, exc: Exception) -> None:
        text = str(exc)
        if CREDENTIAL_NOT_FOUND_SIGNAL in text:
            # Re-arm the gate so the next attempt prompts for a key again.
            self._credential_selected = False
            self._must_reprompt = True
            self._fail(exc, CREDENTIAL_INVALID_MESSAGE, credential_problem=True)
            return
        self._fail(exc, f"Failed to generate the video: {text}. Please try again.")

    async def select_credential(self) -> WorkflowState:
        """Re-run credential selection, e.g. from the error banner."""
        try:
            await self._credentials.prompt_for_credential()
        except Exception as exc:
            logger.exception("API key selection failed")
            if not self._state.is_busy:
                error = exc if isinstance(exc, CredentialError) else CredentialError(str(exc))
                self._fail(error, CREDENTIAL_REQUIRED_MESSAGE, credential_problem=True)
            return self._state

        self._credential_selected = True
        self._must_reprompt = False
        if self._state is WorkflowState.FAILED:
            self._failure = None
            self._set_state(WorkflowState.IMAGE_READY if self._portrait else WorkflowState.IDLE)
        return self._state

    def progress_message(self, now: Optional[float] = None) -> Optional[str]:
        """Cosmetic status line, rotated on a fixed cadence while the video renders."""
        if self._state is not WorkflowState.GENERATING_VIDEO or self._video_started_at is None:
            return None
        elapsed = max(0.0, (self._clock() if now is None else now) - self._video_started_at)
        index = int(elapsed // self._progress_interval_seconds) % len(VIDEO_PROGRESS_MESSAGES)
        return VIDEO_PROGRESS_MESSAGES[index]

    def snapshot(self) -> dict[str, Any]:
        failure = self._failure
        return {
            "state": self._state.value,
            "files": [image.name for image in self._intake.files],
            "previews": self._intake.preview_handles,
            "portrait": self._portrait.data_url if self._portrait else None,
            "video": self._video.handle if self._video else None,
            "progress_message": self.progress_message(),
            "error": failure.message if failure else None,
            "credential_problem": bool(failure and failure.credential_problem),
            "credential_selected": self._credential_selected,
        }

    def close(self) -> None:
        """Release every handle owned by the session."""
        self._run_token += 1
        self._discard_results()
        self._intake.clear()
        self._video_started_at = None
        self._set_state(WorkflowState.IDLE)
