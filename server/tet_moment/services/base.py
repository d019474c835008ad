from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Sequence

if TYPE_CHECKING:
    from tet_moment.services.animation import VideoResult
    from tet_moment.services.intake import InputImage
    from tet_moment.services.portrait import PortraitResult


class PortraitSynthesizer(Protocol):
    """Provider protocol: turn 1..5 photos into one composite portrait."""

    async def synthesize_portrait(self, files: Sequence["InputImage"]) -> "PortraitResult":
        raise NotImplementedError


class AnimationSynthesizer(Protocol):
    """Provider protocol: animate a portrait into a downloadable clip."""

    async def synthesize_video(self, portrait: "PortraitResult") -> "VideoResult":
        raise NotImplementedError
