from __future__ import annotations

import logging
import os
from typing import Optional, Protocol

from tet_moment.config import settings
from tet_moment.errors import CredentialError

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Host capability that establishes the key used for video generation."""

    async def has_credential(self) -> bool:
        raise NotImplementedError

    async def prompt_for_credential(self) -> None:
        raise NotImplementedError

    def current(self) -> Optional[str]:
        raise NotImplementedError


class KeySelectionProvider:
    """Credential provider backed by an offered key or the environment.

    ``offer`` stages a key supplied by the user (for example through the web
    surface); ``prompt_for_credential`` adopts the staged key, falling back to
    ``GEMINI_API_KEY`` / ``API_KEY``, and fails when neither is available.
    """

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._key = (api_key or "").strip() or None
        self._staged: Optional[str] = None

    def offer(self, api_key: str) -> None:
        self._staged = (api_key or "").strip() or None

    async def has_credential(self) -> bool:
        return self._key is not None

    async def prompt_for_credential(self) -> None:
        candidate = (
            self._staged
            or (os.getenv("GEMINI_API_KEY") or "").strip()
            or (os.getenv("API_KEY") or "").strip()
            or (settings.gemini_api_key or "").strip()
        )
        self._staged = None
        if not candidate:
            raise CredentialError("No API key available; set GEMINI_API_KEY or provide one")
        self._key = candidate
        logger.info("Video credential selected")

    def current(self) -> Optional[str]:
        return self._key
