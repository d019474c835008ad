from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

import httpx

from tet_moment.errors import DownloadError, TetMomentError

logger = logging.getLogger(__name__)


class GeminiClientError(TetMomentError):
    """Raised when Gemini request/response handling fails."""


class GeminiClientConfigError(GeminiClientError):
    """Raised when required Gemini client configuration is missing."""


@dataclass(slots=True)
class GenerationOperation:
    """Normalized representation of a long-running generation operation."""

    name: str
    done: bool = False
    error_code: Optional[int | str] = None
    error_message: Optional[str] = None
    video_uri: Optional[str] = None
    raw: Optional[dict[str, Any]] = None

    @property
    def has_error(self) -> bool:
        return self.error_message is not None or self.error_code is not None


def _coerce_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    raise GeminiClientError(f"Expected dict payload from Gemini, got {type(value)!r}")


def _first(items: Any) -> Any:
    if isinstance(items, list) and items:
        return items[0]
    return None


def _extract_video_uri(response: Any) -> Optional[str]:
    """Pull the first video URI out of a finished operation's response body."""
    if not isinstance(response, dict):
        return None
    # REST shape first, then the shape returned by the SDKs.
    wrapped = response.get("generateVideoResponse")
    samples = wrapped.get("generatedSamples") if isinstance(wrapped, dict) else None
    sample = _first(samples) or _first(response.get("generatedVideos"))
    if not isinstance(sample, dict):
        return None
    video = sample.get("video")
    if not isinstance(video, dict):
        return None
    uri = video.get("uri")
    if isinstance(uri, str) and uri.strip():
        return uri.strip()
    return None


def parse_operation(data: Mapping[str, Any], *, fallback_name: str = "") -> GenerationOperation:
    """Build a GenerationOperation from a raw operation payload."""
    payload = _coerce_dict(dict(data))
    name = payload.get("name") or fallback_name
    if not isinstance(name, str) or not name.strip():
        raise GeminiClientError(f"Operation payload missing name: {payload}")

    error_code: Optional[int | str] = None
    error_message: Optional[str] = None
    error = payload.get("error")
    if isinstance(error, dict):
        error_code = error.get("code")
        error_message = str(error.get("message") or "Unknown error")
    elif error:
        error_message = str(error)

    return GenerationOperation(
        name=name.strip(),
        done=bool(payload.get("done")),
        error_code=error_code,
        error_message=error_message,
        video_uri=_extract_video_uri(payload.get("response")),
        raw=payload,
    )


def retrieval_url(uri: str, api_key: str) -> str:
    """Append the credential to a download locator.

    Locators handed out by the service already carry a query string
    (``...:download?alt=media``), so the key is joined with ``&``.
    """
    return f"{uri}&key={api_key}"


class GeminiClient:
    """Async HTTP client for the Generative Language REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        request_timeout_seconds: float = 120.0,
        http2: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        normalized_key = (api_key or "").strip()
        if not normalized_key:
            raise GeminiClientConfigError("GEMINI_API_KEY is required")
        self._api_key = normalized_key
        self._api_base = api_base.rstrip("/")
        # Auth travels per request: the media download endpoint takes the key
        # as a query parameter instead.
        self._http = httpx.AsyncClient(
            timeout=request_timeout_seconds,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            http2=http2,
            follow_redirects=True,
            transport=transport,
        )

    @property
    def api_key(self) -> str:
        return self._api_key

    @property
    def headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _model_url(self, model: str, method: str) -> str:
        return f"{self._api_base}/models/{model}:{method}"

    async def _post_json(self, url: str, body: Mapping[str, Any], *, action: str) -> dict[str, Any]:
        try:
            response = await self._http.post(url, json=dict(body), headers=self.headers)
        except httpx.HTTPError as exc:
            raise GeminiClientError(f"Gemini {action} request error: {exc}") from exc
        return self._decode(response, action=action)

    @staticmethod
    def _decode(response: httpx.Response, *, action: str) -> dict[str, Any]:
        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            detail = response.text[:500]
            raise GeminiClientError(
                f"Gemini {action} failed with status {response.status_code}: {detail}"
            ) from exc
        try:
            return _coerce_dict(response.json())
        except ValueError as exc:
            raise GeminiClientError(f"Gemini {action} returned invalid JSON") from exc

    async def generate_content(
        self,
        model: str,
        parts: Sequence[Mapping[str, Any]],
        *,
        response_modalities: Sequence[str] = ("IMAGE",),
    ) -> dict[str, Any]:
        """Run one generateContent call and return the raw response body."""
        body = {
            "contents": [{"parts": [dict(part) for part in parts]}],
            "generationConfig": {"responseModalities": list(response_modalities)},
        }
        return await self._post_json(self._model_url(model, "generateContent"), body, action="generateContent")

    async def submit_video(
        self,
        model: str,
        *,
        prompt: str,
        image_b64: str,
        image_media_type: str = "image/png",
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> GenerationOperation:
        """Start a long-running video generation and return its operation handle."""
        body = {
            "instances": [
                {
                    "prompt": prompt,
                    "image": {"bytesBase64Encoded": image_b64, "mimeType": image_media_type},
                }
            ],
            "parameters": dict(parameters or {}),
        }
        data = await self._post_json(
            self._model_url(model, "predictLongRunning"), body, action="predictLongRunning"
        )
        operation = parse_operation(data)
        logger.info("Submitted video operation %s", operation.name)
        return operation

    async def get_operation(self, name: str) -> GenerationOperation:
        """Fetch the current status of a previously submitted operation."""
        try:
            response = await self._http.get(f"{self._api_base}/{name}", headers=self.headers)
        except httpx.HTTPError as exc:
            raise GeminiClientError(f"Gemini operation status request error: {exc}") from exc
        data = self._decode(response, action="operation status")
        return parse_operation(data, fallback_name=name)

    async def download(self, uri: str, *, api_key: Optional[str] = None) -> bytes:
        """Fetch result bytes from a retrieval locator."""
        url = retrieval_url(uri, (api_key or self._api_key).strip())
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise DownloadError(0, str(exc)) from exc
        if not response.is_success:
            raise DownloadError(response.status_code, response.text)
        return response.content

    async def aclose(self) -> None:
        """Close persistent HTTP resources used by this client."""
        await self._http.aclose()
