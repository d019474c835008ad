"""Error taxonomy shared by the synthesis clients and the workflow controller."""
from __future__ import annotations

from typing import Optional


class TetMomentError(RuntimeError):
    """Base class for every failure the workflow can surface to the user."""


class EmptySelectionError(TetMomentError):
    """Raised when portrait synthesis is requested with no files selected."""

    def __init__(self, message: str = "At least one photo is required") -> None:
        super().__init__(message)


class ReadError(TetMomentError):
    """Raised when a selected file cannot be read for encoding."""


class NoImageReturnedError(TetMomentError):
    """Raised when the image service responds without any image part."""

    def __init__(self, message: str = "No image data returned from the API.") -> None:
        super().__init__(message)


class MissingResultError(TetMomentError):
    """Raised when a finished video operation carries no retrieval locator."""

    def __init__(
        self,
        message: str = "Video generation completed, but no download link was found.",
    ) -> None:
        super().__init__(message)


class RemoteGenerationError(TetMomentError):
    """Raised when the video service reports a failed operation."""

    def __init__(self, code: Optional[int | str], message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Video generation failed: {message} (Code: {code})")


class GenerationTimeoutError(TetMomentError):
    """Raised when a video operation is still running after the configured ceiling."""

    def __init__(self, operation_name: str, waited_seconds: float) -> None:
        self.operation_name = operation_name
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Video generation did not finish within {waited_seconds:.0f}s ({operation_name})"
        )


class DownloadError(TetMomentError):
    """Raised when fetching the finished video bytes does not succeed."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(
            f"Failed to download the generated video. Status: {status}. Details: {body}"
        )


class CredentialError(TetMomentError):
    """Raised when the video credential is missing, invalid, or selection failed."""


class WorkflowStateError(TetMomentError):
    """Raised when an action is triggered from a state that does not allow it."""


class WorkflowBusyError(WorkflowStateError):
    """Raised when a generation action is triggered while one is already running."""
