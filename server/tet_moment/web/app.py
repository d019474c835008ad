from __future__ import annotations

import asyncio
import contextlib
import logging
import mimetypes
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI, File, HTTPException, Response, UploadFile
from fastapi.responses import FileResponse

from tet_moment import __version__
from tet_moment.config import configure_logging, settings
from tet_moment.errors import WorkflowBusyError, WorkflowStateError
from tet_moment.services.animation import AnimationSynthesisClient
from tet_moment.services.blobs import BlobRegistry
from tet_moment.services.credentials import KeySelectionProvider
from tet_moment.services.gemini import GeminiClient
from tet_moment.services.intake import FileIntake, InputImage
from tet_moment.services.portrait import PortraitSynthesisClient
from tet_moment.services.workflow import WorkflowController
from tet_moment.web.models import CredentialRequest, StateResponse

logger = logging.getLogger(__name__)


def _build_controller() -> tuple[WorkflowController, KeySelectionProvider, GeminiClient]:
  registry = BlobRegistry()
  credentials = KeySelectionProvider(settings.gemini_api_key)
  gemini = GeminiClient(
    api_key=settings.gemini_api_key or "",
    api_base=settings.gemini_api_base,
    request_timeout_seconds=settings.gemini_request_timeout_seconds,
    http2=settings.gemini_http2,
  )
  controller = WorkflowController(
    intake=FileIntake(registry),
    portrait_client=PortraitSynthesisClient(gemini),
    animation_client=AnimationSynthesisClient(credentials=credentials, registry=registry),
    credentials=credentials,
    registry=registry,
  )
  return controller, credentials, gemini


def _log_task_result(task: asyncio.Task) -> None:
  if task.cancelled():
    return
  exc = task.exception()
  if exc is not None:
    logger.error("Background video task crashed", exc_info=exc)


def create_app(
  *,
  controller: Optional[WorkflowController] = None,
  credentials: Optional[Any] = None,
) -> FastAPI:
  configure_logging()
  gemini: Optional[GeminiClient] = None
  init_error: Optional[str] = None
  if controller is None:
    try:
      controller, credentials, gemini = _build_controller()
    except Exception as exc:
      # Keep serving so /health can explain what is missing.
      logger.error("Workflow init failed: %s", exc)
      init_error = str(exc)

  @asynccontextmanager
  async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await _cancel_video_task(app)
    if app.state.controller is not None:
      app.state.controller.close()
    if gemini is not None:
      await gemini.aclose()

  app = FastAPI(title="Tet Family Moment", version=__version__, lifespan=lifespan)
  app.state.controller = controller
  app.state.credentials = credentials
  app.state.init_error = init_error
  app.state.video_task = None

  def _controller() -> WorkflowController:
    if app.state.init_error or app.state.controller is None:
      raise HTTPException(status_code=503, detail=app.state.init_error or "Workflow not configured")
    return app.state.controller

  def _snapshot() -> StateResponse:
    return StateResponse(**_controller().snapshot())

  @app.get("/health")
  async def health() -> dict[str, Any]:
    return {
      "service": "tet-moment",
      "status": "ok" if not app.state.init_error else "degraded",
      "init_error": app.state.init_error,
    }

  @app.get("/state", response_model=StateResponse)
  async def state() -> StateResponse:
    return _snapshot()

  @app.post("/files", response_model=StateResponse)
  async def upload_files(files: list[UploadFile] = File(...)) -> StateResponse:
    workflow = _controller()
    images: list[InputImage] = []
    for upload in files[: workflow.intake.max_files]:
      media_type = upload.content_type or mimetypes.guess_type(upload.filename or "")[0] or ""
      if not media_type.startswith("image/"):
        raise HTTPException(status_code=415, detail=f"{upload.filename} is not an image")
      data = await upload.read()
      if len(data) > settings.max_upload_bytes:
        raise HTTPException(
          status_code=413,
          detail=f"{upload.filename} exceeds {settings.max_upload_bytes} bytes",
        )
      images.append(InputImage(name=upload.filename or f"photo-{len(images) + 1}", media_type=media_type, data=data))

    await _cancel_video_task(app)
    workflow.intake.set_selection(images)
    return _snapshot()

  @app.delete("/files/{index}", response_model=StateResponse)
  async def remove_file(index: int) -> StateResponse:
    workflow = _controller()
    await _cancel_video_task(app)
    try:
      workflow.intake.remove_at(index)
    except IndexError as exc:
      raise HTTPException(status_code=404, detail=str(exc))
    return _snapshot()

  @app.get("/blobs/{handle}")
  async def blob(handle: str) -> Response:
    found = _controller().registry.get(handle)
    if found is None:
      raise HTTPException(status_code=404, detail="Unknown or revoked handle")
    if found.path is not None:
      if not found.path.is_file():
        raise HTTPException(status_code=404, detail=f"{found.path.name} is no longer readable")
      return FileResponse(found.path, media_type=found.media_type)
    return Response(content=found.data, media_type=found.media_type)

  @app.post("/portrait", response_model=StateResponse)
  async def generate_portrait() -> StateResponse:
    workflow = _controller()
    try:
      await workflow.generate_portrait()
    except WorkflowBusyError as exc:
      raise HTTPException(status_code=409, detail=str(exc))
    return _snapshot()

  @app.get("/portrait.png")
  async def portrait() -> Response:
    current = _controller().portrait
    if current is None:
      raise HTTPException(status_code=404, detail="No portrait generated yet")
    return Response(content=current.to_bytes(), media_type=current.media_type)

  @app.post("/video", response_model=StateResponse, status_code=202)
  async def generate_video() -> StateResponse:
    workflow = _controller()
    if workflow.is_busy:
      raise HTTPException(status_code=409, detail=f"Generation already in progress ({workflow.state.value})")
    if workflow.portrait is None:
      raise HTTPException(status_code=409, detail="Generate a portrait before requesting a video")

    task = asyncio.create_task(workflow.generate_video())
    task.add_done_callback(_log_task_result)
    app.state.video_task = task
    # Let the task run up to its first suspension so the snapshot reflects it.
    await asyncio.sleep(0)
    return _snapshot()

  @app.delete("/video", response_model=StateResponse)
  async def cancel_video() -> StateResponse:
    _controller()
    await _cancel_video_task(app)
    return _snapshot()

  @app.get("/video.mp4")
  async def download_video() -> Response:
    workflow = _controller()
    video = workflow.video
    found = workflow.registry.get(video.handle) if video else None
    if video is None or found is None:
      raise HTTPException(status_code=404, detail="No video generated yet")
    return Response(
      content=found.data,
      media_type=video.media_type,
      headers={"Content-Disposition": f'attachment; filename="{video.filename}"'},
    )

  @app.post("/credential", response_model=StateResponse)
  async def select_credential(req: Optional[CredentialRequest] = None) -> StateResponse:
    workflow = _controller()
    provider = app.state.credentials
    if req is not None and req.api_key and hasattr(provider, "offer"):
      provider.offer(req.api_key)
    await workflow.select_credential()
    return _snapshot()

  return app


async def _cancel_video_task(app: FastAPI) -> None:
  task: Optional[asyncio.Task] = app.state.video_task
  app.state.video_task = None
  if task is None or task.done():
    return
  task.cancel()
  with contextlib.suppress(asyncio.CancelledError, WorkflowStateError):
    await task


def main() -> None:
  configure_logging()
  uvicorn.run(
    "tet_moment.web.app:create_app",
    factory=True,
    host=settings.web_host,
    port=settings.web_port,
    reload=settings.web_reload,
    log_level=settings.log_level.lower(),
  )


if __name__ == "__main__":
  main()
