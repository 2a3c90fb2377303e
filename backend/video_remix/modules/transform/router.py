"""Transform API router."""

import asyncio
import logging
import threading
from functools import lru_cache

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from video_remix.core.config import settings
from video_remix.modules.transform.exceptions import (
    ExecutionError,
    ResourceError,
    StreamError,
    TransformError,
    ValidationError,
)
from video_remix.modules.transform.models import OUTPUT_CONTENT_TYPE
from video_remix.modules.transform.schemas import (
    ErrorResponse,
    parse_transform_request,
    validation_error_from,
)
from video_remix.modules.transform.service import TransformService
from video_remix.modules.transform.streaming import ChannelSink

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transform"])

# How often to check for a client disconnect while ffmpeg runs
DISCONNECT_POLL_SECONDS = 0.5

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResourceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ExecutionError: status.HTTP_502_BAD_GATEWAY,
    StreamError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@lru_cache
def get_transform_service() -> TransformService:
    return TransformService.from_settings(settings)


def to_http_exception(error: TransformError) -> HTTPException:
    status_code = ERROR_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(
        status_code=status_code,
        detail={"error": error.kind, "message": error.message},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> Response:
    """Render FastAPI's own form/body validation failures like any other ValidationError."""
    error = validation_error_from(exc.errors(), "Invalid request")
    logger.info("Rejected malformed request", extra={"detail": error.message})
    return await http_exception_handler(request, to_http_exception(error))


@router.post(
    "/process",
    response_class=StreamingResponse,
    responses={
        200: {"content": {OUTPUT_CONTENT_TYPE: {}}, "description": "Transformed video"},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def process_video(
    request: Request,
    video: UploadFile = File(...),
    speed: float = Form(...),
    pitch: float = Form(...),
    watermark: bool = Form(False),
    filters: bool = Form(False),
    aspect: bool = Form(False),
    service: TransformService = Depends(get_transform_service),
):
    """Transform an uploaded video and return it as a download.

    The pipeline runs on a worker thread. The response starts only once
    ffmpeg has exited successfully; any earlier failure becomes a JSON error.
    """
    try:
        params = parse_transform_request(
            speed_factor=speed,
            pitch_factor=pitch,
            add_watermark=watermark,
            add_filters=filters,
            change_aspect=aspect,
        )
    except ValidationError as e:
        logger.info("Rejected transform request", extra={"detail": e.message})
        raise to_http_exception(e) from e

    sink = ChannelSink()
    cancel_event = threading.Event()
    worker = asyncio.ensure_future(
        run_in_threadpool(
            service.process,
            params,
            video.file,
            video.filename,
            sink,
            cancel_event,
        )
    )
    # A worker that fails mid-transfer never closes the body itself
    worker.add_done_callback(lambda _: sink.end_body())

    committed = asyncio.ensure_future(sink.wait_committed())
    try:
        while True:
            done, _ = await asyncio.wait(
                {worker, committed},
                timeout=DISCONNECT_POLL_SECONDS,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if done:
                break
            if not cancel_event.is_set() and await request.is_disconnected():
                logger.warning("Client disconnected, cancelling ffmpeg")
                cancel_event.set()
    except asyncio.CancelledError:
        cancel_event.set()
        sink.abort()
        raise
    finally:
        if not committed.done():
            committed.cancel()

    if not sink.committed:
        sink.abort()
        try:
            worker.result()
        except TransformError as e:
            raise to_http_exception(e) from e
        raise to_http_exception(StreamError("Transform finished without producing a response"))

    async def finalize() -> None:
        sink.abort()
        try:
            await worker
        except TransformError:
            # Already logged by the service; headers are sent, nothing to report
            pass

    return StreamingResponse(
        sink.body(),
        media_type=sink.headers.get("Content-Type", OUTPUT_CONTENT_TYPE),
        headers={k: v for k, v in sink.headers.items() if k != "Content-Type"},
        background=BackgroundTask(finalize),
    )
