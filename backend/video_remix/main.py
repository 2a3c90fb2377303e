"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from video_remix.core.config import settings
from video_remix.core.logging import setup_logging
from video_remix.core.metrics import get_content_type, get_metrics, set_app_info
from video_remix.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from video_remix.core.tracing import setup_tracing, shutdown_tracing
from video_remix.modules.transform.router import request_validation_handler
from video_remix.modules.transform.router import router as transform_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_tracing()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Video Remix API

Upload a video and get it back transformed by ffmpeg.

* **Speed** - playback speed with tempo-matched audio
* **Pitch** - pitch shift by audio resampling
* **Filters** - fixed colour grade (channel mix, hue, contrast)
* **Watermark** - text label in the bottom-left corner
* **Aspect** - force 16:9 display aspect ratio
    """,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "transform",
            "description": "Video transformation - upload, process with ffmpeg, download",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
    ffmpeg_level=settings.FFMPEG_LOG_LEVEL,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
    enable_console_export=settings.DEBUG,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(RequestValidationError, request_validation_handler)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(transform_router, prefix=settings.API_PREFIX)
