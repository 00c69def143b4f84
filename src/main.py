"""Entry point for the ARI voice bridge: call handling plus the inspection API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from api.dependencies import get_runtime
from api.routes import router as api_router
from calls.runtime import configure_logging
from config.settings import get_settings
from pipeline.errors import PipelineError
from telephony.errors import TelephonyError

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = None
    if settings.ari_autostart:
        runtime = get_runtime()
        await runtime.start()
    else:
        LOGGER.info("ARI autostart disabled; not handling calls")
    yield
    if runtime is not None:
        await runtime.stop()


settings = get_settings()

configure_logging(settings.log_level)

app = FastAPI(
    title="ARI Voice Bridge",
    description="Answers Asterisk calls, plays prompts and replies through a speech pipeline.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.mount("/audio", StaticFiles(directory=settings.audio_output_dir), name="audio")


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(TelephonyError)
async def telephony_error_handler(request: Request, exc: TelephonyError) -> JSONResponse:
    LOGGER.warning("Channel command failed: %s", exc)
    return JSONResponse(status_code=502, content={"detail": exc.detail})
