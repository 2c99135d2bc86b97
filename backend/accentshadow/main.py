"""FastAPI application for the AccentShadow audio core."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from accentshadow.api import rest_audio, rest_status
from accentshadow.core.config import settings
from accentshadow.core.errors import AudioProcessingError
from accentshadow.core.logging import logger, setup_logging
from accentshadow.services.processing_context import ProcessingContext

setup_logging()

app = FastAPI(
    title="AccentShadow Audio Backend",
    description="Speech boundary detection, silence trimming and onset alignment for pronunciation practice",
    version="0.1.0",
)

# The browser frontend posts recordings straight from the page
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(rest_status.router)
app.include_router(rest_audio.router)


@app.exception_handler(AudioProcessingError)
async def audio_error_handler(request: Request, exc: AudioProcessingError):
    logger.warning(f"{request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc), "error": type(exc).__name__})


@app.on_event("startup")
async def startup_event():
    """Build the processing context and load the speech detector."""
    logger.info(f"Starting AccentShadow audio backend on {settings.host}:{settings.port}")
    logger.info(
        f"VAD backend: {settings.vad_backend}, pre-padding {settings.vad_prepad_ms} ms, "
        f"merge gaps {settings.boundary_merge_gap_s}s / {settings.alignment_merge_gap_s}s"
    )

    # Tests install their own context before startup
    if getattr(app.state, "processing", None) is None:
        app.state.processing = ProcessingContext(settings)

    # A failed load leaves the detector unavailable and every clip untrimmed
    await app.state.processing.warm_up()


@app.on_event("shutdown")
async def shutdown_event():
    stats = app.state.processing.level_analyzer.stats()
    logger.info(f"Shutting down AccentShadow audio backend (level cache: {stats['hits']} hits, {stats['misses']} misses)")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("accentshadow.main:app", host=settings.host, port=settings.port, reload=True)
