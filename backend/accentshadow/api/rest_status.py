"""REST endpoints for health and detector status."""
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe; stays ok while the detector is unavailable."""
    return {"status": "ok", "version": request.app.version}


@router.get("/vad/status")
async def vad_status(request: Request):
    """
    Current state of the speech detector.

    Returns:
        state (uninitialized / ready / unavailable), backend name and the
        reason when unavailable
    """
    context = request.app.state.processing
    status = context.vad_status()
    status["levelCache"] = context.level_analyzer.stats()
    return status
