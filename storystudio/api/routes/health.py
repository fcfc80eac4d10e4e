"""
Health check endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from storystudio import __version__
from storystudio.config import AppConfig

from ..dependencies import get_app_config
from ..schemas import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health Check",
)
async def health_check(config: AppConfig = Depends(get_app_config)) -> HealthResponse:
    """Service status; degraded when no generation key is configured."""
    return HealthResponse(
        status="healthy" if config.ai.has_google else "degraded",
        service="storystudio",
        version=__version__,
        gemini_configured=config.ai.has_google,
        ffmpeg_path=config.paths.ffmpeg_path,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/health/live", status_code=status.HTTP_200_OK, summary="Liveness Probe")
async def liveness() -> dict:
    return {"status": "alive"}
