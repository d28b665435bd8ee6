from __future__ import annotations

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from filterproxy import __version__
from filterproxy.config.loader import HEALTH_PATH

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    endpoints: int
    version: str = __version__


@router.get(HEALTH_PATH, response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> HealthResponse:
    """Liveness check; never contacts upstream exporters."""
    fetchers = getattr(request.app.state, "fetchers", {})
    return HealthResponse(status="healthy", endpoints=len(fetchers))
