from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from portal.platform.health import get_health_checker

router = APIRouter()


@router.get("/health")
def health():
    """200 when every check passes, 503 when degraded."""
    result = get_health_checker().get_health_status()
    status_code = status.HTTP_200_OK if result["status"] == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=result)
