import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from encounter_tracker.bootstrap import Container
from encounter_tracker.presentation.api.dependencies import get_container


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
def health(container: Container = Depends(get_container)):
    try:
        database_ok = bool(container.health_probe())
    except Exception as exc:
        logger.warning("Health probe failed: %s", exc)
        database_ok = False
    body = {
        "status": "ok" if database_ok else "degraded",
        "backend": container.backend,
        "database": database_ok,
        "content": container.npc_templates.content_status(),
    }
    return JSONResponse(status_code=200 if database_ok else 503, content=body)
