"""FastAPI application: routers, error envelope and container wiring."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from encounter_tracker.bootstrap import Container, create_container
from encounter_tracker.domain.errors import TrackerError
from encounter_tracker.presentation.api.routers import (
    auth,
    characters,
    combat,
    encounters,
    health,
    npc_templates,
    parties,
    users,
)


logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def _tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", extra={"path": request.url.path, "code": exc.code})
    return _error_response(exc.status_code, exc.to_dict())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in exc.errors()
    ]
    return _error_response(400, {"message": "Validation failed", "code": "VALIDATION_ERROR", "details": details})


def create_app(container: Optional[Container] = None) -> FastAPI:
    app = FastAPI(title="Encounter Tracker", version="1.0.0")
    app.state.container = container or create_container()
    app.add_exception_handler(TrackerError, _tracker_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    for module in (health, auth, users, characters, parties, encounters, combat, npc_templates):
        app.include_router(module.router)
    return app
