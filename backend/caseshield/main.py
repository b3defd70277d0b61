"""
CaseShield — API Entry Point.

Builds the FastAPI application around the privacy core:

    1. Services are constructed once per app (``app.state.services``)
    2. The expiry sweeper runs for the lifetime of the app
    3. CaseShieldErrors map onto HTTP status codes

Run:
    uvicorn caseshield.main:create_app --factory --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from caseshield.api.privacy import privacy_router
from caseshield.core.config import Settings, settings as default_settings
from caseshield.core.exceptions import (
    CaseShieldError,
    DuplicateApprovalError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)
from caseshield.services.container import PrivacyServices, build_services

logger = logging.getLogger(__name__)

# Most specific first; anything else in the hierarchy is a 400.
_STATUS_CODES: Dict[Type[CaseShieldError], int] = {
    ValidationError: 422,
    UnauthorizedError: 403,
    NotFoundError: 404,
    StateError: 409,
    DuplicateApprovalError: 409,
}


def status_code_for(exc: CaseShieldError) -> int:
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 400


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def caseshield_error_handler(request: Request, exc: CaseShieldError) -> JSONResponse:
    code = status_code_for(exc)
    logger.warning(f"[API] {request.method} {request.url.path} → {code} {exc}")
    return JSONResponse(status_code=code, content={"detail": exc.to_dict()})


def create_app(
    settings: Settings = default_settings,
    services: Optional[PrivacyServices] = None,
) -> FastAPI:
    """
    Build the application.

    ``services`` may be supplied pre-wired (tests inject fakes this way);
    otherwise they are built from ``settings``.
    """
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.services.sweeper.start()
        try:
            yield
        finally:
            await app.state.services.sweeper.stop()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Privacy-preserving case study submission and committee-gated access",
        version="0.1.0",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services or build_services(settings)
    app.add_exception_handler(CaseShieldError, caseshield_error_handler)
    app.include_router(privacy_router)

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        return {"status": "operational", "service": settings.PROJECT_NAME}

    return app

