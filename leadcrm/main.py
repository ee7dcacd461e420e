from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from leadcrm.api.health import router as health_router
from leadcrm.api.imports import router as imports_router
from leadcrm.api.leads import router as leads_router
from leadcrm.api.members import router as members_router
from leadcrm.api.metrics_endpoint import router as metrics_router
from leadcrm.api.orgs import router as orgs_router
from leadcrm.api.templates import router as templates_router
from leadcrm.core.config import SETTINGS
from leadcrm.core.logging import setup_logging
from leadcrm.db.engine import lifespan_db
from leadcrm.db.redis import lifespan_redis
from leadcrm.middleware.metrics import MetricsMiddleware
from leadcrm.middleware.request_context import RequestContextMiddleware
from leadcrm.services.errors import (
    AuthorizationDenied,
    ConflictOnClaim,
    CrmError,
    InvariantViolation,
    NotFound,
    StoreError,
    StoreUnavailable,
)

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[CrmError], int] = {
    AuthorizationDenied: 403,
    NotFound: 404,
    InvariantViolation: 409,
    ConflictOnClaim: 409,
}


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="leadcrm",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(CrmError)
async def crm_error_handler(_request: Request, exc: CrmError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        400,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "reason": exc.reason},
    )


@app.exception_handler(StoreError)
async def store_error_handler(_request: Request, exc: StoreError) -> JSONResponse:
    if isinstance(exc, StoreUnavailable):
        logger.error("store unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content={
                "detail": "Service temporarily unavailable",
                "reason": "store_unavailable",
            },
        )
    # A constraint lost a race with a concurrent write.
    logger.warning("store write rejected: %s", exc)
    return JSONResponse(
        status_code=409,
        content={
            "detail": "The request conflicts with a concurrent change",
            "reason": "write_conflict",
        },
    )


app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(orgs_router)
app.include_router(members_router)
app.include_router(templates_router)
app.include_router(leads_router)
app.include_router(imports_router)

logger.info(
    "leadcrm started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
