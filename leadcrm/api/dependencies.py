from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from leadcrm.core.config import SETTINGS
from leadcrm.db.engine import async_session_factory
from leadcrm.db.redis import redis_pool
from leadcrm.models.principal import Principal
from leadcrm.repos.pg_store import PgStore
from leadcrm.repos.store import InMemoryStore, Store
from leadcrm.services.identity import principal_from_token
from leadcrm.services.import_service import ImportService
from leadcrm.services.lead_service import LeadService
from leadcrm.services.membership_service import MembershipService
from leadcrm.services.permissions import (
    InMemoryPermissionCache,
    PermissionCache,
    PermissionService,
    RedisPermissionCache,
)
from leadcrm.services.schema_service import SchemaService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Module-level singletons, chosen once at import time (same conditional
# pattern as engine.py and redis.py).
# ---------------------------------------------------------------------------

# Used only when DATABASE_URL is unset: local dev and the test suite.
memory_store = InMemoryStore()

if redis_pool is not None:
    permission_cache: PermissionCache = RedisPermissionCache(
        redis_pool, SETTINGS.permission_cache_ttl_seconds
    )
else:
    permission_cache = InMemoryPermissionCache(SETTINGS.permission_cache_ttl_seconds)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_principal(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Principal:
    """Verify the identity provider's bearer token. Returns a Principal.

    Used as a FastAPI dependency on every endpoint except health and
    metrics.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Not authenticated")
    try:
        principal = principal_from_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise _unauthorized("Invalid token") from None

    logger.debug("Token validated for user=%s", principal.user_id)
    return principal


async def get_store() -> AsyncGenerator[Store, None]:
    """One Store per request.

    With a database configured this wraps a request-scoped session and
    commits on success, rolls back on exception.  Services may commit
    earlier themselves (the importer does, per row).
    """
    if async_session_factory is None:
        yield memory_store
        return

    async with async_session_factory() as session:
        store = PgStore(session)
        try:
            yield store
            await store.commit()
        except Exception:
            await store.rollback()
            raise


def get_permission_cache() -> PermissionCache:
    return permission_cache


StoreDep = Annotated[Store, Depends(get_store)]
PrincipalDep = Annotated[Principal, Depends(require_principal)]


def get_permission_service(
    store: StoreDep,
    cache: Annotated[PermissionCache, Depends(get_permission_cache)],
) -> PermissionService:
    return PermissionService(store, cache)


PermissionsDep = Annotated[PermissionService, Depends(get_permission_service)]


def get_membership_service(
    store: StoreDep, permissions: PermissionsDep
) -> MembershipService:
    return MembershipService(store, permissions)


def get_schema_service(store: StoreDep, permissions: PermissionsDep) -> SchemaService:
    return SchemaService(store, permissions)


def get_lead_service(store: StoreDep, permissions: PermissionsDep) -> LeadService:
    return LeadService(store, permissions)


def get_import_service(
    store: StoreDep,
    permissions: PermissionsDep,
    schema: Annotated[SchemaService, Depends(get_schema_service)],
    leads: Annotated[LeadService, Depends(get_lead_service)],
) -> ImportService:
    return ImportService(store, permissions, schema, leads)
