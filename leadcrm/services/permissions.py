"""Capability resolution for (principal, organization) pairs.

Every service operation starts here: "may this principal do X in this
org?"  The answer comes from two reads (the organization, for the
creator check, and the principal's accepted membership) fed through
``roles.capabilities_for``.

CACHING
-------
Those two reads happen on every request, so results are cached per
(org, user) with a TTL.  The cache is an explicit object handed to the
service, never module state inside it, and every membership mutation
invalidates the affected entry.  TTL is only the safety net; explicit
invalidation is what keeps a demoted admin from keeping admin powers
for five minutes.

Invalidation is deferred until the store commits the mutation.  Dropping
the entry earlier would let a concurrent request read the old membership
row and cache it again for a full TTL.

RETRIES
-------
Permission reads are idempotent, so a transient store failure
(StoreUnavailable) is retried with exponential backoff.  The store is
rolled back before each retry because a failed read leaves the
transaction aborted.
Nothing else in the service is retried automatically.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable
from uuid import UUID

from leadcrm.core.metrics import AUTHORIZATION_DENIALS, PERMISSION_CACHE_OPERATIONS
from leadcrm.models.principal import Principal
from leadcrm.repos.store import Store
from leadcrm.services.errors import AuthorizationDenied, StoreUnavailable
from leadcrm.services.roles import NO_CAPABILITIES, Capabilities, capabilities_for

logger = logging.getLogger(__name__)

PERMISSION_READ_ATTEMPTS = 3
RETRY_BASE_SECONDS = 0.05


def cache_key(org_id: UUID, user_id: str) -> str:
    return f"perm:{org_id}:{user_id}"


@runtime_checkable
class PermissionCache(Protocol):
    async def get(self, org_id: UUID, user_id: str) -> Capabilities | None: ...

    async def set(self, org_id: UUID, user_id: str, caps: Capabilities) -> None: ...

    async def invalidate(self, org_id: UUID, user_id: str) -> None: ...


class InMemoryPermissionCache:
    """Per-process cache with TTL enforced against an injectable clock."""

    def __init__(
        self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        # key -> (expires_at, caps)
        self._entries: dict[str, tuple[float, Capabilities]] = {}

    async def get(self, org_id: UUID, user_id: str) -> Capabilities | None:
        key = cache_key(org_id, user_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, caps = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return caps

    async def set(self, org_id: UUID, user_id: str, caps: Capabilities) -> None:
        if self._ttl <= 0:
            return
        self._entries[cache_key(org_id, user_id)] = (self._clock() + self._ttl, caps)

    async def invalidate(self, org_id: UUID, user_id: str) -> None:
        self._entries.pop(cache_key(org_id, user_id), None)

    def clear(self) -> None:
        self._entries.clear()


class RedisPermissionCache:
    """Redis-backed cache, shared by every API instance."""

    def __init__(self, redis_client, ttl_seconds: int) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds

    async def get(self, org_id: UUID, user_id: str) -> Capabilities | None:
        raw = await self._redis.get(cache_key(org_id, user_id))
        if raw is None:
            return None
        return Capabilities(**json.loads(raw))

    async def set(self, org_id: UUID, user_id: str, caps: Capabilities) -> None:
        if self._ttl <= 0:
            return
        await self._redis.setex(
            cache_key(org_id, user_id), self._ttl, json.dumps(caps.to_dict())
        )

    async def invalidate(self, org_id: UUID, user_id: str) -> None:
        await self._redis.delete(cache_key(org_id, user_id))


class PermissionService:
    def __init__(self, store: Store, cache: PermissionCache) -> None:
        self._store = store
        self._cache = cache

    async def capabilities(self, principal: Principal, org_id: UUID) -> Capabilities:
        cached = await self._cache.get(org_id, principal.user_id)
        if cached is not None:
            PERMISSION_CACHE_OPERATIONS.labels(operation="hit").inc()
            return cached
        PERMISSION_CACHE_OPERATIONS.labels(operation="miss").inc()

        caps = await self._resolve_with_retry(principal.user_id, org_id)
        await self._cache.set(org_id, principal.user_id, caps)
        return caps

    async def require(
        self, principal: Principal, org_id: UUID, flag: str, message: str
    ) -> Capabilities:
        """Return the principal's capabilities, or raise if ``flag`` is off."""
        caps = await self.capabilities(principal, org_id)
        if not getattr(caps, flag):
            AUTHORIZATION_DENIALS.labels(reason=flag).inc()
            logger.warning(
                "capability %s denied",
                flag,
                extra={"org_id": str(org_id), "user_id": principal.user_id},
            )
            raise AuthorizationDenied(message, reason="missing_capability")
        return caps

    async def invalidate(self, org_id: UUID, user_id: str | None) -> None:
        if user_id is None:
            return

        async def _drop() -> None:
            PERMISSION_CACHE_OPERATIONS.labels(operation="invalidate").inc()
            await self._cache.invalidate(org_id, user_id)

        await self._store.after_commit(_drop)

    async def _resolve_with_retry(self, user_id: str, org_id: UUID) -> Capabilities:
        last_exc: StoreUnavailable | None = None
        for attempt in range(PERMISSION_READ_ATTEMPTS):
            try:
                if attempt:
                    await self._store.rollback()
                return await self._resolve(user_id, org_id)
            except StoreUnavailable as exc:
                last_exc = exc
            if attempt + 1 < PERMISSION_READ_ATTEMPTS:
                backoff = RETRY_BASE_SECONDS * (2**attempt)
                logger.warning(
                    "permission read failed (attempt %d), retrying in %.2fs: %s",
                    attempt + 1,
                    backoff,
                    last_exc,
                )
                await asyncio.sleep(backoff)
        assert last_exc is not None
        raise last_exc

    async def _resolve(self, user_id: str, org_id: UUID) -> Capabilities:
        org = await self._store.orgs.get_by_id(org_id)
        if org is None:
            return NO_CAPABILITIES
        is_creator = org.is_creator(user_id)
        membership = await self._store.memberships.get_accepted(org_id, user_id)
        if membership is None and not is_creator:
            return NO_CAPABILITIES
        role = membership.role if membership is not None else None
        return capabilities_for(role, is_creator)
