from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from uuid import uuid4

import jwt
import pytest
from fastapi.testclient import TestClient

from leadcrm.api.dependencies import memory_store, permission_cache
from leadcrm.core.config import SETTINGS
from leadcrm.main import app
from leadcrm.models.organization import Membership, Organization, Role
from leadcrm.models.principal import Principal
from leadcrm.repos.store import InMemoryStore
from leadcrm.services.import_service import ImportService
from leadcrm.services.lead_service import LeadService
from leadcrm.services.membership_service import MembershipService
from leadcrm.services.permissions import InMemoryPermissionCache, PermissionService
from leadcrm.services.schema_service import SchemaService


@pytest.fixture(autouse=True)
def reset_memory_store() -> None:
    """Clear orgs, memberships, templates and leads between tests."""
    memory_store.reset()


@pytest.fixture(autouse=True)
def reset_permission_cache() -> None:
    """Clear cached capabilities so roles don't bleed between tests."""
    if isinstance(permission_cache, InMemoryPermissionCache):
        permission_cache.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    user_id: str = "user-1",
    email: str = "user1@example.com",
    *,
    expires_in: int = 300,
    audience: str | None = None,
    secret: str | None = None,
) -> str:
    """Sign a token the way the identity provider would."""
    now = int(time.time())
    return jwt.encode(
        {
            "sub": user_id,
            "email": email,
            "aud": audience or SETTINGS.identity_audience,
            "iat": now,
            "exp": now + expires_in,
        },
        secret or SETTINGS.identity_jwt_secret,
        algorithm="HS256",
    )


def auth(user_id: str = "user-1", email: str = "user1@example.com") -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, email)}"}


# ---------------------------------------------------------------------------
# Service-level helpers
# ---------------------------------------------------------------------------


class Services:
    """Every service wired to one store and one cache, like a request."""

    def __init__(self, store: InMemoryStore | None = None, cache=None) -> None:
        self.store = store or InMemoryStore()
        self.cache = cache or InMemoryPermissionCache(ttl_seconds=300)
        self.permissions = PermissionService(self.store, self.cache)
        self.members = MembershipService(
            self.store, self.permissions, invite_ttl=timedelta(days=7)
        )
        self.schema = SchemaService(self.store, self.permissions)
        self.leads = LeadService(self.store, self.permissions)
        self.imports = ImportService(
            self.store, self.permissions, self.schema, self.leads, error_cap=10
        )


@pytest.fixture
def services() -> Services:
    return Services()


def principal(user_id: str | None = None, email: str | None = None) -> Principal:
    user_id = user_id or f"user-{uuid4().hex[:8]}"
    return Principal.of(user_id, email or f"{user_id}@example.com")


def seed_member(store: InMemoryStore, org: Organization, role: Role) -> Principal:
    """Add an accepted member directly, bypassing invitations."""
    p = principal()
    asyncio.run(
        store.memberships.add(
            Membership.accepted(
                org_id=org.id, user_id=p.user_id, email=p.email, role=role
            )
        )
    )
    return p
