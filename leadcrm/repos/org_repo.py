from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from leadcrm.models.organization import Organization
from leadcrm.services.errors import StoreError


class OrgRepo(Protocol):
    async def get_by_id(self, org_id: UUID) -> Organization | None: ...
    async def add(self, org: Organization) -> None: ...
    async def rename(self, org_id: UUID, name: str) -> Organization | None: ...


class InMemoryOrgRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Organization] = {}

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        return self._by_id.get(org_id)

    async def add(self, org: Organization) -> None:
        if org.id in self._by_id:
            raise StoreError("organization already exists")
        self._by_id[org.id] = org

    async def rename(self, org_id: UUID, name: str) -> Organization | None:
        existing = self._by_id.get(org_id)
        if existing is None:
            return None
        updated = replace(existing, name=name)
        self._by_id[org_id] = updated
        return updated
