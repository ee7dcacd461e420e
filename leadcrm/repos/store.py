"""The Store bundle: the four repositories plus a commit checkpoint.

Services receive one Store per unit of work. ``commit()`` makes every
write so far durable; the import projector calls it after each row so
earlier rows survive a later failure; ``rollback()`` discards whatever
was written since the last commit.

``after_commit()`` registers work that must only run once the current
writes are visible to other readers, such as dropping a cached
permission entry.  Callbacks registered before a rollback never run.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from leadcrm.repos.lead_repo import InMemoryLeadRepo, LeadRepo
from leadcrm.repos.org_membership_repo import InMemoryMembershipRepo, MembershipRepo
from leadcrm.repos.org_repo import InMemoryOrgRepo, OrgRepo
from leadcrm.repos.template_repo import InMemoryTemplateRepo, TemplateRepo

AfterCommit = Callable[[], Awaitable[None]]


class Store(Protocol):
    orgs: OrgRepo
    memberships: MembershipRepo
    templates: TemplateRepo
    leads: LeadRepo

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def after_commit(self, callback: AfterCommit) -> None: ...


class InMemoryStore:
    """Process-local store; every write is visible immediately."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.orgs = InMemoryOrgRepo()
        self.memberships = InMemoryMembershipRepo()
        self.templates = InMemoryTemplateRepo()
        self.leads = InMemoryLeadRepo()

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        # Nothing is staged; failed writes never reach the dicts.
        return None

    async def after_commit(self, callback: AfterCommit) -> None:
        # Writes are already visible, so there is nothing to wait for.
        await callback()
