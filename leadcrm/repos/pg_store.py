"""Store bundle over one request-scoped AsyncSession."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.db.engine import store_errors
from leadcrm.repos.pg_lead_repo import PgLeadRepo
from leadcrm.repos.pg_membership_repo import PgMembershipRepo
from leadcrm.repos.pg_org_repo import PgOrgRepo
from leadcrm.repos.pg_template_repo import PgTemplateRepo
from leadcrm.repos.store import AfterCommit

logger = logging.getLogger(__name__)


class PgStore:
    """Satisfies the Store Protocol; all repos share one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._after_commit: list[AfterCommit] = []
        self.orgs = PgOrgRepo(session)
        self.memberships = PgMembershipRepo(session)
        self.templates = PgTemplateRepo(session)
        self.leads = PgLeadRepo(session)

    async def commit(self) -> None:
        with store_errors():
            await self._session.commit()
        pending, self._after_commit = self._after_commit, []
        for callback in pending:
            await callback()

    async def rollback(self) -> None:
        if self._after_commit:
            logger.debug("discarding %d after-commit callbacks", len(self._after_commit))
        self._after_commit = []
        with store_errors():
            await self._session.rollback()

    async def after_commit(self, callback: AfterCommit) -> None:
        self._after_commit.append(callback)
