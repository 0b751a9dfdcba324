"""
Store — typed read/write access over links, clicks, accounts and stories.

Every component goes through this class; nothing keeps ORM rows across
calls. Reads use populate_existing so a row loaded earlier in the same
session is refreshed instead of served stale from the identity map.

Contention is reported as values, never as exceptions:
  - insert_link returns None when the short code is already taken
  - atomic_increment_link_stats returns False when no active link matched
  - claim_due_stories silently drops rows another cycle claimed first
  - update_story_status returns False when the row left the expected status
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from linkcast.models.tables import (
    Click,
    FacebookAccount,
    Link,
    ScheduledStory,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
)

import structlog

logger = structlog.get_logger()

# Dialects with INSERT .. ON CONFLICT DO NOTHING
_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class Store:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self):
        await self.session.commit()

    async def rollback(self):
        await self.session.rollback()

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    async def get_link(self, link_id: UUID) -> Link | None:
        stmt = (
            select(Link)
            .where(Link.id == link_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_link_by_code(self, short_code: str) -> Link | None:
        stmt = (
            select(Link)
            .where(Link.short_code == short_code)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def code_exists(self, short_code: str) -> bool:
        result = await self.session.execute(
            select(Link.id).where(Link.short_code == short_code)
        )
        return result.first() is not None

    async def insert_link(self, **values) -> Link | None:
        """Insert a link guarded by the short_code unique index.

        Returns the committed Link, or None if another writer owns the code.
        """
        dialect = self.session.get_bind().dialect.name
        insert = _CONFLICT_INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Unsupported database dialect: {dialect}")

        values.setdefault("id", uuid4())
        stmt = (
            insert(Link)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["short_code"])
            .returning(Link.id)
        )
        result = await self.session.execute(stmt)
        inserted_id = result.scalar_one_or_none()
        await self.session.commit()

        if inserted_id is None:
            logger.info("short_code_conflict", short_code=values.get("short_code"))
            return None
        return await self.get_link(inserted_id)

    async def atomic_increment_link_stats(
        self,
        link_id: UUID,
        click_delta: int,
        revenue_delta: Decimal,
    ) -> bool:
        """Bump the ledger in one statement. Does not commit.

        The arithmetic happens in the database so concurrent visits never
        lose an increment. Inactive links are not touched.
        """
        stmt = (
            update(Link)
            .where(Link.id == link_id, Link.is_active.is_(True))
            .values(
                total_clicks=Link.total_clicks + click_delta,
                estimated_revenue=Link.estimated_revenue + revenue_delta,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def insert_click(self, click: Click) -> Click:
        """Stage an immutable click row. Does not commit."""
        self.session.add(click)
        await self.session.flush()
        return click

    async def set_link_active(self, short_code: str, is_active: bool) -> Link | None:
        stmt = (
            update(Link)
            .where(Link.short_code == short_code)
            .values(is_active=is_active)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        if result.rowcount != 1:
            return None
        return await self.get_link_by_code(short_code)

    async def device_breakdown(self, link_id: UUID) -> dict[str, int]:
        stmt = (
            select(Click.device_type, func.count(Click.id).label("clicks"))
            .where(Click.link_id == link_id)
            .group_by(Click.device_type)
        )
        result = await self.session.execute(stmt)
        return {row.device_type: row.clicks for row in result.all()}

    async def recent_clicks(self, link_id: UUID, limit: int = 10) -> list[Click]:
        stmt = (
            select(Click)
            .where(Click.link_id == link_id)
            .order_by(Click.clicked_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def insert_account(self, **values) -> FacebookAccount:
        account = FacebookAccount(**values)
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def get_account(self, account_id: UUID) -> FacebookAccount | None:
        stmt = (
            select(FacebookAccount)
            .where(FacebookAccount.id == account_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_accounts(self, owner_id: str) -> list[FacebookAccount]:
        stmt = (
            select(FacebookAccount)
            .where(FacebookAccount.owner_id == owner_id)
            .order_by(FacebookAccount.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_account_active(self, account_id: UUID, is_active: bool) -> bool:
        stmt = (
            update(FacebookAccount)
            .where(FacebookAccount.id == account_id)
            .values(is_active=is_active)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def insert_story(self, **values) -> ScheduledStory:
        story = ScheduledStory(status=STATUS_PENDING, retry_count=0, **values)
        self.session.add(story)
        await self.session.commit()
        await self.session.refresh(story)
        return story

    async def get_story(self, story_id: UUID) -> ScheduledStory | None:
        stmt = (
            select(ScheduledStory)
            .where(ScheduledStory.id == story_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_stories(self, account_id: UUID) -> list[ScheduledStory]:
        stmt = (
            select(ScheduledStory)
            .where(ScheduledStory.account_id == account_id)
            .order_by(ScheduledStory.scheduled_time.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_pending_story(self, story_id: UUID) -> bool:
        """Delete a story only while it is still pending.

        The status check is part of the DELETE, so a row claimed by a
        concurrent dispatch cycle can never be removed mid-flight.
        """
        stmt = (
            delete(ScheduledStory)
            .where(ScheduledStory.id == story_id, ScheduledStory.status == STATUS_PENDING)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def requeue_story(
        self,
        story_id: UUID,
        max_retries: int,
        reset_retries: bool = False,
    ) -> bool:
        """Move a failed story back to pending (owner/operator action).

        Without reset_retries a story at the retry ceiling is left failed;
        as pending it could never be claimed.
        """
        values = {"status": STATUS_PENDING, "error_message": None, "next_attempt_at": None}
        conditions = [ScheduledStory.id == story_id, ScheduledStory.status == STATUS_FAILED]
        if reset_retries:
            values["retry_count"] = 0
        else:
            conditions.append(ScheduledStory.retry_count < max_retries)
        stmt = (
            update(ScheduledStory)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def requeue_due_failures(self, now: datetime, max_retries: int) -> int:
        """Return transient failures whose backoff elapsed to pending."""
        stmt = (
            update(ScheduledStory)
            .where(
                ScheduledStory.status == STATUS_FAILED,
                ScheduledStory.retry_count < max_retries,
                ScheduledStory.next_attempt_at.is_not(None),
                ScheduledStory.next_attempt_at <= now,
            )
            .values(status=STATUS_PENDING, next_attempt_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def claim_due_stories(
        self,
        now: datetime,
        batch_size: int,
        max_retries: int,
    ) -> list[ScheduledStory]:
        """Claim up to batch_size due stories for this cycle.

        Each row is claimed with a conditional UPDATE (pending → processing);
        only the caller whose UPDATE matched owns the row. Claims are
        committed before any external call is made.
        """
        stmt = (
            select(ScheduledStory.id)
            .where(
                ScheduledStory.status == STATUS_PENDING,
                ScheduledStory.scheduled_time <= now,
                ScheduledStory.retry_count < max_retries,
            )
            .order_by(ScheduledStory.scheduled_time.asc())
            .limit(batch_size)
        )
        result = await self.session.execute(stmt)
        candidate_ids = list(result.scalars().all())

        claimed_ids = []
        for story_id in candidate_ids:
            claim = (
                update(ScheduledStory)
                .where(ScheduledStory.id == story_id, ScheduledStory.status == STATUS_PENDING)
                .values(status=STATUS_PROCESSING)
                .execution_options(synchronize_session=False)
            )
            claim_result = await self.session.execute(claim)
            if claim_result.rowcount == 1:
                claimed_ids.append(story_id)
            else:
                logger.info("story_claim_lost", story_id=str(story_id))
        await self.session.commit()

        if not claimed_ids:
            return []

        stmt = (
            select(ScheduledStory)
            .where(ScheduledStory.id.in_(claimed_ids))
            .order_by(ScheduledStory.scheduled_time.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_story_status(
        self,
        story_id: UUID,
        expected_status: str = STATUS_PROCESSING,
        **fields,
    ) -> bool:
        """Write a story transition if the row is still in expected_status."""
        stmt = (
            update(ScheduledStory)
            .where(ScheduledStory.id == story_id, ScheduledStory.status == expected_status)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1
