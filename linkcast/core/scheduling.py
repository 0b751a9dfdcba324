"""
Account and story bookkeeping for the scheduler UI.

Everything here validates input and delegates to the Store; the dispatch
cycle itself lives in linkcast.core.dispatcher.
"""

from datetime import datetime
from uuid import UUID

from linkcast.core.clock import as_utc
from linkcast.core.dispatcher import MAX_RETRIES
from linkcast.core.errors import (
    AccountNotFound,
    StoryLocked,
    StoryNotFound,
    ValidationError,
)
from linkcast.models.tables import (
    FacebookAccount,
    ScheduledStory,
    STATUS_FAILED,
    STORY_TYPE_IMAGE,
    STORY_TYPE_VIDEO,
)

import structlog

logger = structlog.get_logger()

STORY_TYPES = (STORY_TYPE_IMAGE, STORY_TYPE_VIDEO)


async def connect_account(
    store,
    owner_id: str,
    access_token: str,
    token_expires_at: datetime,
    page_id: str | None = None,
    page_name: str | None = None,
    facebook_user_id: str | None = None,
) -> FacebookAccount:
    if not owner_id or not owner_id.strip():
        raise ValidationError("owner_id is required")
    if not access_token or not access_token.strip():
        raise ValidationError("Access token and expiry date are required")

    account = await store.insert_account(
        owner_id=owner_id.strip(),
        facebook_user_id=facebook_user_id or page_id or "me",
        access_token=access_token.strip(),
        page_id=page_id or None,
        page_name=page_name or None,
        token_expires_at=as_utc(token_expires_at),
        is_active=True,
    )
    logger.info("account_connected", account_id=str(account.id), owner_id=account.owner_id,
                page_id=account.page_id)
    return account


async def schedule_story(
    store,
    account_id: UUID,
    media_url: str,
    scheduled_time: datetime,
    caption: str = "",
    story_type: str = STORY_TYPE_IMAGE,
) -> ScheduledStory:
    if story_type not in STORY_TYPES:
        raise ValidationError(f"story_type must be one of {', '.join(STORY_TYPES)}")
    if not media_url or not media_url.startswith(("http://", "https://")):
        raise ValidationError("Image URL must start with http:// or https://")

    account = await store.get_account(account_id)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")

    story = await store.insert_story(
        account_id=account_id,
        story_type=story_type,
        media_url=media_url,
        caption=caption or "",
        scheduled_time=as_utc(scheduled_time),
    )
    logger.info("story_scheduled", story_id=str(story.id), account_id=str(account_id),
                scheduled_time=story.scheduled_time.isoformat())
    return story


async def cancel_story(store, story_id: UUID):
    """Delete a story that has not been claimed yet."""
    if await store.delete_pending_story(story_id):
        logger.info("story_deleted", story_id=str(story_id))
        return

    story = await store.get_story(story_id)
    if story is None:
        raise StoryNotFound(f"Story {story_id} not found")
    raise StoryLocked(f"Story is {story.status}; only pending stories can be deleted")


async def requeue_story(store, story_id: UUID, reset_retries: bool = False) -> ScheduledStory:
    """Put a failed story back in the queue (owner action after fixing the cause).

    A story that used up its retries only goes back with reset_retries.
    """
    if not await store.requeue_story(story_id, MAX_RETRIES, reset_retries=reset_retries):
        story = await store.get_story(story_id)
        if story is None:
            raise StoryNotFound(f"Story {story_id} not found")
        if story.status == STATUS_FAILED:
            raise StoryLocked("Retry ceiling reached; requeue with reset_retries")
        raise StoryLocked(f"Story is {story.status}; only failed stories can be requeued")

    logger.info("story_requeued", story_id=str(story_id), reset_retries=reset_retries)
    return await store.get_story(story_id)
