"""Tests for account and story bookkeeping."""

from datetime import timedelta
from uuid import uuid4

import pytest

from linkcast.core.dispatcher import run_dispatch_cycle
from linkcast.core.errors import AccountNotFound, StoryLocked, StoryNotFound, ValidationError
from linkcast.core.scheduling import cancel_story, connect_account, requeue_story, schedule_story


class TestConnectAccount:
    async def test_page_id_is_publish_target(self, store, now):
        account = await connect_account(
            store, owner_id="owner-1", access_token="tok",
            token_expires_at=now + timedelta(days=60), page_id="1784", page_name="Shop",
        )
        assert account.facebook_user_id == "1784"
        assert account.page_id == "1784"
        assert account.is_active is True

    async def test_defaults_to_me_without_page(self, store, now):
        account = await connect_account(
            store, owner_id="owner-1", access_token="tok",
            token_expires_at=now + timedelta(days=60),
        )
        assert account.facebook_user_id == "me"
        assert account.page_id is None

    @pytest.mark.parametrize("owner_id, token", [("", "tok"), ("owner-1", ""), ("owner-1", "   ")])
    async def test_blank_fields_rejected(self, store, now, owner_id, token):
        with pytest.raises(ValidationError):
            await connect_account(store, owner_id=owner_id, access_token=token,
                                  token_expires_at=now)


class TestScheduleStory:
    async def test_new_story_is_pending(self, store, now, make_account):
        account = await make_account(store)
        story = await schedule_story(
            store, account.id, "https://cdn.example.com/a.jpg", now + timedelta(hours=2),
            caption="Launch day",
        )
        assert story.status == "pending"
        assert story.retry_count == 0
        assert story.caption == "Launch day"
        assert story.external_post_id is None

    async def test_media_url_must_be_http(self, store, now, make_account):
        account = await make_account(store)
        with pytest.raises(ValidationError) as exc:
            await schedule_story(store, account.id, "file:///tmp/a.jpg", now)
        assert exc.value.message == "Image URL must start with http:// or https://"

    async def test_unknown_story_type(self, store, now, make_account):
        account = await make_account(store)
        with pytest.raises(ValidationError):
            await schedule_story(store, account.id, "https://cdn.example.com/a.gif", now,
                                 story_type="reel")

    async def test_unknown_account(self, store, now):
        with pytest.raises(AccountNotFound):
            await schedule_story(store, uuid4(), "https://cdn.example.com/a.jpg", now)


class TestCancelStory:
    async def test_pending_story_deleted(self, store, make_account, make_story):
        account = await make_account(store)
        story = await make_story(store, account)

        await cancel_story(store, story.id)

        assert await store.get_story(story.id) is None

    async def test_claimed_story_is_locked(self, store, make_account, make_story):
        account = await make_account(store)
        story = await make_story(store, account)
        await store.update_story_status(story.id, expected_status="pending", status="processing")

        with pytest.raises(StoryLocked):
            await cancel_story(store, story.id)
        assert (await store.get_story(story.id)).status == "processing"

    async def test_missing_story(self, store):
        with pytest.raises(StoryNotFound):
            await cancel_story(store, uuid4())


class TestRequeueStory:
    async def test_failed_story_back_to_pending(self, store, make_account, make_story):
        account = await make_account(store)
        story = await make_story(store, account)
        await store.update_story_status(
            story.id, expected_status="pending",
            status="failed", error_message="Failed to post to Facebook", retry_count=1,
        )

        requeued = await requeue_story(store, story.id)
        assert requeued.status == "pending"
        assert requeued.error_message is None
        assert requeued.retry_count == 1

        await store.update_story_status(story.id, expected_status="pending", status="failed")
        requeued = await requeue_story(store, story.id, reset_retries=True)
        assert requeued.retry_count == 0

    async def test_exhausted_story_needs_reset(
        self, store, now, make_account, make_story, fake_publisher,
    ):
        account = await make_account(store)
        story = await make_story(store, account)
        await store.update_story_status(
            story.id, expected_status="pending",
            status="failed", error_message="Failed to post to Facebook", retry_count=3,
        )

        with pytest.raises(StoryLocked) as exc:
            await requeue_story(store, story.id)
        assert "reset_retries" in exc.value.message
        stuck = await store.get_story(story.id)
        assert stuck.status == "failed"
        assert stuck.retry_count == 3

        requeued = await requeue_story(store, story.id, reset_retries=True)
        assert requeued.status == "pending"
        assert requeued.retry_count == 0

        report = await run_dispatch_cycle(store, fake_publisher, now=now)
        assert report.successful == 1
        assert (await store.get_story(story.id)).status == "posted"

    async def test_pending_story_cannot_be_requeued(self, store, make_account, make_story):
        account = await make_account(store)
        story = await make_story(store, account)
        with pytest.raises(StoryLocked):
            await requeue_story(store, story.id)

    async def test_missing_story(self, store):
        with pytest.raises(StoryNotFound):
            await requeue_story(store, uuid4())

    async def test_reactivated_account_publishes_after_requeue(
        self, store, now, make_account, make_story, fake_publisher,
    ):
        account = await make_account(store, is_active=False)
        story = await make_story(store, account)

        await run_dispatch_cycle(store, fake_publisher, now=now)
        assert (await store.get_story(story.id)).error_message == "account inactive"

        await store.set_account_active(account.id, True)
        await requeue_story(store, story.id)
        await run_dispatch_cycle(store, fake_publisher, now=now)

        posted = await store.get_story(story.id)
        assert posted.status == "posted"
        assert fake_publisher.calls == [story.id]
