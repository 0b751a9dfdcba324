"""
Dispatch cycle — claims due stories and publishes them.

State machine:
  pending → processing → posted            (terminal)
                       → failed            (retry_count + 1, next_attempt_at set)
                       → failed            (account inactive / token expired /
                                            non-retryable: no increment, no
                                            next_attempt_at)
                       → failed            (published but the posted write
                                            failed: blocked, post id kept in
                                            error_message)
  failed → pending   when next_attempt_at has passed and retry_count < 3,
                     or when the owner requeues it by hand

Per cycle:
  0. Requeue transient failures whose backoff elapsed
  1. Claim ≤10 due stories (conditional UPDATE per row, committed first)
  2. Gate on the owning account: inactive → failed("account inactive")
  3. Gate on the token: expired → failed("token expired")
  4. Publish once; write posted/failed conditioned on status=processing
  5. One story's crash never aborts the rest of the batch; a crash after a
     successful publish blocks the story instead of retrying it
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from linkcast.config import get_settings
from linkcast.core.clock import as_utc, utcnow
from linkcast.core.errors import AccountInactive, PublishedNotRecorded, TokenExpired
from linkcast.models.store import Store
from linkcast.models.tables import ScheduledStory, STATUS_FAILED, STATUS_POSTED

import structlog

logger = structlog.get_logger()

MAX_RETRIES = 3
BATCH_SIZE = 10


@dataclass
class JobResult:
    story_id: str
    success: bool
    external_post_id: str | None = None
    error: str | None = None


@dataclass
class DispatchReport:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    requeued: int = 0
    results: list[JobResult] = field(default_factory=list)

    def add(self, result: JobResult):
        self.results.append(result)
        self.processed += 1
        if result.success:
            self.successful += 1
        else:
            self.failed += 1

    def as_dict(self) -> dict:
        return asdict(self)


def next_attempt_after(
    retry_count: int,
    now: datetime,
    backoff_seconds: list[int],
) -> datetime | None:
    """When a story that has failed retry_count times may run again.

    None once the retry ceiling is reached.
    """
    if retry_count >= MAX_RETRIES or not backoff_seconds:
        return None
    index = min(max(retry_count - 1, 0), len(backoff_seconds) - 1)
    return now + timedelta(seconds=backoff_seconds[index])


async def _block(store: Store, story_id, message: str) -> JobResult:
    """Permanent failure: no retry increment, waits for a manual requeue."""
    await store.update_story_status(
        story_id,
        status=STATUS_FAILED,
        error_message=message,
        next_attempt_at=None,
    )
    logger.warning("story_blocked", story_id=str(story_id), reason=message)
    return JobResult(story_id=str(story_id), success=False, error=message)


async def _fail(
    store: Store,
    story_id,
    retry_count: int,
    message: str,
    now: datetime,
    backoff_seconds: list[int],
) -> JobResult:
    """Transient failure: counts against the retry ceiling."""
    attempts = retry_count + 1
    await store.update_story_status(
        story_id,
        status=STATUS_FAILED,
        error_message=message,
        retry_count=ScheduledStory.retry_count + 1,
        next_attempt_at=next_attempt_after(attempts, now, backoff_seconds),
    )
    logger.warning("story_failed", story_id=str(story_id), attempts=attempts, error=message)
    return JobResult(story_id=str(story_id), success=False, error=message)


async def _dispatch_one(
    store: Store,
    publisher,
    story: ScheduledStory,
    now: datetime,
    backoff_seconds: list[int],
) -> JobResult:
    story_id = story.id
    retry_count = story.retry_count

    account = await store.get_account(story.account_id)
    if account is None or not account.is_active:
        return await _block(store, story_id, AccountInactive().message)

    if as_utc(account.token_expires_at) <= now:
        return await _block(store, story_id, TokenExpired().message)

    outcome = await publisher.publish(story, account, now=now)

    if outcome.ok:
        try:
            recorded = await store.update_story_status(
                story_id,
                status=STATUS_POSTED,
                posted_at=utcnow(),
                external_post_id=outcome.external_post_id,
                error_message=None,
                next_attempt_at=None,
            )
        except Exception as exc:
            raise PublishedNotRecorded(
                f"Posted as {outcome.external_post_id} but not recorded: {exc}",
                external_post_id=outcome.external_post_id,
            ) from exc
        if not recorded:
            logger.error("story_post_not_recorded", story_id=str(story_id),
                         external_post_id=outcome.external_post_id)
        logger.info("story_posted", story_id=str(story_id),
                    external_post_id=outcome.external_post_id)
        return JobResult(story_id=str(story_id), success=True,
                         external_post_id=outcome.external_post_id)

    if not outcome.retryable:
        return await _block(store, story_id, outcome.message)

    return await _fail(store, story_id, retry_count, outcome.message, now, backoff_seconds)


async def run_dispatch_cycle(
    store: Store,
    publisher,
    now: datetime | None = None,
    batch_size: int = BATCH_SIZE,
    backoff_seconds: list[int] | None = None,
) -> DispatchReport:
    """Claim and process one batch of due stories."""
    now = as_utc(now) if now else utcnow()
    if backoff_seconds is None:
        backoff_seconds = get_settings().dispatch_retry_backoff_seconds

    report = DispatchReport()
    report.requeued = await store.requeue_due_failures(now, MAX_RETRIES)

    stories = await store.claim_due_stories(now, batch_size, MAX_RETRIES)
    # Plain values only: a rollback after a crash expires every loaded row
    claimed = [(story.id, story.retry_count) for story in stories]

    for story_id, retry_count in claimed:
        logger.info("story_claimed", story_id=str(story_id), attempt=retry_count + 1)
        try:
            story = await store.get_story(story_id)
            result = await _dispatch_one(store, publisher, story, now, backoff_seconds)
        except Exception as exc:
            logger.exception("story_dispatch_crashed", story_id=str(story_id))
            await store.rollback()
            try:
                if isinstance(exc, PublishedNotRecorded):
                    # Already live on Facebook; park it for reconciliation
                    result = await _block(store, story_id, exc.message)
                else:
                    result = await _fail(store, story_id, retry_count,
                                         f"Unexpected error: {exc}", now, backoff_seconds)
            except Exception:
                logger.exception("story_failure_not_recorded", story_id=str(story_id))
                await store.rollback()
                result = JobResult(story_id=str(story_id), success=False,
                                   error=f"Unexpected error: {exc}")
        report.add(result)

    logger.info("dispatch_cycle_finished", processed=report.processed,
                successful=report.successful, failed=report.failed,
                requeued=report.requeued)
    return report


async def dispatch_forever(session_maker, publisher, interval_seconds: int):
    """Timer loop started from the app lifespan. Cancel to stop."""
    logger.info("dispatch_timer_started", interval=interval_seconds)
    while True:
        try:
            async with session_maker() as session:
                await run_dispatch_cycle(Store(session), publisher)
        except Exception:
            logger.exception("dispatch_tick_failed")
        await asyncio.sleep(interval_seconds)
