"""
Publisher gateway — one Facebook Graph API call per story.

  POST {graph_url}/{version}/{page_id | facebook_user_id}/photo_stories
       photo_url, caption (optional), access_token

Every result comes back as a PublishOutcome value. Transport errors,
timeouts, API rejections and unreadable bodies all become PublishFailure,
so the dispatch cycle handles every non-success the same way. There is no
retry here; retries belong to the dispatch cycle.

retryable=False marks failures that another attempt cannot fix (bad media
type, dead account, or a 2xx we could not read — the post may already
exist, and re-sending could publish it twice).
"""

from dataclasses import dataclass
from datetime import datetime

import httpx

from linkcast.config import get_settings
from linkcast.core.clock import as_utc, utcnow
from linkcast.core.errors import AccountInactive, TokenExpired, UnsupportedMediaType
from linkcast.models.tables import (
    FacebookAccount,
    ScheduledStory,
    STATUS_POSTED,
    STORY_TYPE_IMAGE,
)

import structlog

logger = structlog.get_logger()

DEFAULT_FAILURE_MESSAGE = "Failed to post to Facebook"
NETWORK_ERROR_MESSAGE = "Network error while contacting Facebook"
TIMEOUT_MESSAGE = "Timed out waiting for Facebook"


@dataclass(frozen=True)
class PublishSuccess:
    external_post_id: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class PublishFailure:
    message: str
    retryable: bool = True

    @property
    def ok(self) -> bool:
        return False


PublishOutcome = PublishSuccess | PublishFailure


class FacebookPublisher:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        graph_url: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.graph_url = (graph_url or settings.facebook_graph_url).rstrip("/")
        self.api_version = api_version or settings.facebook_api_version
        self.timeout = timeout if timeout is not None else settings.publish_timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_request(self, job: ScheduledStory, account: FacebookAccount) -> tuple[str, dict]:
        """Return (url, form fields) for the story. Image stories only."""
        if job.story_type != STORY_TYPE_IMAGE:
            raise UnsupportedMediaType(f"{job.story_type} stories are not supported yet")

        target_id = account.page_id or account.facebook_user_id
        url = f"{self.graph_url}/{self.api_version}/{target_id}/photo_stories"
        form = {"photo_url": job.media_url, "access_token": account.access_token}
        if job.caption:
            form["caption"] = job.caption
        return url, form

    async def publish(
        self,
        job: ScheduledStory,
        account: FacebookAccount,
        now: datetime | None = None,
    ) -> PublishOutcome:
        now = now or utcnow()

        # The dispatch cycle checks these first; never send a request that
        # breaks them.
        if not account.is_active:
            return PublishFailure(AccountInactive().message, retryable=False)
        if as_utc(account.token_expires_at) <= now:
            return PublishFailure(TokenExpired().message, retryable=False)
        if job.status == STATUS_POSTED:
            return PublishFailure("story already posted", retryable=False)

        try:
            url, form = self.build_request(job, account)
        except UnsupportedMediaType as exc:
            logger.warning("publish_unsupported_media", story_id=str(job.id),
                           story_type=job.story_type)
            return PublishFailure(exc.message, retryable=False)

        try:
            response = await self._get_client().post(url, data=form, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.warning("publish_timeout", story_id=str(job.id), timeout=self.timeout)
            return PublishFailure(TIMEOUT_MESSAGE)
        except httpx.HTTPError as exc:
            logger.warning("publish_transport_error", story_id=str(job.id), error=str(exc))
            return PublishFailure(NETWORK_ERROR_MESSAGE)

        return self._classify(job, response)

    def _classify(self, job: ScheduledStory, response: httpx.Response) -> PublishOutcome:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            logger.warning("publish_unreadable_response", story_id=str(job.id),
                           status=response.status_code)
            return PublishFailure(DEFAULT_FAILURE_MESSAGE, retryable=not response.is_success)

        error = payload.get("error")
        if response.is_success and not error:
            post_id = payload.get("id") or payload.get("post_id")
            if post_id:
                return PublishSuccess(external_post_id=str(post_id))
            logger.warning("publish_missing_post_id", story_id=str(job.id))
            return PublishFailure("Facebook response did not include a post id", retryable=False)

        message = DEFAULT_FAILURE_MESSAGE
        if isinstance(error, dict) and error.get("message"):
            message = str(error["message"])
        logger.warning("publish_rejected", story_id=str(job.id),
                       status=response.status_code, error=message)
        return PublishFailure(message)


# Shared instance, created on first use and closed from the app lifespan.
_publisher: FacebookPublisher | None = None


def get_publisher() -> FacebookPublisher:
    """FastAPI dependency — the process-wide publisher."""
    global _publisher
    if _publisher is None:
        _publisher = FacebookPublisher()
    return _publisher


async def close_publisher():
    global _publisher
    if _publisher is not None:
        await _publisher.aclose()
    _publisher = None
