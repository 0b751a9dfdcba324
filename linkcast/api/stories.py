"""
Scheduled story API.

POST   /v1/stories                    schedule (pending)
GET    /v1/stories?account_id=...     list for one account
GET    /v1/stories/{id}
DELETE /v1/stories/{id}               pending only — anything else is history
POST   /v1/stories/{id}/requeue       failed → pending
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from linkcast.core.errors import AccountNotFound, StoryLocked, StoryNotFound, ValidationError
from linkcast.core.scheduling import cancel_story, requeue_story, schedule_story
from linkcast.models.database import get_db
from linkcast.models.store import Store
from linkcast.models.tables import ScheduledStory

router = APIRouter(prefix="/v1/stories", tags=["stories"])


class ScheduleStoryRequest(BaseModel):
    account_id: UUID
    media_url: str
    scheduled_time: datetime
    caption: str = ""
    story_type: Literal["image", "video"] = "image"


class StoryResponse(BaseModel):
    id: UUID
    account_id: UUID
    story_type: str
    media_url: str
    caption: str
    scheduled_time: datetime
    status: str
    posted_at: datetime | None
    error_message: str | None
    retry_count: int
    external_post_id: str | None
    next_attempt_at: datetime | None


def _to_response(story: ScheduledStory) -> StoryResponse:
    return StoryResponse(
        id=story.id,
        account_id=story.account_id,
        story_type=story.story_type,
        media_url=story.media_url,
        caption=story.caption or "",
        scheduled_time=story.scheduled_time,
        status=story.status,
        posted_at=story.posted_at,
        error_message=story.error_message,
        retry_count=story.retry_count,
        external_post_id=story.external_post_id,
        next_attempt_at=story.next_attempt_at,
    )


@router.post("", response_model=StoryResponse, status_code=201)
async def create_story(req: ScheduleStoryRequest, db: AsyncSession = Depends(get_db)):
    try:
        story = await schedule_story(
            Store(db),
            account_id=req.account_id,
            media_url=req.media_url,
            scheduled_time=req.scheduled_time,
            caption=req.caption,
            story_type=req.story_type,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except AccountNotFound:
        raise HTTPException(status_code=404, detail="Account not found")
    return _to_response(story)


@router.get("", response_model=list[StoryResponse])
async def list_stories(account_id: UUID = Query(...), db: AsyncSession = Depends(get_db)):
    stories = await Store(db).list_stories(account_id)
    return [_to_response(s) for s in stories]


@router.get("/{story_id}", response_model=StoryResponse)
async def get_story(story_id: UUID, db: AsyncSession = Depends(get_db)):
    story = await Store(db).get_story(story_id)
    if not story:
        raise HTTPException(status_code=404, detail="Story not found")
    return _to_response(story)


@router.delete("/{story_id}", status_code=204)
async def delete_story(story_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await cancel_story(Store(db), story_id)
    except StoryNotFound:
        raise HTTPException(status_code=404, detail="Story not found")
    except StoryLocked as exc:
        raise HTTPException(status_code=409, detail=exc.message)


@router.post("/{story_id}/requeue", response_model=StoryResponse)
async def requeue(
    story_id: UUID,
    reset_retries: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    try:
        story = await requeue_story(Store(db), story_id, reset_retries=reset_retries)
    except StoryNotFound:
        raise HTTPException(status_code=404, detail="Story not found")
    except StoryLocked as exc:
        raise HTTPException(status_code=409, detail=exc.message)
    return _to_response(story)
