"""
Facebook account API — publishing credentials for the story scheduler.

Access tokens are write-only: they are stored for the publisher and never
returned in responses.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from linkcast.core.errors import ValidationError
from linkcast.core.scheduling import connect_account
from linkcast.models.database import get_db
from linkcast.models.store import Store
from linkcast.models.tables import FacebookAccount

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/accounts", tags=["accounts"])


class ConnectAccountRequest(BaseModel):
    owner_id: str
    access_token: str
    token_expires_at: datetime
    page_id: str | None = None
    page_name: str | None = None
    facebook_user_id: str | None = None


class AccountResponse(BaseModel):
    id: UUID
    owner_id: str
    facebook_user_id: str
    page_id: str | None
    page_name: str | None
    token_expires_at: datetime
    is_active: bool
    created_at: datetime | None


def _to_response(account: FacebookAccount) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        owner_id=account.owner_id,
        facebook_user_id=account.facebook_user_id,
        page_id=account.page_id,
        page_name=account.page_name,
        token_expires_at=account.token_expires_at,
        is_active=account.is_active,
        created_at=account.created_at,
    )


@router.post("", response_model=AccountResponse, status_code=201)
async def create_account(req: ConnectAccountRequest, db: AsyncSession = Depends(get_db)):
    try:
        account = await connect_account(
            Store(db),
            owner_id=req.owner_id,
            access_token=req.access_token,
            token_expires_at=req.token_expires_at,
            page_id=req.page_id,
            page_name=req.page_name,
            facebook_user_id=req.facebook_user_id,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return _to_response(account)


@router.get("", response_model=list[AccountResponse])
async def list_accounts(
    owner_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    accounts = await Store(db).list_accounts(owner_id)
    return [_to_response(a) for a in accounts]


async def _set_active(account_id: UUID, is_active: bool, db: AsyncSession) -> AccountResponse:
    store = Store(db)
    if not await store.set_account_active(account_id, is_active):
        raise HTTPException(status_code=404, detail="Account not found")
    logger.info("account_active_changed", account_id=str(account_id), is_active=is_active)
    return _to_response(await store.get_account(account_id))


@router.patch("/{account_id}/deactivate", response_model=AccountResponse)
async def deactivate_account(account_id: UUID, db: AsyncSession = Depends(get_db)):
    """Halts dispatch for every story of this account; history is kept."""
    return await _set_active(account_id, False, db)


@router.patch("/{account_id}/activate", response_model=AccountResponse)
async def activate_account(account_id: UUID, db: AsyncSession = Depends(get_db)):
    return await _set_active(account_id, True, db)
