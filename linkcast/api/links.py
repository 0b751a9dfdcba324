"""
Link management API — create short links and read their ledger.

POST  /v1/links                       create one link
POST  /v1/links/bulk                  create up to 100 links, per-item errors
GET   /v1/links/{short_code}          lookup
GET   /v1/links/{short_code}/stats    clicks, revenue, device split, recent clicks
PATCH /v1/links/{short_code}/deactivate
PATCH /v1/links/{short_code}/activate
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from linkcast.config import get_settings
from linkcast.core.errors import AllocationExhausted, CodeTaken, ValidationError
from linkcast.core.short_code import create_link as allocate_and_insert
from linkcast.models.database import get_db
from linkcast.models.store import Store
from linkcast.models.tables import Link
from linkcast.middleware.rate_limit import get_real_ip, rate_limit_ip

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/links", tags=["links"])


# --- Schemas ---

class CreateLinkRequest(BaseModel):
    original_url: str
    custom_code: str | None = None
    is_affiliate: bool = False
    redirect_delay: int | None = None
    title: str = ""


class BulkLinkItem(BaseModel):
    # Optional so a missing URL is reported per item instead of failing the batch
    original_url: str | None = None
    custom_code: str | None = None
    is_affiliate: bool = False
    redirect_delay: int | None = None
    title: str = ""


class BulkLinkRequest(BaseModel):
    links: list[BulkLinkItem] | None = None


class LinkResponse(BaseModel):
    id: UUID
    short_code: str
    short_url: str
    original_url: str
    title: str
    is_affiliate: bool
    redirect_delay: int
    total_clicks: int
    estimated_revenue: Decimal
    is_active: bool
    created_at: datetime | None


class BulkLinkError(BaseModel):
    index: int
    error: str


class BulkLinkResponse(BaseModel):
    success: bool
    created: int
    failed: int
    links: list[LinkResponse]
    errors: list[BulkLinkError]


class ClickSummary(BaseModel):
    clicked_at: datetime | None
    referrer: str
    device_type: str
    revenue_generated: Decimal


class LinkStatsResponse(BaseModel):
    short_code: str
    total_clicks: int
    estimated_revenue: Decimal
    devices: dict[str, int]
    recent_clicks: list[ClickSummary]


# --- Helpers ---

def _to_response(link: Link) -> LinkResponse:
    settings = get_settings()
    return LinkResponse(
        id=link.id,
        short_code=link.short_code,
        short_url=f"{settings.base_url}/r/{link.short_code}",
        original_url=link.original_url,
        title=link.title or "",
        is_affiliate=link.is_affiliate,
        redirect_delay=link.redirect_delay,
        total_clicks=link.total_clicks,
        estimated_revenue=link.estimated_revenue,
        is_active=link.is_active,
        created_at=link.created_at,
    )


async def _get_link_or_404(store: Store, short_code: str) -> Link:
    link = await store.get_link_by_code(short_code)
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")
    return link


# --- Endpoints ---

@router.post("", response_model=LinkResponse, status_code=201)
async def create_link(
    req: CreateLinkRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    rate_limit_ip(request)
    settings = get_settings()
    store = Store(db)

    try:
        link = await allocate_and_insert(
            store,
            original_url=req.original_url,
            requested_code=req.custom_code or None,
            is_affiliate=req.is_affiliate,
            redirect_delay=(
                req.redirect_delay if req.redirect_delay is not None
                else settings.default_redirect_delay
            ),
            title=req.title,
            created_by_ip=get_real_ip(request),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except CodeTaken:
        raise HTTPException(status_code=409, detail="This custom code is already taken")
    except AllocationExhausted as exc:
        raise HTTPException(status_code=503, detail=exc.message)

    return _to_response(link)


@router.post("/bulk", response_model=BulkLinkResponse)
async def bulk_create_links(
    req: BulkLinkRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    rate_limit_ip(request)
    settings = get_settings()

    if not req.links:
        raise HTTPException(status_code=400, detail="Invalid request. 'links' array is required.")
    if len(req.links) > settings.bulk_create_max_links:
        raise HTTPException(
            status_code=400,
            detail=f"Maximum {settings.bulk_create_max_links} links per request",
        )

    store = Store(db)
    created: list[LinkResponse] = []
    errors: list[BulkLinkError] = []

    for index, item in enumerate(req.links):
        try:
            link = await allocate_and_insert(
                store,
                original_url=item.original_url,
                requested_code=item.custom_code or None,
                is_affiliate=item.is_affiliate,
                redirect_delay=(
                    item.redirect_delay if item.redirect_delay is not None
                    else settings.default_redirect_delay
                ),
                title=item.title,
                created_by_ip="api",
            )
        except (ValidationError, CodeTaken, AllocationExhausted) as exc:
            errors.append(BulkLinkError(index=index, error=exc.message))
            continue
        created.append(_to_response(link))

    logger.info("bulk_links_created", created=len(created), failed=len(errors))

    return BulkLinkResponse(
        success=True,
        created=len(created),
        failed=len(errors),
        links=created,
        errors=errors,
    )


@router.get("/{short_code}", response_model=LinkResponse)
async def get_link(short_code: str, db: AsyncSession = Depends(get_db)):
    link = await _get_link_or_404(Store(db), short_code)
    return _to_response(link)


@router.get("/{short_code}/stats", response_model=LinkStatsResponse)
async def link_stats(
    short_code: str,
    db: AsyncSession = Depends(get_db),
    recent: int = Query(10, ge=1, le=100),
):
    """Ledger totals plus the click breakdown behind them."""
    store = Store(db)
    link = await _get_link_or_404(store, short_code)

    devices = await store.device_breakdown(link.id)
    clicks = await store.recent_clicks(link.id, limit=recent)

    return LinkStatsResponse(
        short_code=link.short_code,
        total_clicks=link.total_clicks,
        estimated_revenue=link.estimated_revenue,
        devices=devices,
        recent_clicks=[
            ClickSummary(
                clicked_at=c.clicked_at,
                referrer=c.referrer,
                device_type=c.device_type,
                revenue_generated=c.revenue_generated,
            )
            for c in clicks
        ],
    )


@router.patch("/{short_code}/deactivate", response_model=LinkResponse)
async def deactivate_link(short_code: str, db: AsyncSession = Depends(get_db)):
    link = await Store(db).set_link_active(short_code, False)
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")
    logger.info("link_deactivated", short_code=short_code)
    return _to_response(link)


@router.patch("/{short_code}/activate", response_model=LinkResponse)
async def activate_link(short_code: str, db: AsyncSession = Depends(get_db)):
    link = await Store(db).set_link_active(short_code, True)
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")
    logger.info("link_activated", short_code=short_code)
    return _to_response(link)
