"""
Redirect interstitial — /r/{short_code}

Flow:
  1. Rate limit per IP
  2. Look up link (unknown or inactive → 404)
  3. Record the visit in the click ledger
  4. Render the interstitial: ad slot + countdown, then forward to the
     destination after link.redirect_delay seconds

A ledger failure is logged and the visitor is still forwarded — losing
one click's revenue is better than a broken redirect.
"""

from html import escape

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from linkcast.core.errors import LinkInactive, LinkNotFound
from linkcast.core.ledger import VisitMetadata, record_visit
from linkcast.models.database import get_db
from linkcast.models.store import Store
from linkcast.middleware.rate_limit import get_real_ip, rate_limit_ip

import structlog

logger = structlog.get_logger()
router = APIRouter()

NOT_FOUND_DETAIL = "Link not found or has expired"


def render_interstitial(
    destination: str,
    delay: int,
    is_affiliate: bool,
    click_count: int,
) -> str:
    url = escape(destination, quote=True)
    badge = '<p class="badge">Affiliate Link</p>' if is_affiliate else ""
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<meta name="robots" content="noindex,nofollow">
<meta http-equiv="refresh" content="{delay};url={url}">
<title>Redirecting…</title>
</head>
<body>
<h1>Redirecting in {delay}s</h1>
<section class="ad-slot">
<h2>Advertisement Space</h2>
</section>
<section class="destination">
<p>You will be redirected to:</p>
<p><a href="{url}" rel="noopener">{url}</a></p>
{badge}
</section>
<p><a href="{url}" rel="noopener">Skip &amp; Continue Now</a></p>
<p>This link has been clicked {click_count} times</p>
</body>
</html>"""


@router.get("/r/{short_code}", response_class=HTMLResponse)
async def redirect_page(
    request: Request,
    short_code: str,
    db: AsyncSession = Depends(get_db),
):
    rate_limit_ip(request)
    store = Store(db)

    # --- 1. Look up link ---
    link = await store.get_link_by_code(short_code)
    if not link or not link.is_active:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)

    link_id = link.id
    destination = link.original_url
    delay = link.redirect_delay
    is_affiliate = link.is_affiliate
    click_count = link.total_clicks + 1

    # --- 2. Ledger (best effort) ---
    visit = VisitMetadata(
        referrer=request.headers.get("referer", ""),
        user_agent=request.headers.get("user-agent", ""),
        ip_address=get_real_ip(request),
    )
    try:
        await record_visit(store, link_id, visit)
    except (LinkNotFound, LinkInactive):
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    except Exception:
        logger.exception("click_record_failed", short_code=short_code, link_id=str(link_id))

    # --- 3. Interstitial ---
    return HTMLResponse(render_interstitial(destination, delay, is_affiliate, click_count))
