"""
Click ledger — one Click row plus one counter bump per resolved redirect.

Revenue model (estimated, per click):
  - regular link    0.01
  - affiliate link  0.05

The counter bump is a single UPDATE that adds to the stored values, and it
shares a transaction with the Click insert: either both land or neither.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from linkcast.core.clock import utcnow
from linkcast.core.device import classify_device
from linkcast.core.errors import LinkInactive, LinkNotFound
from linkcast.models.tables import Click

import structlog

logger = structlog.get_logger()

REGULAR_CLICK_REVENUE = Decimal("0.01")
AFFILIATE_CLICK_REVENUE = Decimal("0.05")


@dataclass(frozen=True)
class VisitMetadata:
    referrer: str = ""
    user_agent: str = ""
    ip_address: str | None = None


def revenue_per_click(is_affiliate: bool) -> Decimal:
    return AFFILIATE_CLICK_REVENUE if is_affiliate else REGULAR_CLICK_REVENUE


async def record_visit(store, link_id: UUID, visit: VisitMetadata) -> Click:
    """Record one visit against a link and accrue its revenue.

    Raises LinkNotFound / LinkInactive without writing anything.
    """
    link = await store.get_link(link_id)
    if link is None:
        raise LinkNotFound(f"Link {link_id} not found")
    short_code = link.short_code
    if not link.is_active:
        raise LinkInactive(f"Link {short_code} is inactive")

    amount = revenue_per_click(link.is_affiliate)
    device_type = classify_device(visit.user_agent)

    try:
        bumped = await store.atomic_increment_link_stats(link_id, 1, amount)
        if bumped:
            click = await store.insert_click(Click(
                link_id=link_id,
                clicked_at=utcnow(),
                referrer=visit.referrer or "",
                user_agent=visit.user_agent or "",
                ip_address=visit.ip_address,
                device_type=device_type,
                revenue_generated=amount,
            ))
            await store.commit()
    except Exception:
        await store.rollback()
        raise

    if not bumped:
        # Deactivated between the read and the update
        await store.rollback()
        raise LinkInactive(f"Link {short_code} is inactive")

    logger.info("click_recorded", link_id=str(link_id), short_code=short_code,
                device=device_type, revenue=str(amount))
    return click
