"""Manual trigger for one dispatch cycle — same code path as the timer."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from linkcast.core.dispatcher import run_dispatch_cycle
from linkcast.core.publisher import FacebookPublisher, get_publisher
from linkcast.models.database import get_db
from linkcast.models.store import Store

router = APIRouter(prefix="/v1/dispatch", tags=["dispatch"])


@router.post("/run")
async def run_dispatch(
    db: AsyncSession = Depends(get_db),
    publisher: FacebookPublisher = Depends(get_publisher),
):
    report = await run_dispatch_cycle(Store(db), publisher)
    return report.as_dict()
