import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from .. import config
from ..exceptions import http_problem
from ..schemas import BackfillOut
from ..services.backfill import BackfillError, run_backfill
from ..services.validation import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


async def require_backfill_secret(
    x_backfill_secret: Optional[str] = Header(None, alias="X-Backfill-Secret"),
    secret: Optional[str] = Query(None),
) -> None:
    expected = config.BACKFILL_SECRET
    provided = x_backfill_secret or secret
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        logger.warning("Unauthorized backfill attempt")
        raise http_problem(
            status_code=403,
            detail="forbidden",
            code="admin_forbidden",
        )


# POST /api/v0/admin/backfill?startDate=2025-01-01&endDate=2025-03-31
@router.post(
    "/backfill",
    response_model=BackfillOut,
    dependencies=[Depends(require_backfill_secret)],
)
async def backfill(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    rebuild_lifetime_goals: bool = Query(False, alias="rebuildLifetimeGoals"),
) -> BackfillOut:
    try:
        result = await run_backfill(
            start_date,
            end_date,
            rebuild_lifetime_goals=rebuild_lifetime_goals,
        )
    except ValidationError as exc:
        raise http_problem(status_code=400, detail=exc.detail, code="backfill_invalid_range")
    except BackfillError as exc:
        raise http_problem(status_code=500, detail=str(exc), code="backfill_failed")

    return BackfillOut(
        message=result.summary(),
        startDate=result.start.isoformat(),
        endDate=result.end.isoformat(),
        matchesProcessed=result.matches_processed,
        matchesSkipped=result.matches_skipped,
        dailyDocuments=result.daily_documents,
        weeklyDocuments=result.weekly_documents,
        lifetimeDocuments=result.lifetime_documents,
        documentsWritten=result.documents_written,
        completed=result.completed,
        cancelled=result.cancelled,
    )
