"""
Health check endpoint with database and transfer run status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from api.dependencies import get_db
from schemas.api import HealthCheckResponse
from models.base import TransferStatus
from models.transfer_run import TransferRun
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Transfer run counts by status
    - Last successful and last failed run
    """
    request_id = getattr(request.state, "request_id", None)

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    runs_by_status = {}
    last_success_at = None
    last_failure_at = None

    if db_connected:
        try:
            result = await db.execute(
                select(TransferRun.status, func.count()).group_by(TransferRun.status)
            )
            for status, count in result.all():
                key = status.value if isinstance(status, TransferStatus) else str(status)
                runs_by_status[key] = count

            last_success_at = (await db.execute(
                select(func.max(TransferRun.completed_at))
                .where(TransferRun.status == TransferStatus.SUCCESS)
            )).scalar()

            last_failure_at = (await db.execute(
                select(func.max(TransferRun.completed_at))
                .where(TransferRun.status.in_([TransferStatus.FAILED, TransferStatus.TIMED_OUT]))
            )).scalar()
        except Exception as e:
            logger.error(f"[{request_id}] Failed to fetch transfer run status: {str(e)}")

    return HealthCheckResponse(
        status=HealthCheckResponse.determine_status(db_connected, runs_by_status),
        timestamp=datetime.utcnow(),
        request_id=request_id,
        database_connected=db_connected,
        runs_by_status=runs_by_status,
        last_success_at=last_success_at,
        last_failure_at=last_failure_at
    )
