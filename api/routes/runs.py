"""
Transfer run ledger endpoints with pagination and filtering
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from api.dependencies import get_db
from schemas.api import TransferRunListResponse, TransferRunResponse, PaginationMetadata
from models.base import TransferStatus
from models.transfer_run import TransferRun
from typing import Optional
from uuid import UUID
import uuid
import math
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/runs", tags=["Runs"])


@router.get("", response_model=TransferRunListResponse)
async def list_runs(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Runs per page"),
    object_name: Optional[str] = Query(None, description="Filter by target object"),
    status: Optional[TransferStatus] = Query(None, description="Filter by run status"),
    job_id: Optional[str] = Query(None, description="Filter by remote job id"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent transfer runs first."""
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    logger.info(
        f"[{request_id}] GET /runs - page={page}, page_size={page_size}, "
        f"filters: object_name={object_name}, status={status}, job_id={job_id}"
    )

    filters = []
    filters_applied = []

    if object_name:
        filters.append(TransferRun.object_name == object_name)
        filters_applied.append("object_name")

    if status:
        filters.append(TransferRun.status == status)
        filters_applied.append("status")

    if job_id:
        filters.append(TransferRun.job_id == job_id)
        filters_applied.append("job_id")

    query = select(TransferRun)
    count_query = select(func.count()).select_from(TransferRun)
    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total_items = (await db.execute(count_query)).scalar() or 0
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0
    offset = (page - 1) * page_size

    query = query.order_by(TransferRun.started_at.desc()).offset(offset).limit(page_size)
    runs = (await db.execute(query)).scalars().all()

    return TransferRunListResponse(
        items=[TransferRunResponse.from_orm(run) for run in runs],
        pagination=PaginationMetadata(
            total_items=total_items,
            total_pages=total_pages,
            current_page=page,
            page_size=page_size,
            has_next=page < total_pages,
            has_previous=page > 1
        ),
        filters_applied=filters_applied,
        request_id=request_id
    )


@router.get("/{run_id}", response_model=TransferRunResponse)
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """One transfer run by its run id."""
    result = await db.execute(select(TransferRun).where(TransferRun.run_id == run_id))
    run = result.scalar_one_or_none()

    if run is None:
        raise HTTPException(status_code=404, detail=f"Transfer run {run_id} not found")

    return TransferRunResponse.from_orm(run)
