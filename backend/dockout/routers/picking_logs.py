"""
Picking Log Router — Thin Controller (SRP / DIP)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dockout.database import get_db
from dockout.dependencies import get_picking_service
from dockout.schemas.picking_log import (
    PickingLogListResponse,
    PickingLogResendRequest,
    PickingLogResendResponse,
    PickingLogResponse,
)
from dockout.services.picking_log_service import PickingLogService
from dockout.services.picking_service import PickingService


router = APIRouter(prefix="/picking-logs", tags=["Picking Logs"])


def get_picking_log_service(
    db: Session = Depends(get_db),
    picking: PickingService = Depends(get_picking_service),
) -> PickingLogService:
    return PickingLogService(db, picking)


@router.get("", response_model=PickingLogListResponse)
def list_picking_logs(
    vep_token: Optional[str] = None,
    do_no: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(generated|picked|error)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    service: PickingLogService = Depends(get_picking_log_service),
):
    return service.list_logs(vep_token=vep_token, do_no=do_no, status=status, page=page, page_size=page_size)


@router.get("/{log_id}", response_model=PickingLogResponse)
def get_picking_log(log_id: int, service: PickingLogService = Depends(get_picking_log_service)):
    return service.get_log(log_id)


@router.delete("/{log_id}", status_code=204)
def delete_picking_log(log_id: int, service: PickingLogService = Depends(get_picking_log_service)):
    service.delete_log(log_id)


@router.post("/resend", response_model=PickingLogResendResponse)
async def resend_picking_logs(
    body: PickingLogResendRequest,
    service: PickingLogService = Depends(get_picking_log_service),
):
    return await service.resend(body)
