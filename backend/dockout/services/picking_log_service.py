"""
Picking Log Service

Keeps a durable record of every picking payload the workflow generates and of
the outcome of each attempt, and lets an operator re-send stored payloads.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from dockout.core.exceptions import EntityNotFoundException, to_http_exception
from dockout.models.picking_log import PickingLog
from dockout.repositories.picking_log_repository import PickingLogRepository
from dockout.schemas.picking_log import (
    PickingLogListResponse,
    PickingLogResendOutcome,
    PickingLogResendRequest,
    PickingLogResendResponse,
    PickingLogResponse,
)
from dockout.services.picking_service import PickingResult, PickingService
from dockout.utils.extraction import dig

logger = logging.getLogger(__name__)

STATUS_GENERATED = "generated"
STATUS_PICKED = "picked"
STATUS_ERROR = "error"


def stored_results(log: PickingLog) -> List[Dict[str, Any]]:
    try:
        payload = json.loads(log.payload_json or "{}")
    except ValueError:
        return []
    return dig(payload, ("getloadingsequence", "results")) or []


class PickingLogService:
    def __init__(self, db: Session, picking: Optional[PickingService] = None):
        self._db = db
        self._repo = PickingLogRepository(db)
        self._picking = picking or PickingService()

    def list_logs(
        self,
        vep_token: Optional[str] = None,
        do_no: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> PickingLogListResponse:
        rows = self._repo.list_filtered(vep_token=vep_token, do_no=do_no, status=status)
        start = (page - 1) * page_size
        return PickingLogListResponse(
            items=[PickingLogResponse.model_validate(r) for r in rows[start:start + page_size]],
            total=len(rows),
            page=page,
            page_size=page_size,
        )

    def get_log(self, log_id: int) -> PickingLog:
        log = self._repo.get_by_id(log_id)
        if not log:
            raise to_http_exception(EntityNotFoundException("PickingLog", log_id))
        return log

    def delete_log(self, log_id: int) -> None:
        self._repo.delete(self.get_log(log_id))

    def record_generated(self, vep_token: str, do_no: str, payload: Dict[str, Any]) -> PickingLog:
        log = PickingLog(
            vep_token=vep_token,
            do_no=do_no,
            status=STATUS_GENERATED,
            payload_json=json.dumps(payload, default=str),
        )
        return self._repo.create(log)

    def record_outcome(self, vep_token: str, do_no: str, payload: Dict[str, Any], result: PickingResult) -> PickingLog:
        """Attach an attempt's outcome to the latest log of the order, creating one if none exists."""
        log = self._repo.get_latest(vep_token, do_no) or self.record_generated(vep_token, do_no, payload)
        return self._repo.update(
            log,
            {
                "status": STATUS_PICKED if result.picked else STATUS_ERROR,
                "message": result.message,
                "rescode": result.rescode or None,
            },
        )

    async def resend(self, body: PickingLogResendRequest) -> PickingLogResendResponse:
        vep_token = body.vep_token.strip()
        logs = {log.id: log for log in self._repo.get_by_ids(body.log_ids)}

        async def resend_one(log_id: int) -> PickingLogResendOutcome:
            log = logs.get(log_id)
            if log is None:
                return PickingLogResendOutcome(
                    log_id=log_id, status="error", message=f"PickingLog {log_id} not found."
                )
            payload = {"tokenno": vep_token, "getloadingsequence": {"results": stored_results(log)}}
            result = await self._picking.confirm_picking(log.do_no, payload)
            return PickingLogResendOutcome(
                log_id=log_id,
                do_no=log.do_no,
                status="success" if result.picked else "error",
                message=result.message,
                rescode=result.rescode,
            )

        outcomes = await asyncio.gather(*(resend_one(log_id) for log_id in body.log_ids))

        for outcome in outcomes:
            log = logs.get(outcome.log_id)
            if log is None:
                continue
            self._repo.update(
                log,
                {
                    "status": STATUS_PICKED if outcome.status == "success" else STATUS_ERROR,
                    "message": outcome.message,
                    "rescode": outcome.rescode or None,
                },
                commit=False,
            )
        self._db.commit()

        success_count = sum(1 for o in outcomes if o.status == "success")
        logger.info(
            "picking_logs_resent token=%s requested=%s success=%s",
            vep_token,
            len(body.log_ids),
            success_count,
        )
        return PickingLogResendResponse(
            vep_token=vep_token,
            results=list(outcomes),
            success_count=success_count,
            error_count=len(outcomes) - success_count,
        )


class PickingLogRecorder:
    """Session-per-call writer used by the in-memory workflow, outside any request scope."""

    def __init__(self, db_session_factory: Callable[[], Session]):
        self._db_session_factory = db_session_factory

    def generated(self, vep_token: str, do_no: str, payload: Dict[str, Any]) -> None:
        db = self._db_session_factory()
        try:
            PickingLogService(db).record_generated(vep_token, do_no, payload)
        finally:
            db.close()

    def outcome(self, vep_token: str, do_no: str, payload: Dict[str, Any], result: PickingResult) -> None:
        db = self._db_session_factory()
        try:
            PickingLogService(db).record_outcome(vep_token, do_no, payload, result)
        finally:
            db.close()
