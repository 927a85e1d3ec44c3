from typing import List, Optional

from sqlalchemy.orm import Session

from dockout.models.picking_log import PickingLog
from dockout.repositories.base import BaseRepository


class PickingLogRepository(BaseRepository[PickingLog]):
    def __init__(self, db: Session):
        super().__init__(PickingLog, db)

    def list_filtered(
        self,
        vep_token: Optional[str] = None,
        do_no: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[PickingLog]:
        q = self.db.query(PickingLog)
        if vep_token:
            q = q.filter(PickingLog.vep_token.ilike(f"%{vep_token.strip()}%"))
        if do_no:
            q = q.filter(PickingLog.do_no.ilike(f"%{do_no.strip()}%"))
        if status is not None:
            q = q.filter(PickingLog.status == status)
        return q.order_by(PickingLog.created_at.desc(), PickingLog.id.desc()).all()

    def get_latest(self, vep_token: str, do_no: str) -> Optional[PickingLog]:
        return (
            self.db.query(PickingLog)
            .filter(PickingLog.vep_token == vep_token, PickingLog.do_no == do_no)
            .order_by(PickingLog.id.desc())
            .first()
        )
