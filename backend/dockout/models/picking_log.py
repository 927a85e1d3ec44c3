from sqlalchemy import Column, Integer, String, DateTime, Text, CheckConstraint, Index, func
from dockout.database import Base


class PickingLog(Base):
    __tablename__ = "picking_logs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('generated', 'picked', 'error')",
            name="ck_picking_logs_status",
        ),
        Index("ix_picking_logs_vep_token_do_no", "vep_token", "do_no"),
    )

    id = Column(Integer, primary_key=True, index=True)
    vep_token = Column(String(64), nullable=False, index=True)
    do_no = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="generated", index=True)

    payload_json = Column(Text, nullable=False)
    message = Column(Text, nullable=True)
    rescode = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)
