from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field


class PickingLogResponse(BaseModel):
    id: int
    vep_token: str
    do_no: str
    status: str
    payload_json: str
    message: Optional[str] = None
    rescode: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PickingLogListResponse(BaseModel):
    items: List[PickingLogResponse]
    total: int
    page: int
    page_size: int


class PickingLogResendRequest(BaseModel):
    vep_token: str = Field(..., min_length=1, max_length=64)
    log_ids: List[int] = Field(..., min_length=1)


class PickingLogResendOutcome(BaseModel):
    log_id: int
    do_no: Optional[str] = None
    status: str = Field(pattern="^(success|error)$")
    message: str
    rescode: str = ""


class PickingLogResendResponse(BaseModel):
    vep_token: str
    results: List[PickingLogResendOutcome]
    success_count: int
    error_count: int
