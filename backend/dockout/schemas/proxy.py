from decimal import Decimal
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from dockout.schemas.workflow import DeliveryOrderItem, DestSloc, StorageType, ValidationStatus


class StockTransferLine(BaseModel):
    posnr: str
    material: str
    actual_quantity: Decimal = Decimal("0")
    actual_batch: str = ""
    uom: str = ""
    storage_type: StorageType = StorageType.EDO
    storage: str = ""
    dest_sloc: DestSloc = DestSloc.ZF05
    vep_token: Optional[str] = None
    doc_cata: Optional[str] = None
    uecha: Optional[str] = None
    qty: Decimal = Decimal("0")
    batch: str = ""
    plant: str = ""
    warehouse: str = ""
    bin: str = ""

    def to_item(self, do_no: str, index: int) -> DeliveryOrderItem:
        return DeliveryOrderItem(
            s_no=index + 1,
            do_no=do_no,
            **self.model_dump(exclude={"vep_token", "doc_cata", "uecha"}),
            vep_token=self.vep_token or "",
            doc_cata=self.doc_cata or "",
            uecha=self.uecha or "",
        )


class StockTransferRequest(BaseModel):
    do_no: str = Field(..., min_length=1)
    items: List[StockTransferLine] = Field(..., min_length=1)


class StockTransferResponse(BaseModel):
    status: ValidationStatus
    message: str
    details: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class PickingProxyResponse(BaseModel):
    success: bool
    message: str
    rescode: str = ""
    result: Dict[str, Any] = Field(default_factory=dict)


class TokenLookupResponse(BaseModel):
    success: bool = True
    formatted_data: List[Dict[str, Any]]
    raw_data: Dict[str, Any] = Field(default_factory=dict)
