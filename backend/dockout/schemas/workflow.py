from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field


class StorageType(str, Enum):
    EDO = "EDO"
    RVP = "RVP"
    SCK = "SCK"
    PICKER = "PICKER"


class DestSloc(str, Enum):
    ZF05 = "ZF05"
    ZF04 = "ZF04"
    ZF03 = "ZF03"
    ZF02 = "ZF02"
    ZF01 = "ZF01"


class GroupStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    TRANSFERRED = "transferred"
    PICKED = "picked"
    COMPLETED = "completed"
    ERROR = "error"


class ValidationStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class WorkflowStage(str, Enum):
    LOADING = "loading"
    TRANSFER = "transfer"
    PICKING = "picking"
    GROSS = "gross"


class ValidationResult(BaseModel):
    status: Optional[ValidationStatus] = None
    message: Optional[str] = None


class DeliveryOrderItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    s_no: int
    vep_token: str
    do_no: str
    wms_picking: str = "N/A"
    picking_status: str = "N/A"
    pgi_status: str = "N/A"
    posnr: str
    material: str
    material_des: str = ""
    qty: Decimal = Decimal("0")
    batch: str = ""
    uom: str = ""
    bin: str = ""
    storage_type: StorageType = StorageType.EDO
    dest_sloc: DestSloc = DestSloc.ZF05
    warehouse: str = ""
    storage: str = ""
    plant: str = ""
    dock: str = ""
    doc_cata: str = ""
    net: Decimal = Decimal("0")
    gross: Decimal = Decimal("0")
    truck: str = ""
    to_no: str = ""
    sequence_no: str = ""
    channel: str = ""
    uecha: str = ""
    actual_batch: str = ""
    actual_quantity: Decimal = Decimal("0")
    is_new: bool = False
    status: GroupStatus = GroupStatus.PENDING
    error_message: Optional[str] = None


class DeliveryOrderGroup(BaseModel):
    do_no: str
    items: List[DeliveryOrderItem]
    status: GroupStatus = GroupStatus.PENDING
    is_editing: bool = False
    validation: ValidationResult = Field(default_factory=ValidationResult)
    picking_payload: Optional[Dict[str, Any]] = None
    sap_response: Optional[Dict[str, Any]] = None


class MaterialTotals(BaseModel):
    proposed: Decimal
    actual: Decimal


class MaterialValidation(BaseModel):
    is_valid: bool
    message: Optional[str] = None
    totals: Dict[str, MaterialTotals] = Field(default_factory=dict)


class LoadedDetail(BaseModel):
    tokenno: str = ""
    obd_no: str = ""
    posnr: str = ""
    lfimg: str = ""
    prqty: str = ""
    matnr: str = ""
    uecha: str = ""
    charg: str = ""
    ntgew: str = ""
    brgew: str = ""
    lgort: str = ""
    werks: str = ""
    quantity_mismatch: bool = False


class GrossSnapshot(BaseModel):
    vep_token: str
    rows: List[LoadedDetail] = Field(default_factory=list)
    total_gross_weight: Decimal = Decimal("0")
    error: Optional[str] = None
    last_attempt: Optional[Dict[str, Any]] = None


class WorkflowRunView(BaseModel):
    run_id: str
    vep_token: Optional[str] = None
    stage: WorkflowStage
    groups: List[DeliveryOrderGroup] = Field(default_factory=list)
    gross: Optional[GrossSnapshot] = None
    can_advance: bool = False
    created_at: datetime
    updated_at: datetime


# ── Requests ──────────────────────────────────────────────────────────────────

class WorkflowStartRequest(BaseModel):
    vep_token: str = Field(..., min_length=1, max_length=64)


class ItemUpdateRequest(BaseModel):
    field: str = Field(..., pattern="^(actual_quantity|actual_batch|storage_type|dest_sloc)$")
    value: Any = None


class AdditionalMaterialOption(str, Enum):
    HUSK = "Husk"
    PLY = "Ply"
    WASTAGE_CARTON = "Wastage Carton"
    HARDBOARD = "Hardboard"
    PLY_3MM = "Ply 3mm"
    BLACK_POLYTHENE_PAPER = "Black Polythene Paper"
    TARPOLINE = "Tarpoline"
    TIN_SHEET = "Tin Sheet"
    GIFT_ITEMS = "Gift Items"


class AdditionalMaterialUom(str, Enum):
    KG = "KG"
    G = "G"
    PC = "PC"


class AdditionalMaterial(BaseModel):
    material_id: AdditionalMaterialOption
    quantity: str = Field(..., min_length=1)
    uom: AdditionalMaterialUom


class GrossCompleteRequest(BaseModel):
    additional_materials: List[AdditionalMaterial] = Field(default_factory=list)


# ── Responses ─────────────────────────────────────────────────────────────────

class GroupActionResult(BaseModel):
    do_no: str
    status: GroupStatus
    validation: ValidationResult


class BatchActionResponse(BaseModel):
    run: WorkflowRunView
    results: List[GroupActionResult] = Field(default_factory=list)
    skipped: List[GroupActionResult] = Field(default_factory=list)
    message: Optional[str] = None
