from dockout.schemas.workflow import (
    StorageType,
    DestSloc,
    GroupStatus,
    ValidationStatus,
    WorkflowStage,
    ValidationResult,
    DeliveryOrderItem,
    DeliveryOrderGroup,
    MaterialTotals,
    MaterialValidation,
    LoadedDetail,
    GrossSnapshot,
    WorkflowRunView,
    WorkflowStartRequest,
    ItemUpdateRequest,
    AdditionalMaterialOption,
    AdditionalMaterialUom,
    AdditionalMaterial,
    GrossCompleteRequest,
    GroupActionResult,
    BatchActionResponse,
)
from dockout.schemas.picking_log import (
    PickingLogResponse,
    PickingLogListResponse,
    PickingLogResendRequest,
    PickingLogResendOutcome,
    PickingLogResendResponse,
)
from dockout.schemas.proxy import (
    StockTransferLine,
    StockTransferRequest,
    StockTransferResponse,
    PickingProxyResponse,
    TokenLookupResponse,
)
