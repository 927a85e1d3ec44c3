"""
SAP Proxy Router — Thin Controller (SRP / DIP)

Stateless single-call access to the stock-transfer and picking orchestrators
and to the token lookup, for callers that keep their own workflow state.
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from dockout.dependencies import get_picking_service, get_stock_transfer_service, get_token_service
from dockout.schemas.proxy import (
    PickingProxyResponse,
    StockTransferRequest,
    StockTransferResponse,
    TokenLookupResponse,
)
from dockout.services.picking_service import PickingResult, PickingService
from dockout.services.stock_transfer_service import StockTransferService, TransferResult
from dockout.services.token_service import TokenService
from dockout.utils.extraction import dig


router = APIRouter(tags=["SAP Proxy"])


def transfer_status_code(result: TransferResult) -> int:
    if result.proceeds:
        return 200
    if result.http_status is not None and not 200 <= result.http_status < 300:
        return result.http_status
    if result.sap_response is not None:
        return 400
    return 502


def picking_status_code(result: PickingResult) -> int:
    if result.picked:
        return 200
    if result.http_status is None:
        return 502
    if not 200 <= result.http_status < 300:
        return result.http_status
    return 400


@router.post("/stock-transfer", response_model=StockTransferResponse)
async def stock_transfer(
    body: StockTransferRequest,
    service: StockTransferService = Depends(get_stock_transfer_service),
):
    items = [line.to_item(body.do_no, i) for i, line in enumerate(body.items)]
    result = await service.transfer(body.do_no, items)

    data: Dict[str, Any] = {}
    if result.picking_payload is not None:
        data["picking_payload"] = result.picking_payload
        data["sap_response"] = result.sap_response
    elif result.items is not None:
        data["items"] = [item.model_dump(mode="json") for item in result.items]
    elif result.sap_response is not None:
        data = result.sap_response

    response = StockTransferResponse(
        status=result.status,
        message=result.message,
        details=result.details,
        data=data or None,
    )
    return JSONResponse(status_code=transfer_status_code(result), content=response.model_dump(mode="json"))


@router.post("/sap-picking-status", response_model=PickingProxyResponse)
async def sap_picking_status(
    payload: Dict[str, Any] = Body(...),
    service: PickingService = Depends(get_picking_service),
):
    results = dig(payload, ("getloadingsequence", "results")) or []
    do_no = results[0].get("obd_no", "") if results and isinstance(results[0], dict) else ""
    result = await service.confirm_picking(do_no, payload)
    response = PickingProxyResponse(
        success=result.picked,
        message=result.message,
        rescode=result.rescode,
        result=result.response,
    )
    return JSONResponse(status_code=picking_status_code(result), content=response.model_dump(mode="json"))


@router.get("/sap-picking", response_model=TokenLookupResponse)
async def sap_picking_lookup(
    token: str = Query(..., min_length=1),
    service: TokenService = Depends(get_token_service),
):
    details = await service.fetch_token_details(token)
    return TokenLookupResponse(formatted_data=details["formatted_data"], raw_data=details["raw_data"])
