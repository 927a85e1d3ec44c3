"""
Stock-Transfer Orchestrator

Posts the operator-confirmed quantities of one delivery order to the SAP
stock-movement service and classifies the outcome by the business message SAP
returns, not only by HTTP status. A successful posting seeds the picking stage
with a payload derived from SAP's per-line results.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from dockout.config import settings
from dockout.core.exceptions import DockoutException, ParseError
from dockout.schemas.workflow import (
    DeliveryOrderItem,
    MaterialTotals,
    MaterialValidation,
    ValidationStatus,
)
from dockout.services.payload_builder import build_picking_payload, build_stock_move_payload
from dockout.services.session_broker import SessionBroker
from dockout.upstream.http import UpstreamCredentials, UpstreamResponse, upstream_client
from dockout.utils.extraction import dig, sap_error_reason

logger = logging.getLogger(__name__)

TRANSFER_COMPLETED_PHRASE = "Transfer posting Completed"
ALREADY_TRANSFERRED_PHRASE = "Already Transfer posting Completed"
SHORTAGE_TOLERANCE_PERCENT = Decimal("20")


@dataclass
class TransferResult:
    status: ValidationStatus
    message: str
    details: Optional[str] = None
    http_status: Optional[int] = None
    picking_payload: Optional[Dict[str, Any]] = None
    sap_response: Optional[Dict[str, Any]] = None
    items: Optional[List[DeliveryOrderItem]] = None

    @property
    def proceeds(self) -> bool:
        return self.status in (ValidationStatus.SUCCESS, ValidationStatus.WARNING)


# ── Pre-submission validation ─────────────────────────────────────────────────

def material_totals(items: Sequence[DeliveryOrderItem]) -> Dict[str, MaterialTotals]:
    totals: Dict[str, MaterialTotals] = {}
    for item in items:
        current = totals.get(item.material) or MaterialTotals(proposed=Decimal("0"), actual=Decimal("0"))
        totals[item.material] = MaterialTotals(
            proposed=current.proposed + item.qty,
            actual=current.actual + item.actual_quantity,
        )
    return totals


def validate_material_totals(items: Sequence[DeliveryOrderItem]) -> MaterialValidation:
    """
    Per-material quantity check that gates the transfer action.

    NOTE: rule 1 rejects ``proposed < actual`` while its message talks about
    the proposed quantity being *greater*; this is the behaviour operators
    rely on today and is kept as-is pending product confirmation.
    """
    totals = material_totals(items)
    for material, t in totals.items():
        if t.actual <= 0:
            continue
        if t.proposed < t.actual:
            return MaterialValidation(
                is_valid=False,
                message=(
                    f"For material {material}, proposed quantity ({t.proposed}) cannot be greater "
                    f"than actual available quantity ({t.actual})."
                ),
                totals=totals,
            )
        shortage_percent = (t.proposed - t.actual) / t.proposed * 100
        if shortage_percent > SHORTAGE_TOLERANCE_PERCENT:
            return MaterialValidation(
                is_valid=False,
                message=(
                    f"For material {material}, the proposed quantity exceeds the actual quantity "
                    f"by more than {SHORTAGE_TOLERANCE_PERCENT}% tolerance."
                ),
                totals=totals,
            )
    return MaterialValidation(is_valid=True, totals=totals)


# ── Response classification ───────────────────────────────────────────────────

def http_error_message(status: int, text: str) -> str:
    return sap_error_reason(text) or f"SAP stock transfer failed with HTTP status: {status}"


def parse_json_body(response: UpstreamResponse) -> Dict[str, Any]:
    parsed = response.json_or_none()
    if not isinstance(parsed, dict):
        raise ParseError("Failed to parse response JSON", raw_text=response.text)
    return parsed


def classify_stock_move(
    response: UpstreamResponse,
    items: Sequence[DeliveryOrderItem],
    picking_defaults: Optional[Dict[str, Any]] = None,
) -> TransferResult:
    if not response.ok:
        return TransferResult(
            status=ValidationStatus.ERROR,
            message=http_error_message(response.status, response.text),
            details=response.text,
            http_status=response.status,
        )

    try:
        result = parse_json_body(response)
    except ParseError as exc:
        return TransferResult(
            status=ValidationStatus.ERROR,
            message=exc.message,
            details=exc.raw_text,
            http_status=response.status,
        )

    lines = dig(result, ("d", "OrderToItem", "results")) or []
    raw_message = lines[0].get("Message") if lines and isinstance(lines[0], dict) else None
    message = raw_message or ""

    # the "already" phrase contains the success phrase, so it is tested first
    if ALREADY_TRANSFERRED_PHRASE in message:
        return TransferResult(
            status=ValidationStatus.WARNING,
            message=message,
            http_status=response.status,
            items=list(items),
        )
    if TRANSFER_COMPLETED_PHRASE in message:
        return TransferResult(
            status=ValidationStatus.SUCCESS,
            message=message,
            http_status=response.status,
            picking_payload=build_picking_payload(result, defaults=picking_defaults),
            sap_response=result,
        )
    return TransferResult(
        status=ValidationStatus.ERROR,
        message=raw_message or "An unknown error occurred.",
        http_status=response.status,
        sap_response=result,
    )


class StockTransferService:
    def __init__(
        self,
        broker: Optional[SessionBroker] = None,
        credentials: Optional[UpstreamCredentials] = None,
        endpoint_url: Optional[str] = None,
        picking_defaults: Optional[Dict[str, Any]] = None,
    ):
        self._broker = broker or SessionBroker(upstream_client)
        self._credentials = credentials or UpstreamCredentials(
            settings.SAP_USERNAME, settings.SAP_PASSWORD, settings.SAP_CLIENT
        )
        self._endpoint_url = endpoint_url or settings.SAP_STOCK_MOVE_URL
        self._picking_defaults = picking_defaults

    async def transfer(self, do_no: str, items: Sequence[DeliveryOrderItem]) -> TransferResult:
        payload = build_stock_move_payload(do_no, items)
        logger.debug("stock_move_payload do_no=%s payload=%s", do_no, payload)
        try:
            response = await self._broker.post_with_session(
                self._endpoint_url, self._credentials, payload, handshake_method="HEAD"
            )
        except DockoutException as exc:
            logger.warning("stock_transfer_failed do_no=%s code=%s message=%s", do_no, exc.code, exc.message)
            return TransferResult(
                status=ValidationStatus.ERROR,
                message=exc.message,
                details=exc.details if isinstance(exc.details, str) else None,
                http_status=getattr(exc, "status_code", None),
            )

        result = classify_stock_move(response, items, self._picking_defaults)
        logger.info(
            "stock_transfer_classified do_no=%s status=%s http_status=%s message=%s",
            do_no,
            result.status.value,
            response.status,
            result.message,
        )
        return result
