"""
Token load: fetch the loading sequence of a VEP token and group it into
delivery-order groups ready for the transfer stage.
"""
from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from dockout.config import settings
from dockout.core.exceptions import (
    EntityNotFoundException,
    ParseError,
    UpstreamHttpError,
    WorkflowValidationError,
)
from dockout.schemas.workflow import (
    DeliveryOrderGroup,
    DeliveryOrderItem,
    DestSloc,
    GroupStatus,
    StorageType,
)
from dockout.services.lifecycle import initial_status
from dockout.upstream.http import UpstreamClient, UpstreamCredentials, upstream_client
from dockout.utils.extraction import dig
from dockout.utils.numbers import to_decimal

logger = logging.getLogger(__name__)

MISSING = "N/A"
NO_DATA_MESSAGE = "No data found for the provided VEP Token."
ERROR_PREVIEW_CHARS = 200

# display column -> SAP loading-sequence field
FORMATTED_ROW_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("DONo", "obd_no"),
    ("WMSPicking", "LVSTK"),
    ("PickingStatus", "KOSTK"),
    ("PGIStatus", "WBSTK"),
    ("Posnr", "posnr"),
    ("Material", "matnr"),
    ("MaterialDes", "maktx"),
    ("Qty", "lfimg"),
    ("Batch", "oldcharg"),
    ("BatchOld", "oldcharg"),
    ("UOM", "meins"),
    ("Bin", "lgpla"),
    ("StorageType", "lgtyp"),
    ("Warehouse", "lgnum"),
    ("Storage", "lgort"),
    ("Plant", "werks"),
    ("Dock", "docknum"),
    ("DocCata", "pstyv"),
    ("Ind", "speLoekz"),
    ("Net", "ntgew"),
    ("Gross", "brgew"),
    ("Truck", "bolnr"),
    ("ToNo", "tanum"),
    ("SequenceNo", "sequenceno"),
    ("Channel", "vtweg"),
    ("Uecha", "uecha"),
)

DO_NUMBER_KEYS: Tuple[str, ...] = ("DONo", "obd_no", "DeliveryOrder", "OBD", "VBELN")


def format_token_rows(header: Mapping[str, Any], token: str) -> List[Dict[str, Any]]:
    """Flatten ``d.getloadingsequence.results`` into display rows; absent values read ``N/A``."""
    results = dig(header, ("getloadingsequence", "results")) or []
    vep_token = header.get("TokenNo") or token
    rows = []
    for index, item in enumerate(results):
        row: Dict[str, Any] = {"SNo": index + 1, "VEPToken": vep_token}
        for column, source in FORMATTED_ROW_FIELDS:
            value = item.get(source)
            if column == "StorageType":
                row[column] = value or ""
            else:
                row[column] = value if value not in (None, "") else MISSING
        rows.append(row)
    return rows


def token_error_message(status: int, text: str, reason: Optional[str] = None) -> str:
    if reason is None:
        try:
            reason = HTTPStatus(status).phrase
        except ValueError:
            reason = ""
    message = f"SAP API Error: {status} {reason}".rstrip()

    parsed = None
    if text:
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None

    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        error = parsed["error"]
        sap_message = dig(error, ("message", "value")) or error.get("message") or ""
        if not isinstance(sap_message, str):
            sap_message = ""
        return f"SAP Error ({error.get('code') or 'Unknown'}): {sap_message}"

    if parsed is None and text and any(marker in text for marker in ("Invalid", "Error", "Unauthorized")):
        return f"SAP API Error: {text[:ERROR_PREVIEW_CHARS]}..."
    return message


def _present(row: Mapping[str, Any], key: str) -> str:
    value = row.get(key)
    if value in (None, "", MISSING):
        return ""
    return str(value)


def do_number_for(row: Mapping[str, Any], index: int) -> str:
    for key in DO_NUMBER_KEYS:
        value = _present(row, key)
        if value:
            return value
    return f"DO-{index + 1}"


def item_from_row(row: Mapping[str, Any], index: int, do_no: str, vep_token: str) -> DeliveryOrderItem:
    qty = to_decimal(_present(row, "Qty"))
    batch = _present(row, "Batch")
    picking_status = row.get("PickingStatus") or MISSING
    return DeliveryOrderItem(
        s_no=row.get("SNo") or index + 1,
        vep_token=_present(row, "VEPToken") or vep_token,
        do_no=do_no,
        wms_picking=row.get("WMSPicking") or MISSING,
        picking_status=picking_status,
        pgi_status=row.get("PGIStatus") or MISSING,
        posnr=_present(row, "Posnr") or f"{index + 1}0",
        material=_present(row, "Material"),
        material_des=_present(row, "MaterialDes"),
        qty=qty,
        batch=batch,
        uom=_present(row, "UOM") or "KG",
        bin=_present(row, "Bin"),
        storage_type=StorageType.EDO,
        dest_sloc=DestSloc.ZF05,
        warehouse=_present(row, "Warehouse"),
        storage=_present(row, "Storage"),
        plant=_present(row, "Plant"),
        dock=_present(row, "Dock"),
        doc_cata=_present(row, "DocCata"),
        net=to_decimal(_present(row, "Net")),
        gross=to_decimal(_present(row, "Gross")),
        truck=_present(row, "Truck"),
        to_no=_present(row, "ToNo"),
        sequence_no=_present(row, "SequenceNo") or str(index + 1),
        channel=_present(row, "Channel") or "01",
        uecha=_present(row, "Uecha"),
        actual_batch=batch,
        actual_quantity=qty,
        status=GroupStatus.COMPLETED if str(picking_status).upper() == "C" else GroupStatus.PENDING,
    )


def group_rows(rows: Sequence[Mapping[str, Any]], vep_token: str) -> List[DeliveryOrderGroup]:
    """Group formatted rows by delivery order, keeping first-seen order of both groups and items."""
    grouped: Dict[str, List[DeliveryOrderItem]] = {}
    for index, row in enumerate(rows):
        do_no = do_number_for(row, index)
        grouped.setdefault(do_no, []).append(item_from_row(row, index, do_no, vep_token))

    return [
        DeliveryOrderGroup(
            do_no=do_no,
            items=items,
            status=initial_status(item.status for item in items),
        )
        for do_no, items in grouped.items()
    ]


class TokenService:
    def __init__(
        self,
        client: Optional[UpstreamClient] = None,
        credentials: Optional[UpstreamCredentials] = None,
        endpoint_url: Optional[str] = None,
    ):
        self._client = client or upstream_client
        self._credentials = credentials or UpstreamCredentials(
            settings.SAP_USERNAME, settings.SAP_PASSWORD, settings.SAP_CLIENT
        )
        self._endpoint_url = endpoint_url or settings.SAP_TOKEN_DETAILS_URL

    def _url(self, token: str) -> str:
        key = quote(token.replace("'", "''"), safe="")
        return f"{self._endpoint_url}(tokenno='{key}')?$expand=getloadingsequence"

    async def fetch_token_details(self, token: str) -> Dict[str, Any]:
        """Returns ``{"formatted_data": [...], "raw_data": {...}}`` for a VEP token."""
        token = (token or "").strip()
        if not token:
            raise WorkflowValidationError("Token is required")

        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._credentials.client:
            headers["sap-client"] = self._credentials.client
        response = await self._client.request(
            "GET", self._url(token), headers=headers, auth=self._credentials
        )

        if not response.ok:
            message = token_error_message(response.status, response.text)
            logger.warning("token_details_failed token=%s status=%s message=%s", token, response.status, message)
            raise UpstreamHttpError(message, status_code=response.status, body=response.text)

        data = response.json_or_none()
        if not isinstance(data, dict):
            raise ParseError("SAP API returned non-JSON response", raw_text=response.text[:ERROR_PREVIEW_CHARS])

        header = data.get("d") or {}
        formatted = format_token_rows(header, token)
        logger.info("token_details_loaded token=%s rows=%s", token, len(formatted))
        return {"formatted_data": formatted, "raw_data": header}

    async def load_groups(self, token: str) -> List[DeliveryOrderGroup]:
        details = await self.fetch_token_details(token)
        rows = details["formatted_data"]
        if not rows:
            raise EntityNotFoundException("VEP token", token, message=NO_DATA_MESSAGE)
        return group_rows(rows, token.strip())
