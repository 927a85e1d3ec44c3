"""
Gross stage: reconcile loaded quantities against SAP and hand the final
loading record to TEG.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Sequence

from dockout.config import settings
from dockout.core.exceptions import (
    EntityNotFoundException,
    ParseError,
    UpstreamHttpError,
    WorkflowValidationError,
)
from dockout.schemas.workflow import AdditionalMaterial, GrossSnapshot, LoadedDetail
from dockout.services.payload_builder import build_additional_materials, build_loading_update
from dockout.services.teg_service import TegService
from dockout.services.token_service import NO_DATA_MESSAGE
from dockout.upstream.http import UpstreamClient, UpstreamCredentials, upstream_client
from dockout.utils.extraction import dig
from dockout.utils.numbers import to_decimal

logger = logging.getLogger(__name__)

QUANTITY_MISMATCH_MESSAGE = "LFIMG and PRQTY fields do not match for all items."
LOADED_DETAIL_FIELDS = tuple(name for name in LoadedDetail.model_fields if name != "quantity_mismatch")


def loaded_detail_from_row(row) -> LoadedDetail:
    return LoadedDetail(**{name: str(row.get(name) or "") for name in LOADED_DETAIL_FIELDS})


def reconcile(vep_token: str, rows: Sequence[LoadedDetail]) -> GrossSnapshot:
    """Flag every row whose loaded quantity differs from the planned one."""
    flagged = [row.model_copy(update={"quantity_mismatch": row.lfimg != row.prqty}) for row in rows]
    total = sum((to_decimal(row.brgew) for row in flagged), Decimal("0"))
    has_mismatch = any(row.quantity_mismatch for row in flagged)
    return GrossSnapshot(
        vep_token=vep_token,
        rows=flagged,
        total_gross_weight=total,
        error=QUANTITY_MISMATCH_MESSAGE if has_mismatch else None,
    )


def has_quantity_mismatch(snapshot: GrossSnapshot) -> bool:
    return any(row.quantity_mismatch for row in snapshot.rows)


class GrossService:
    def __init__(
        self,
        client: Optional[UpstreamClient] = None,
        teg: Optional[TegService] = None,
        credentials: Optional[UpstreamCredentials] = None,
        endpoint_url: Optional[str] = None,
    ):
        self._client = client or upstream_client
        self._teg = teg or TegService(self._client)
        self._credentials = credentials or UpstreamCredentials(
            settings.SAP_USERNAME, settings.SAP_PASSWORD, settings.SAP_CLIENT
        )
        self._endpoint_url = endpoint_url or settings.SAP_LOADED_DETAILS_URL

    async def fetch_loaded_details(self, vep_token: str) -> GrossSnapshot:
        vep_token = (vep_token or "").strip()
        if not vep_token:
            raise WorkflowValidationError("VEP Token is required.")

        escaped = vep_token.replace("'", "''")
        headers = {"Accept": "application/json"}
        if self._credentials.client:
            headers["sap-client"] = self._credentials.client
        response = await self._client.request(
            "GET",
            self._endpoint_url,
            headers=headers,
            auth=self._credentials,
            params={"$filter": f"tokenno eq '{escaped}'"},
        )
        if not response.ok:
            raise UpstreamHttpError("Failed to fetch from SAP", status_code=response.status, body=response.text)

        data = response.json_or_none()
        if not isinstance(data, dict):
            raise ParseError("Failed to parse response JSON", raw_text=response.text)

        results = dig(data, ("d", "results")) or []
        if not results:
            raise EntityNotFoundException("VEP token", vep_token, message=NO_DATA_MESSAGE)

        rows = [loaded_detail_from_row(row) for row in results]
        snapshot = reconcile(vep_token, rows)
        logger.info(
            "loaded_details_fetched token=%s rows=%s mismatch=%s total_gross=%s",
            vep_token,
            len(rows),
            snapshot.error is not None,
            snapshot.total_gross_weight,
        )
        return snapshot

    async def complete(
        self,
        snapshot: GrossSnapshot,
        additional_materials: Sequence[AdditionalMaterial] = (),
    ) -> None:
        """
        Sends the loading update and, when given, the additional materials.

        The loading update only declares completion on its own when there are
        no additional materials; otherwise the materials call closes the load.
        """
        if has_quantity_mismatch(snapshot):
            raise WorkflowValidationError(QUANTITY_MISMATCH_MESSAGE)

        auth_token = await self._teg.authenticate()
        is_completed = not additional_materials
        await self._teg.send_loading_update(
            auth_token, build_loading_update(snapshot.vep_token, snapshot.rows, is_completed)
        )
        if additional_materials:
            await self._teg.send_additional_materials(
                auth_token, build_additional_materials(snapshot.vep_token, additional_materials)
            )
        logger.info(
            "teg_update_completed token=%s rows=%s additional_materials=%s",
            snapshot.vep_token,
            len(snapshot.rows),
            len(additional_materials),
        )
