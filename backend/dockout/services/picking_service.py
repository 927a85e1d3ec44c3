"""
Picking Orchestrator

Sends a picking payload for one delivery order to the SAP batch-update service
and decides whether the order counts as picked. SAP reports the outcome in a
rescode or, for several benign repeats, only in a free-text message, so the
decision walks ordered extraction paths and a list of known success phrases.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from dockout.config import settings
from dockout.core.exceptions import DockoutException
from dockout.schemas.workflow import GroupStatus
from dockout.services.session_broker import SessionBroker
from dockout.upstream.http import UpstreamCredentials, UpstreamResponse, upstream_client
from dockout.utils.extraction import Path, first_present, sap_error_reason

logger = logging.getLogger(__name__)

RAW_TEXT_KEY = "__raw"
BODY_PREVIEW_CHARS = 200

RESCODE_PATHS: Tuple[Path, ...] = (
    ("rescode",),
    ("d", "rescode"),
)

MESSAGE_PATHS: Tuple[Path, ...] = (
    ("message",),
    ("d", "message"),
    ("d", "Message"),
    (RAW_TEXT_KEY,),
)

PICKED_RESCODES = frozenset({"s", "c"})

# matched case-insensitively as substrings of the SAP message
PICKING_SUCCESS_PHRASES: Tuple[str, ...] = (
    "do already has an existing to",
    "already has an existing to",
    "do already has",
    "success",
    "picked",
    "already exists",
)


@dataclass
class PickingResult:
    status: GroupStatus
    message: str
    rescode: str = ""
    http_status: Optional[int] = None
    response: Dict[str, Any] = field(default_factory=dict)

    @property
    def picked(self) -> bool:
        return self.status == GroupStatus.PICKED


def parse_picking_body(text: str) -> Dict[str, Any]:
    """JSON body when it parses to an object, otherwise the raw text under ``__raw``."""
    try:
        parsed = json.loads(text) if text else None
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    return {RAW_TEXT_KEY: text or ""}


def matches_success_phrase(message: str) -> bool:
    lowered = message.lower()
    return any(phrase in lowered for phrase in PICKING_SUCCESS_PHRASES)


def picking_http_error(status: int, text: str) -> str:
    """SAP's own reason for a rejected call, else the status with a preview of the body."""
    reason = sap_error_reason(text)
    if reason:
        return reason
    preview = " ".join((text or "").split())[:BODY_PREVIEW_CHARS]
    message = f"SAP picking failed with HTTP status {status}"
    return f"{message}: {preview}" if preview else message


def classify_picking(response: UpstreamResponse) -> PickingResult:
    body = parse_picking_body(response.text)
    if not response.ok:
        # success phrases in an error body (e.g. "already exists") never count as picked
        return PickingResult(
            status=GroupStatus.ERROR,
            message=picking_http_error(response.status, response.text),
            rescode=str(first_present(body, RESCODE_PATHS) or ""),
            http_status=response.status,
            response=body,
        )

    rescode = str(first_present(body, RESCODE_PATHS) or "")
    message = first_present(body, MESSAGE_PATHS)
    message = str(message) if message is not None else ""

    if rescode.strip().lower() in PICKED_RESCODES or matches_success_phrase(message):
        return PickingResult(
            status=GroupStatus.PICKED,
            message=message or "Picking request sent successfully.",
            rescode=rescode,
            http_status=response.status,
            response=body,
        )

    return PickingResult(
        status=GroupStatus.ERROR,
        message=message or f"Response status {response.status}",
        rescode=rescode,
        http_status=response.status,
        response=body,
    )


class PickingService:
    def __init__(
        self,
        broker: Optional[SessionBroker] = None,
        credentials: Optional[UpstreamCredentials] = None,
        endpoint_url: Optional[str] = None,
    ):
        self._broker = broker or SessionBroker(upstream_client)
        self._credentials = credentials or UpstreamCredentials(
            settings.SAP_USERNAME, settings.SAP_PASSWORD, settings.SAP_CLIENT
        )
        self._endpoint_url = endpoint_url or settings.SAP_TOKEN_DETAILS_URL

    async def confirm_picking(self, do_no: str, picking_payload: Dict[str, Any]) -> PickingResult:
        logger.debug("picking_payload do_no=%s payload=%s", do_no, picking_payload)
        try:
            response = await self._broker.post_with_session(
                self._endpoint_url, self._credentials, picking_payload, handshake_method="GET"
            )
        except DockoutException as exc:
            logger.warning("picking_failed do_no=%s code=%s message=%s", do_no, exc.code, exc.message)
            return PickingResult(
                status=GroupStatus.ERROR,
                message=exc.message,
                http_status=getattr(exc, "status_code", None),
            )

        result = classify_picking(response)
        logger.info(
            "picking_classified do_no=%s status=%s http_status=%s rescode=%s",
            do_no,
            result.status.value,
            response.status,
            result.rescode or "-",
        )
        return result
