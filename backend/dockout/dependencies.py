"""
Shared FastAPI dependencies.

The upstream client and the workflow coordinator are process-wide singletons;
tests replace them through ``app.dependency_overrides``.
"""
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from dockout.database import SessionLocal
from dockout.services.gross_service import GrossService
from dockout.services.picking_log_service import PickingLogRecorder
from dockout.services.picking_service import PickingService
from dockout.services.session_broker import SessionBroker
from dockout.services.stock_transfer_service import StockTransferService
from dockout.services.teg_service import TegService
from dockout.services.token_service import TokenService
from dockout.services.workflow_service import WorkflowCoordinator
from dockout.upstream.http import UpstreamClient, upstream_client


def build_coordinator(
    client: UpstreamClient,
    db_session_factory: Optional[Callable[[], Session]] = SessionLocal,
) -> WorkflowCoordinator:
    broker = SessionBroker(client)
    return WorkflowCoordinator(
        token_service=TokenService(client),
        transfer_service=StockTransferService(broker),
        picking_service=PickingService(broker),
        gross_service=GrossService(client, TegService(client)),
        recorder=PickingLogRecorder(db_session_factory) if db_session_factory else None,
    )


_coordinator: Optional[WorkflowCoordinator] = None


def get_upstream_client() -> UpstreamClient:
    return upstream_client


def get_workflow_coordinator() -> WorkflowCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator(upstream_client)
    return _coordinator


def get_session_broker(client: UpstreamClient = Depends(get_upstream_client)) -> SessionBroker:
    return SessionBroker(client)


def get_token_service(client: UpstreamClient = Depends(get_upstream_client)) -> TokenService:
    return TokenService(client)


def get_stock_transfer_service(broker: SessionBroker = Depends(get_session_broker)) -> StockTransferService:
    return StockTransferService(broker)


def get_picking_service(broker: SessionBroker = Depends(get_session_broker)) -> PickingService:
    return PickingService(broker)
