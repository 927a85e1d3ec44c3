"""
Workflow Router — Thin Controller (SRP / DIP)

One endpoint per operator action of the dock-out screens. All state lives in
the WorkflowCoordinator; this module only maps HTTP onto its operations.
"""
from fastapi import APIRouter, Depends

from dockout.dependencies import get_workflow_coordinator
from dockout.schemas.workflow import (
    BatchActionResponse,
    DeliveryOrderGroup,
    GroupActionResult,
    GrossCompleteRequest,
    ItemUpdateRequest,
    MaterialValidation,
    WorkflowRunView,
    WorkflowStartRequest,
)
from dockout.services.workflow_service import WorkflowCoordinator


router = APIRouter(prefix="/workflows", tags=["Workflow"])


@router.post("", response_model=WorkflowRunView, status_code=201)
async def start_workflow(
    body: WorkflowStartRequest,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return await coordinator.start(body.vep_token)


@router.get("/{run_id}", response_model=WorkflowRunView)
def get_workflow(run_id: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return coordinator.view(run_id)


@router.post("/{run_id}/load", response_model=WorkflowRunView)
async def load_token(
    run_id: str,
    body: WorkflowStartRequest,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return await coordinator.load(run_id, body.vep_token)


@router.post("/{run_id}/reset", response_model=WorkflowRunView)
def reset_workflow(run_id: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return coordinator.reset(run_id)


@router.post("/{run_id}/advance", response_model=WorkflowRunView)
def advance_workflow(run_id: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return coordinator.advance(run_id)


# ── Transfer stage ────────────────────────────────────────────────────────────

@router.post("/{run_id}/groups/{do_no}/edit", response_model=DeliveryOrderGroup)
def toggle_edit(run_id: str, do_no: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return coordinator.toggle_edit(run_id, do_no)


@router.patch("/{run_id}/groups/{do_no}/items/{item_id}", response_model=DeliveryOrderGroup)
def update_item(
    run_id: str,
    do_no: str,
    item_id: str,
    body: ItemUpdateRequest,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return coordinator.update_item(run_id, do_no, item_id, body.field, body.value)


@router.post("/{run_id}/groups/{do_no}/items/{item_id}/duplicate", response_model=DeliveryOrderGroup)
def duplicate_item(
    run_id: str,
    do_no: str,
    item_id: str,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return coordinator.duplicate_item(run_id, do_no, item_id)


@router.delete("/{run_id}/groups/{do_no}/items/{item_id}", response_model=DeliveryOrderGroup)
def delete_item(
    run_id: str,
    do_no: str,
    item_id: str,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return coordinator.delete_item(run_id, do_no, item_id)


@router.get("/{run_id}/groups/{do_no}/validation", response_model=MaterialValidation)
def group_validation(run_id: str, do_no: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return coordinator.validation(run_id, do_no)


@router.post("/{run_id}/groups/{do_no}/transfer", response_model=GroupActionResult)
async def transfer_group(
    run_id: str,
    do_no: str,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return await coordinator.transfer(run_id, do_no)


@router.post("/{run_id}/transfer-all", response_model=BatchActionResponse)
async def transfer_all(run_id: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return await coordinator.transfer_all(run_id)


# ── Picking stage ─────────────────────────────────────────────────────────────

@router.post("/{run_id}/groups/{do_no}/pick", response_model=GroupActionResult)
async def pick_group(
    run_id: str,
    do_no: str,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return await coordinator.pick(run_id, do_no)


@router.post("/{run_id}/pick-all", response_model=BatchActionResponse)
async def pick_all(run_id: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return await coordinator.pick_all(run_id)


# ── Gross stage ───────────────────────────────────────────────────────────────

@router.post("/{run_id}/gross/fetch", response_model=WorkflowRunView)
async def fetch_gross(run_id: str, coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator)):
    return await coordinator.fetch_gross(run_id)


@router.post("/{run_id}/gross/complete", response_model=WorkflowRunView)
async def complete_gross(
    run_id: str,
    body: GrossCompleteRequest,
    coordinator: WorkflowCoordinator = Depends(get_workflow_coordinator),
):
    return await coordinator.complete_gross(run_id, body.additional_materials)
