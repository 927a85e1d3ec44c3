"""
Workflow Coordinator

Holds the in-memory state of each dock-out run and drives it through
loading → transfer → picking → gross. Runs are never persisted; a process
restart loses them and the operator starts again from the VEP token.

Every group mutation produces a new group object that replaces the old one
(keyed by DO number) in a freshly built list, so the outcome of one
concurrent call can never overwrite another group's state.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from fastapi.concurrency import run_in_threadpool

from dockout.core.exceptions import (
    DockoutException,
    EntityNotFoundException,
    InvalidTransitionError,
    WorkflowValidationError,
)
from dockout.schemas.workflow import (
    AdditionalMaterial,
    BatchActionResponse,
    DeliveryOrderGroup,
    DestSloc,
    GroupActionResult,
    GroupStatus,
    GrossSnapshot,
    MaterialValidation,
    StorageType,
    ValidationResult,
    ValidationStatus,
    WorkflowRunView,
    WorkflowStage,
)
from dockout.services.gross_service import GrossService, has_quantity_mismatch
from dockout.services.lifecycle import (
    TransitionEvent,
    picking_transition,
    transfer_transition,
)
from dockout.services.payload_builder import build_picking_payload_from_items
from dockout.services.picking_log_service import PickingLogRecorder
from dockout.services.picking_service import PickingResult, PickingService
from dockout.services.stock_transfer_service import (
    StockTransferService,
    TransferResult,
    validate_material_totals,
)
from dockout.services.token_service import TokenService
from dockout.utils.numbers import to_decimal

logger = logging.getLogger(__name__)

NO_PENDING_TRANSFERS = "No pending ODBs to transfer."
NO_PENDING_PICKING = "No transferred ODBs to pick."

TRANSFER_EVENTS = {
    ValidationStatus.SUCCESS: TransitionEvent.TRANSFER_SUCCEEDED,
    ValidationStatus.WARNING: TransitionEvent.TRANSFER_WARNED,
    ValidationStatus.ERROR: TransitionEvent.TRANSFER_FAILED,
}

STAGE_ORDER: Tuple[WorkflowStage, ...] = (
    WorkflowStage.LOADING,
    WorkflowStage.TRANSFER,
    WorkflowStage.PICKING,
    WorkflowStage.GROSS,
)

# statuses every group must reach before the run may leave the stage
ADVANCE_REQUIREMENTS = {
    WorkflowStage.TRANSFER: frozenset({GroupStatus.TRANSFERRED, GroupStatus.COMPLETED}),
    WorkflowStage.PICKING: frozenset({GroupStatus.PICKED, GroupStatus.COMPLETED}),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowRun:
    run_id: str
    vep_token: Optional[str] = None
    stage: WorkflowStage = WorkflowStage.LOADING
    groups: List[DeliveryOrderGroup] = field(default_factory=list)
    gross: Optional[GrossSnapshot] = None
    # bumped on every load and reset; in-flight calls compare it before applying results
    generation: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def touch(self) -> None:
        self.updated_at = _now()


def can_advance(run: WorkflowRun) -> bool:
    required = ADVANCE_REQUIREMENTS.get(run.stage)
    if required is None:
        return False
    return bool(run.groups) and all(g.status in required for g in run.groups)


def view_of(run: WorkflowRun) -> WorkflowRunView:
    return WorkflowRunView(
        run_id=run.run_id,
        vep_token=run.vep_token,
        stage=run.stage,
        groups=list(run.groups),
        gross=run.gross,
        can_advance=can_advance(run),
        created_at=run.created_at,
        updated_at=run.updated_at,
    )


def action_result(group: DeliveryOrderGroup) -> GroupActionResult:
    return GroupActionResult(do_no=group.do_no, status=group.status, validation=group.validation)


def is_transfer_candidate(group: DeliveryOrderGroup) -> bool:
    """Pending groups and groups re-opened for editing, unless busy or already done."""
    if group.status in (GroupStatus.LOADING, GroupStatus.COMPLETED):
        return False
    return group.status in (GroupStatus.PENDING, GroupStatus.ERROR) or group.is_editing


def coerce_item_value(field_name: str, value: Any) -> Any:
    if field_name == "actual_quantity":
        return to_decimal(value)
    if field_name == "actual_batch":
        return "" if value is None else str(value).strip()
    try:
        if field_name == "storage_type":
            return StorageType(value)
        if field_name == "dest_sloc":
            return DestSloc(value)
    except ValueError:
        raise WorkflowValidationError(f"Invalid value '{value}' for {field_name}.") from None
    raise WorkflowValidationError(f"Field '{field_name}' cannot be edited.")


class WorkflowCoordinator:
    def __init__(
        self,
        token_service: Optional[TokenService] = None,
        transfer_service: Optional[StockTransferService] = None,
        picking_service: Optional[PickingService] = None,
        gross_service: Optional[GrossService] = None,
        recorder: Optional[PickingLogRecorder] = None,
    ):
        self._token = token_service or TokenService()
        self._transfer = transfer_service or StockTransferService()
        self._picking = picking_service or PickingService()
        self._gross = gross_service or GrossService()
        self._recorder = recorder
        self._runs: Dict[str, WorkflowRun] = {}

    # ── Registry ─────────────────────────────────────────────────────────────

    def get_run(self, run_id: str) -> WorkflowRun:
        run = self._runs.get(run_id)
        if run is None:
            raise EntityNotFoundException("Workflow run", run_id)
        return run

    def view(self, run_id: str) -> WorkflowRunView:
        return view_of(self.get_run(run_id))

    async def _load_into(self, run: WorkflowRun, vep_token: str) -> None:
        token = (vep_token or "").strip()
        if not token:
            raise WorkflowValidationError("VEP Token is required.")
        groups = await self._token.load_groups(token)
        run.vep_token = token
        run.groups = groups
        run.generation += 1
        run.gross = None
        run.stage = WorkflowStage.TRANSFER
        run.touch()
        logger.info("workflow_loaded run_id=%s token=%s groups=%s", run.run_id, token, len(groups))

    async def start(self, vep_token: str) -> WorkflowRunView:
        """Create a run and load a VEP token into it; nothing is registered if loading fails."""
        run = WorkflowRun(run_id=str(uuid4()))
        await self._load_into(run, vep_token)
        self._runs[run.run_id] = run
        return view_of(run)

    async def load(self, run_id: str, vep_token: str) -> WorkflowRunView:
        """Load a new VEP token into a run that was reset."""
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.LOADING)
        await self._load_into(run, vep_token)
        return view_of(run)

    def reset(self, run_id: str) -> WorkflowRunView:
        run = self.get_run(run_id)
        run.vep_token = None
        run.stage = WorkflowStage.LOADING
        run.groups = []
        run.generation += 1
        run.gross = None
        run.touch()
        logger.info("workflow_reset run_id=%s", run_id)
        return view_of(run)

    # ── Group helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _require_stage(run: WorkflowRun, stage: WorkflowStage) -> None:
        if run.stage != stage:
            raise InvalidTransitionError(
                f"Run is in the '{run.stage.value}' stage; this action belongs to '{stage.value}'."
            )

    @staticmethod
    def _group(run: WorkflowRun, do_no: str) -> DeliveryOrderGroup:
        for group in run.groups:
            if group.do_no == do_no:
                return group
        raise EntityNotFoundException("Delivery order", do_no)

    @staticmethod
    def _replace(run: WorkflowRun, updated: DeliveryOrderGroup) -> DeliveryOrderGroup:
        run.groups = [updated if g.do_no == updated.do_no else g for g in run.groups]
        run.touch()
        return updated

    def _editable_group(self, run_id: str, do_no: str) -> Tuple[WorkflowRun, DeliveryOrderGroup]:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.TRANSFER)
        group = self._group(run, do_no)
        if group.status == GroupStatus.LOADING:
            raise InvalidTransitionError(f"Delivery order {do_no} cannot be edited while it is being transferred.")
        if not group.is_editing:
            raise WorkflowValidationError(f"Delivery order {do_no} is not in edit mode.")
        return run, group

    @staticmethod
    def _awaiting(run: WorkflowRun, generation: int, do_no: str) -> bool:
        """True while the group a call was started for is still loading in the same run generation."""
        if run.generation != generation:
            return False
        return any(g.do_no == do_no and g.status == GroupStatus.LOADING for g in run.groups)

    @staticmethod
    def _item_index(group: DeliveryOrderGroup, item_id: str) -> int:
        for index, item in enumerate(group.items):
            if item.id == item_id:
                return index
        raise EntityNotFoundException("Item", item_id)

    # ── Transfer stage: editing ──────────────────────────────────────────────

    def toggle_edit(self, run_id: str, do_no: str) -> DeliveryOrderGroup:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.TRANSFER)
        group = self._group(run, do_no)
        if group.status in (GroupStatus.LOADING, GroupStatus.COMPLETED):
            raise InvalidTransitionError(f"Delivery order {do_no} cannot be edited while {group.status.value}.")
        return self._replace(
            run,
            group.model_copy(update={"is_editing": not group.is_editing, "validation": ValidationResult()}),
        )

    def update_item(self, run_id: str, do_no: str, item_id: str, field_name: str, value: Any) -> DeliveryOrderGroup:
        run, group = self._editable_group(run_id, do_no)
        index = self._item_index(group, item_id)
        items = list(group.items)
        items[index] = items[index].model_copy(update={field_name: coerce_item_value(field_name, value)})
        return self._replace(run, group.model_copy(update={"items": items}))

    def duplicate_item(self, run_id: str, do_no: str, item_id: str) -> DeliveryOrderGroup:
        run, group = self._editable_group(run_id, do_no)
        index = self._item_index(group, item_id)
        source = group.items[index]
        duplicate = source.model_copy(
            update={
                "id": str(uuid4()),
                "is_new": True,
                "qty": to_decimal(0),
                "actual_quantity": to_decimal(0),
                "actual_batch": "",
            }
        )
        items = list(group.items)
        items.insert(index + 1, duplicate)
        return self._replace(run, group.model_copy(update={"items": items}))

    def delete_item(self, run_id: str, do_no: str, item_id: str) -> DeliveryOrderGroup:
        run, group = self._editable_group(run_id, do_no)
        self._item_index(group, item_id)
        if len(group.items) == 1:
            raise WorkflowValidationError(f"Delivery order {do_no} must keep at least one item.")
        items = [item for item in group.items if item.id != item_id]
        return self._replace(run, group.model_copy(update={"items": items}))

    def validation(self, run_id: str, do_no: str) -> MaterialValidation:
        run = self.get_run(run_id)
        return validate_material_totals(self._group(run, do_no).items)

    # ── Transfer stage: posting ──────────────────────────────────────────────

    def _begin_transfer(self, run: WorkflowRun, group: DeliveryOrderGroup) -> Optional[DeliveryOrderGroup]:
        """Validate and mark a group loading; returns None when validation failed."""
        if group.status == GroupStatus.LOADING:
            raise InvalidTransitionError(f"Delivery order {group.do_no} is already being processed.")
        if not is_transfer_candidate(group):
            raise InvalidTransitionError(
                f"Delivery order {group.do_no} is {group.status.value} and cannot be transferred."
            )
        checked = validate_material_totals(group.items)
        if not checked.is_valid:
            self._replace(
                run,
                group.model_copy(
                    update={"validation": ValidationResult(status=ValidationStatus.ERROR, message=checked.message)}
                ),
            )
            return None
        started = group.model_copy(
            update={"status": transfer_transition(group.status, TransitionEvent.TRANSFER_STARTED)}
        )
        return self._replace(run, started)

    async def _call_transfer(self, group: DeliveryOrderGroup) -> TransferResult:
        try:
            return await self._transfer.transfer(group.do_no, group.items)
        except Exception as exc:  # noqa: BLE001
            logger.exception("stock_transfer_unexpected_error do_no=%s", group.do_no)
            return TransferResult(status=ValidationStatus.ERROR, message=f"Stock transfer failed: {exc}")

    def _finish_transfer(
        self, run: WorkflowRun, generation: int, started: DeliveryOrderGroup, result: TransferResult
    ) -> DeliveryOrderGroup:
        """
        Apply a transfer outcome to the group it was started for. Items stay the
        ones that were posted unless SAP returned its own lines. Outcomes for a
        run that was reset or reloaded meanwhile are returned but not applied.
        """
        updates: Dict[str, Any] = {
            "status": transfer_transition(started.status, TRANSFER_EVENTS[result.status]),
            "validation": ValidationResult(status=result.status, message=result.message),
        }
        if result.proceeds:
            updates.update(
                {
                    "is_editing": False,
                    "items": result.items or started.items,
                    "picking_payload": result.picking_payload,
                    "sap_response": result.sap_response,
                }
            )
        finished = started.model_copy(update=updates)
        if not self._awaiting(run, generation, started.do_no):
            logger.warning(
                "transfer_outcome_discarded run_id=%s do_no=%s status=%s",
                run.run_id,
                started.do_no,
                finished.status.value,
            )
            return finished
        self._replace(run, finished)
        logger.info(
            "group_transfer_finished run_id=%s do_no=%s status=%s", run.run_id, started.do_no, finished.status.value
        )
        return finished

    async def transfer(self, run_id: str, do_no: str) -> GroupActionResult:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.TRANSFER)
        group = self._group(run, do_no)
        started = self._begin_transfer(run, group)
        if started is None:
            raise WorkflowValidationError(self._group(run, do_no).validation.message or "Validation failed.")
        generation, vep_token = run.generation, run.vep_token or ""

        result = await self._call_transfer(started)
        finished = self._finish_transfer(run, generation, started, result)
        if result.picking_payload is not None:
            await self._record_generated(vep_token, do_no, result.picking_payload)
        return action_result(finished)

    async def transfer_all(self, run_id: str) -> BatchActionResponse:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.TRANSFER)
        candidates = [g for g in run.groups if is_transfer_candidate(g)]
        if not candidates:
            return BatchActionResponse(run=view_of(run), message=NO_PENDING_TRANSFERS)

        started: List[DeliveryOrderGroup] = []
        skipped: List[GroupActionResult] = []
        for group in candidates:
            begun = self._begin_transfer(run, group)
            if begun is None:
                skipped.append(action_result(self._group(run, group.do_no)))
            else:
                started.append(begun)
        generation, vep_token = run.generation, run.vep_token or ""

        outcomes = await asyncio.gather(*(self._call_transfer(g) for g in started))
        results = [self._finish_transfer(run, generation, g, r) for g, r in zip(started, outcomes)]
        for group, outcome in zip(started, outcomes):
            if outcome.picking_payload is not None:
                await self._record_generated(vep_token, group.do_no, outcome.picking_payload)
        logger.info(
            "transfer_all_finished run_id=%s attempted=%s skipped=%s",
            run.run_id,
            len(started),
            len(skipped),
        )
        return BatchActionResponse(
            run=view_of(run),
            results=[action_result(g) for g in results],
            skipped=skipped,
            message=None if started else NO_PENDING_TRANSFERS,
        )

    # ── Picking stage ────────────────────────────────────────────────────────

    def _begin_picking(
        self, run: WorkflowRun, group: DeliveryOrderGroup
    ) -> Tuple[DeliveryOrderGroup, Dict[str, Any], bool]:
        """Mark a group loading and return it with its payload, and whether that payload is new."""
        status = picking_transition(group.status, TransitionEvent.PICKING_STARTED)
        payload = group.picking_payload
        generated = payload is None
        if generated:
            payload = build_picking_payload_from_items(group.do_no, group.items)
            if not payload["tokenno"]:
                payload["tokenno"] = run.vep_token or ""
        started = self._replace(run, group.model_copy(update={"status": status, "picking_payload": payload}))
        return started, payload, generated

    async def _call_picking(self, do_no: str, payload: Dict[str, Any]) -> PickingResult:
        try:
            return await self._picking.confirm_picking(do_no, payload)
        except Exception as exc:  # noqa: BLE001
            logger.exception("picking_unexpected_error do_no=%s", do_no)
            return PickingResult(status=GroupStatus.ERROR, message=f"Picking failed: {exc}")

    def _finish_picking(
        self, run: WorkflowRun, generation: int, started: DeliveryOrderGroup, result: PickingResult
    ) -> DeliveryOrderGroup:
        event = TransitionEvent.PICKING_SUCCEEDED if result.picked else TransitionEvent.PICKING_FAILED
        finished = started.model_copy(
            update={
                "status": picking_transition(started.status, event),
                "validation": ValidationResult(
                    status=ValidationStatus.SUCCESS if result.picked else ValidationStatus.ERROR,
                    message=result.message,
                ),
            }
        )
        if not self._awaiting(run, generation, started.do_no):
            logger.warning(
                "picking_outcome_discarded run_id=%s do_no=%s status=%s",
                run.run_id,
                started.do_no,
                finished.status.value,
            )
            return finished
        self._replace(run, finished)
        logger.info(
            "group_picking_finished run_id=%s do_no=%s status=%s", run.run_id, started.do_no, finished.status.value
        )
        return finished

    async def pick(self, run_id: str, do_no: str) -> GroupActionResult:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.PICKING)
        started, payload, generated = self._begin_picking(run, self._group(run, do_no))
        generation, vep_token = run.generation, run.vep_token or ""
        if generated:
            await self._record_generated(vep_token, do_no, payload)

        result = await self._call_picking(do_no, payload)
        finished = self._finish_picking(run, generation, started, result)
        await self._record_outcome(vep_token, do_no, payload, result)
        return action_result(finished)

    async def pick_all(self, run_id: str) -> BatchActionResponse:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.PICKING)
        candidates = [g for g in run.groups if g.status == GroupStatus.TRANSFERRED]
        if not candidates:
            return BatchActionResponse(run=view_of(run), message=NO_PENDING_PICKING)

        started = [self._begin_picking(run, g) for g in candidates]
        generation, vep_token = run.generation, run.vep_token or ""
        for group, payload, generated in started:
            if generated:
                await self._record_generated(vep_token, group.do_no, payload)

        outcomes = await asyncio.gather(*(self._call_picking(g.do_no, p) for g, p, _ in started))
        results = [self._finish_picking(run, generation, g, r) for (g, _, _), r in zip(started, outcomes)]
        for (group, payload, _), outcome in zip(started, outcomes):
            await self._record_outcome(vep_token, group.do_no, payload, outcome)
        return BatchActionResponse(run=view_of(run), results=[action_result(g) for g in results])

    # ── Stage progression ────────────────────────────────────────────────────

    def advance(self, run_id: str) -> WorkflowRunView:
        run = self.get_run(run_id)
        if not can_advance(run):
            pending = [g.do_no for g in run.groups if g.status not in ADVANCE_REQUIREMENTS.get(run.stage, ())]
            raise InvalidTransitionError(
                f"Cannot leave the '{run.stage.value}' stage yet.",
                details={"pending": pending},
            )
        run.stage = STAGE_ORDER[STAGE_ORDER.index(run.stage) + 1]
        run.touch()
        logger.info("workflow_advanced run_id=%s stage=%s", run.run_id, run.stage.value)
        return view_of(run)

    # ── Gross stage ──────────────────────────────────────────────────────────

    async def fetch_gross(self, run_id: str) -> WorkflowRunView:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.GROSS)
        run.gross = await self._gross.fetch_loaded_details(run.vep_token or "")
        run.touch()
        return view_of(run)

    async def complete_gross(
        self, run_id: str, additional_materials: Sequence[AdditionalMaterial] = ()
    ) -> WorkflowRunView:
        run = self.get_run(run_id)
        self._require_stage(run, WorkflowStage.GROSS)
        snapshot = run.gross
        if snapshot is None:
            raise WorkflowValidationError("Fetch the loaded details before completing the load.")
        if has_quantity_mismatch(snapshot):
            raise WorkflowValidationError(snapshot.error or "Loaded quantities do not match.")

        attempt = {
            "is_completed": not additional_materials,
            "additional_materials": [m.model_dump(mode="json") for m in additional_materials],
        }
        try:
            await self._gross.complete(snapshot, additional_materials)
        except DockoutException as exc:
            run.gross = snapshot.model_copy(update={"error": exc.message, "last_attempt": attempt})
            run.touch()
            logger.warning("gross_complete_failed run_id=%s message=%s", run.run_id, exc.message)
            raise

        logger.info("workflow_completed run_id=%s token=%s", run.run_id, run.vep_token)
        return self.reset(run_id)

    # ── Picking log ──────────────────────────────────────────────────────────
    # Writes are synchronous SQLAlchemy sessions, so they run in the threadpool.

    async def _record_generated(self, vep_token: str, do_no: str, payload: Dict[str, Any]) -> None:
        if self._recorder is None:
            return
        try:
            await run_in_threadpool(self._recorder.generated, vep_token, do_no, payload)
        except Exception:  # noqa: BLE001
            logger.exception("picking_log_write_failed do_no=%s", do_no)

    async def _record_outcome(
        self, vep_token: str, do_no: str, payload: Dict[str, Any], result: PickingResult
    ) -> None:
        if self._recorder is None:
            return
        try:
            await run_in_threadpool(self._recorder.outcome, vep_token, do_no, payload, result)
        except Exception:  # noqa: BLE001
            logger.exception("picking_log_write_failed do_no=%s", do_no)
