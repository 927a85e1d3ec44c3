import asyncio
import threading
from decimal import Decimal

import pytest

from dockout.core.exceptions import (
    EntityNotFoundException,
    InvalidTransitionError,
    UpstreamHttpError,
    WorkflowValidationError,
)
from dockout.models.picking_log import PickingLog
from dockout.schemas.workflow import AdditionalMaterial, GroupStatus, ValidationStatus, WorkflowStage
from dockout.services.workflow_service import NO_PENDING_PICKING, NO_PENDING_TRANSFERS

from fakes import (
    csrf_response,
    given_picking,
    given_teg,
    given_token,
    given_transfers,
    json_response,
    loaded_detail_row,
    stock_move_response,
    text_response,
)


def run(coro):
    return asyncio.run(coro)


def started(coordinator, upstream):
    given_token(upstream)
    return run(coordinator.start("VEP100"))


def group(view, do_no):
    return next(g for g in view.groups if g.do_no == do_no)


def to_picking(coordinator, upstream, messages=None):
    view = started(coordinator, upstream)
    given_transfers(upstream, messages or {"8001": "Transfer posting Completed", "8002": "Transfer posting Completed"})
    run(coordinator.transfer_all(view.run_id))
    return coordinator.advance(view.run_id)


# ── Loading ───────────────────────────────────────────────────────────────────

def test_start_loads_groups_into_transfer_stage(coordinator, upstream):
    view = started(coordinator, upstream)
    assert view.stage == WorkflowStage.TRANSFER
    assert view.vep_token == "VEP100"
    assert [g.do_no for g in view.groups] == ["8001", "8002"]
    assert view.can_advance is False
    assert coordinator.view(view.run_id).run_id == view.run_id


def test_failed_load_registers_no_run(coordinator, upstream):
    given_token(upstream, rows=[])
    with pytest.raises(EntityNotFoundException):
        run(coordinator.start("VEP100"))
    assert coordinator._runs == {}


def test_blank_token_is_rejected(coordinator):
    with pytest.raises(WorkflowValidationError):
        run(coordinator.start("  "))


def test_reset_then_load_new_token(coordinator, upstream):
    view = started(coordinator, upstream)
    reset = coordinator.reset(view.run_id)
    assert reset.stage == WorkflowStage.LOADING
    assert reset.groups == []

    reloaded = run(coordinator.load(view.run_id, "VEP100"))
    assert reloaded.stage == WorkflowStage.TRANSFER
    assert len(reloaded.groups) == 2


def test_load_requires_loading_stage(coordinator, upstream):
    view = started(coordinator, upstream)
    with pytest.raises(InvalidTransitionError):
        run(coordinator.load(view.run_id, "VEP100"))


def test_unknown_run(coordinator):
    with pytest.raises(EntityNotFoundException):
        coordinator.view("missing")


# ── Editing ───────────────────────────────────────────────────────────────────

def test_edits_require_edit_mode(coordinator, upstream):
    view = started(coordinator, upstream)
    item_id = group(view, "8001").items[0].id
    with pytest.raises(WorkflowValidationError):
        coordinator.update_item(view.run_id, "8001", item_id, "actual_quantity", "9")


def test_update_duplicate_and_delete_items(coordinator, upstream):
    view = started(coordinator, upstream)
    item_id = group(view, "8001").items[0].id

    edited = coordinator.toggle_edit(view.run_id, "8001")
    assert edited.is_editing is True

    updated = coordinator.update_item(view.run_id, "8001", item_id, "actual_quantity", "9")
    assert str(updated.items[0].actual_quantity) == "9"
    updated = coordinator.update_item(view.run_id, "8001", item_id, "dest_sloc", "ZF03")
    assert updated.items[0].dest_sloc.value == "ZF03"

    duplicated = coordinator.duplicate_item(view.run_id, "8001", item_id)
    assert len(duplicated.items) == 2
    copy = duplicated.items[1]
    assert copy.is_new is True
    assert copy.id != item_id
    assert copy.material == "MAT1"
    assert str(copy.actual_quantity) == "0"

    remaining = coordinator.delete_item(view.run_id, "8001", copy.id)
    assert [i.id for i in remaining.items] == [item_id]

    # the other group is untouched
    assert group(coordinator.view(view.run_id), "8002").is_editing is False


def test_last_item_cannot_be_deleted(coordinator, upstream):
    view = started(coordinator, upstream)
    item_id = group(view, "8001").items[0].id
    coordinator.toggle_edit(view.run_id, "8001")
    with pytest.raises(WorkflowValidationError):
        coordinator.delete_item(view.run_id, "8001", item_id)


def test_invalid_enum_value_is_rejected(coordinator, upstream):
    view = started(coordinator, upstream)
    item_id = group(view, "8001").items[0].id
    coordinator.toggle_edit(view.run_id, "8001")
    with pytest.raises(WorkflowValidationError):
        coordinator.update_item(view.run_id, "8001", item_id, "storage_type", "XYZ")


def test_validation_reports_totals(coordinator, upstream):
    view = started(coordinator, upstream)
    item_id = group(view, "8001").items[0].id
    coordinator.toggle_edit(view.run_id, "8001")
    coordinator.update_item(view.run_id, "8001", item_id, "actual_quantity", "12")

    result = coordinator.validation(view.run_id, "8001")

    assert result.is_valid is False
    assert "cannot be greater than actual available quantity (12)" in result.message


# ── Transfer ──────────────────────────────────────────────────────────────────

def test_transfer_success_stores_picking_payload_and_log(coordinator, upstream, db):
    view = started(coordinator, upstream)
    given_transfers(upstream, {"8001": "Transfer posting Completed"})

    result = run(coordinator.transfer(view.run_id, "8001"))

    assert result.status == GroupStatus.TRANSFERRED
    assert result.validation.status == ValidationStatus.SUCCESS
    current = group(coordinator.view(view.run_id), "8001")
    assert current.picking_payload["getloadingsequence"]["results"][0]["obd_no"] == "8001"
    logs = db.query(PickingLog).all()
    assert [(log.do_no, log.status) for log in logs] == [("8001", "generated")]


def test_invalid_group_is_not_sent(coordinator, upstream):
    view = started(coordinator, upstream)
    given_transfers(upstream, {"8001": "Transfer posting Completed"})
    item_id = group(view, "8001").items[0].id
    coordinator.toggle_edit(view.run_id, "8001")
    coordinator.update_item(view.run_id, "8001", item_id, "actual_quantity", "5")

    with pytest.raises(WorkflowValidationError) as exc:
        run(coordinator.transfer(view.run_id, "8001"))

    assert "20% tolerance" in exc.value.message
    current = group(coordinator.view(view.run_id), "8001")
    assert current.status == GroupStatus.PENDING
    assert current.validation.status == ValidationStatus.ERROR
    assert upstream.calls_to("POST", "ZSTOCK_MOVE_SRV") == []


def test_busy_group_cannot_be_transferred(coordinator, upstream):
    view = started(coordinator, upstream)
    live = coordinator.get_run(view.run_id)
    live.groups = [g.model_copy(update={"status": GroupStatus.LOADING}) for g in live.groups]

    with pytest.raises(InvalidTransitionError):
        run(coordinator.transfer(view.run_id, "8001"))
    with pytest.raises(InvalidTransitionError):
        coordinator.toggle_edit(view.run_id, "8001")


def test_transfer_all_isolates_failures(coordinator, upstream):
    view = started(coordinator, upstream)
    given_transfers(upstream, {"8001": "Transfer posting Completed", "8002": RuntimeError("connection reset")})

    response = run(coordinator.transfer_all(view.run_id))

    statuses = {r.do_no: r.status for r in response.results}
    assert statuses == {"8001": GroupStatus.TRANSFERRED, "8002": GroupStatus.ERROR}
    failed = group(response.run, "8002")
    assert failed.validation.message == "Stock transfer failed: connection reset"
    assert response.run.can_advance is False


def test_transfer_all_retries_error_groups(coordinator, upstream):
    view = started(coordinator, upstream)
    messages = {"8001": "Transfer posting Completed", "8002": "Batch locked"}
    given_transfers(upstream, messages)
    run(coordinator.transfer_all(view.run_id))

    messages["8002"] = "Transfer posting Completed"
    response = run(coordinator.transfer_all(view.run_id))

    assert [r.do_no for r in response.results] == ["8002"]
    assert response.run.can_advance is True


def test_transfer_all_skips_invalid_groups(coordinator, upstream):
    view = started(coordinator, upstream)
    given_transfers(upstream, {"8001": "Transfer posting Completed", "8002": "Transfer posting Completed"})
    item_id = group(view, "8002").items[0].id
    coordinator.toggle_edit(view.run_id, "8002")
    coordinator.update_item(view.run_id, "8002", item_id, "actual_quantity", "7")

    response = run(coordinator.transfer_all(view.run_id))

    assert [r.do_no for r in response.results] == ["8001"]
    assert [s.do_no for s in response.skipped] == ["8002"]
    assert response.skipped[0].validation.status == ValidationStatus.ERROR


def test_transfer_all_with_nothing_pending(coordinator, upstream):
    view = started(coordinator, upstream)
    given_transfers(upstream, {"8001": "Transfer posting Completed", "8002": "Transfer posting Completed"})
    run(coordinator.transfer_all(view.run_id))

    response = run(coordinator.transfer_all(view.run_id))

    assert response.message == NO_PENDING_TRANSFERS
    assert response.results == []


# ── In-flight calls ───────────────────────────────────────────────────────────

async def until(predicate):
    for _ in range(200):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was never reached")


def held_transfers(upstream, gate, message="Transfer posting Completed"):
    async def respond(call):
        await gate.wait()
        return stock_move_response(call.json_body["Dono"], message)

    upstream.on("HEAD", "ZSTOCK_MOVE_SRV", csrf_response()).on("POST", "ZSTOCK_MOVE_SRV", respond)


def test_group_cannot_be_edited_while_its_transfer_is_in_flight(coordinator, upstream):
    view = started(coordinator, upstream)
    item_id = group(view, "8001").items[0].id
    coordinator.toggle_edit(view.run_id, "8001")

    async def scenario():
        gate = asyncio.Event()
        held_transfers(upstream, gate, message="Already Transfer posting Completed")
        task = asyncio.create_task(coordinator.transfer(view.run_id, "8001"))
        await until(lambda: upstream.calls_to("POST", "ZSTOCK_MOVE_SRV"))

        assert group(coordinator.view(view.run_id), "8001").status == GroupStatus.LOADING
        with pytest.raises(InvalidTransitionError):
            coordinator.update_item(view.run_id, "8001", item_id, "actual_quantity", "9")
        with pytest.raises(InvalidTransitionError):
            coordinator.duplicate_item(view.run_id, "8001", item_id)
        with pytest.raises(InvalidTransitionError):
            coordinator.delete_item(view.run_id, "8001", item_id)

        gate.set()
        return await task

    result = run(scenario())

    assert result.status == GroupStatus.TRANSFERRED
    posted = upstream.calls_to("POST", "ZSTOCK_MOVE_SRV")[0].json_body["OrderToItem"][0]["Quantity"]
    final = group(coordinator.view(view.run_id), "8001")
    assert posted == "10"
    assert [i.actual_quantity for i in final.items] == [Decimal("10")]
    assert final.is_editing is False


def test_reset_during_transfer_all_discards_outcomes(coordinator, upstream):
    view = started(coordinator, upstream)

    async def scenario():
        gate = asyncio.Event()
        held_transfers(upstream, gate)
        task = asyncio.create_task(coordinator.transfer_all(view.run_id))
        await until(lambda: len(upstream.calls_to("POST", "ZSTOCK_MOVE_SRV")) == 2)
        coordinator.reset(view.run_id)
        gate.set()
        return await task

    response = run(scenario())

    assert {r.do_no: r.status for r in response.results} == {
        "8001": GroupStatus.TRANSFERRED,
        "8002": GroupStatus.TRANSFERRED,
    }
    assert response.run.stage == WorkflowStage.LOADING
    assert response.run.groups == []


def test_transfer_outcome_never_lands_on_a_reloaded_run(coordinator, upstream):
    view = started(coordinator, upstream)

    async def scenario():
        gate = asyncio.Event()
        held_transfers(upstream, gate)
        task = asyncio.create_task(coordinator.transfer(view.run_id, "8001"))
        await until(lambda: upstream.calls_to("POST", "ZSTOCK_MOVE_SRV"))
        coordinator.reset(view.run_id)
        await coordinator.load(view.run_id, "VEP100")
        gate.set()
        return await task

    result = run(scenario())

    assert result.status == GroupStatus.TRANSFERRED
    fresh = group(coordinator.view(view.run_id), "8001")
    assert fresh.status == GroupStatus.PENDING
    assert fresh.picking_payload is None


def test_reset_during_pick_still_logs_the_outcome(coordinator, upstream, db):
    view = to_picking(coordinator, upstream)

    async def scenario():
        gate = asyncio.Event()

        async def respond(call):
            await gate.wait()
            return json_response(201, {"d": {"rescode": "S", "message": "TO created"}})

        upstream.on("GET", "TokenDetailsSet", csrf_response()).on("POST", "TokenDetailsSet", respond)
        task = asyncio.create_task(coordinator.pick(view.run_id, "8001"))
        await until(lambda: upstream.calls_to("POST", "TokenDetailsSet"))
        coordinator.reset(view.run_id)
        gate.set()
        return await task

    result = run(scenario())

    assert result.status == GroupStatus.PICKED
    assert coordinator.view(view.run_id).groups == []
    log = db.query(PickingLog).filter(PickingLog.do_no == "8001").one()
    assert log.status == "picked"
    assert log.vep_token == "VEP100"


# ── Stage progression ─────────────────────────────────────────────────────────

def test_advance_requires_every_group_transferred(coordinator, upstream):
    view = started(coordinator, upstream)
    given_transfers(upstream, {"8001": "Transfer posting Completed"})
    run(coordinator.transfer(view.run_id, "8001"))

    with pytest.raises(InvalidTransitionError) as exc:
        coordinator.advance(view.run_id)
    assert exc.value.details == {"pending": ["8002"]}


def test_stage_actions_are_gated(coordinator, upstream):
    view = started(coordinator, upstream)
    with pytest.raises(InvalidTransitionError):
        run(coordinator.pick(view.run_id, "8001"))
    with pytest.raises(InvalidTransitionError):
        run(coordinator.fetch_gross(view.run_id))


# ── Picking ───────────────────────────────────────────────────────────────────

def test_warning_group_gets_payload_from_its_items(coordinator, upstream, db):
    view = to_picking(
        coordinator,
        upstream,
        {"8001": "Already Transfer posting Completed", "8002": "Transfer posting Completed"},
    )
    assert view.stage == WorkflowStage.PICKING
    assert group(view, "8001").picking_payload is None
    given_picking(upstream, {"8001": "S", "8002": "S"})

    result = run(coordinator.pick(view.run_id, "8001"))

    assert result.status == GroupStatus.PICKED
    sent = upstream.calls_to("POST", "TokenDetailsSet")[0].json_body
    assert sent["tokenno"] == "VEP100"
    entry = sent["getloadingsequence"]["results"][0]
    assert entry["obd_no"] == "8001"
    assert entry["matnr"] == "MAT1"
    assert entry["lfimg"] == "10"
    log = db.query(PickingLog).filter(PickingLog.do_no == "8001").one()
    assert log.status == "picked"
    assert log.rescode == "S"


def test_pick_all_records_each_outcome(coordinator, upstream, db):
    view = to_picking(coordinator, upstream)
    given_picking(upstream, {"8001": "S", "8002": "E"})

    response = run(coordinator.pick_all(view.run_id))

    statuses = {r.do_no: r.status for r in response.results}
    assert statuses == {"8001": GroupStatus.PICKED, "8002": GroupStatus.ERROR}
    assert group(response.run, "8002").validation.message == "rescode E"
    assert response.run.can_advance is False
    logs = {log.do_no: log.status for log in db.query(PickingLog).all()}
    assert logs == {"8001": "picked", "8002": "error"}

    again = run(coordinator.pick_all(view.run_id))
    assert again.message == NO_PENDING_PICKING


class ThreadNotingRecorder:
    def __init__(self):
        self.threads = []

    def generated(self, vep_token, do_no, payload):
        self.threads.append(threading.get_ident())

    def outcome(self, vep_token, do_no, payload, result):
        self.threads.append(threading.get_ident())


def test_picking_log_writes_run_off_the_event_loop_thread(coordinator, upstream):
    view = to_picking(coordinator, upstream)
    recorder = ThreadNotingRecorder()
    coordinator._recorder = recorder
    given_picking(upstream, {"8001": "S", "8002": "E"})

    run(coordinator.pick_all(view.run_id))

    assert len(recorder.threads) == 2
    assert threading.get_ident() not in recorder.threads


def test_errored_pick_can_be_retried(coordinator, upstream):
    view = to_picking(coordinator, upstream)
    outcomes = {"8001": "E", "8002": "S"}
    given_picking(upstream, outcomes)
    run(coordinator.pick_all(view.run_id))

    outcomes["8001"] = "S"
    result = run(coordinator.pick(view.run_id, "8001"))

    assert result.status == GroupStatus.PICKED
    assert coordinator.view(view.run_id).can_advance is True


# ── Gross ─────────────────────────────────────────────────────────────────────

def to_gross(coordinator, upstream):
    view = to_picking(coordinator, upstream)
    given_picking(upstream, {"8001": "S", "8002": "S"})
    run(coordinator.pick_all(view.run_id))
    return coordinator.advance(view.run_id)


def test_complete_gross_resets_run(coordinator, upstream):
    view = to_gross(coordinator, upstream)
    upstream.on(
        "GET",
        "LoadedDetailsSet",
        json_response(200, {"d": {"results": [loaded_detail_row("8001", "10", "10"), loaded_detail_row("8002", "5", "5")]}}),
    )
    given_teg(upstream)

    fetched = run(coordinator.fetch_gross(view.run_id))
    assert fetched.gross.error is None

    done = run(
        coordinator.complete_gross(
            view.run_id, [AdditionalMaterial(material_id="Husk", quantity="3", uom="KG")]
        )
    )

    assert done.stage == WorkflowStage.LOADING
    assert done.groups == []
    assert done.gross is None
    assert len(upstream.calls_to("POST", "additional/material")) == 1


def test_complete_requires_fetched_details(coordinator, upstream):
    view = to_gross(coordinator, upstream)
    with pytest.raises(WorkflowValidationError):
        run(coordinator.complete_gross(view.run_id))


def test_mismatch_blocks_completion(coordinator, upstream):
    view = to_gross(coordinator, upstream)
    upstream.on("GET", "LoadedDetailsSet", json_response(200, {"d": {"results": [loaded_detail_row("8001", "9", "10")]}}))
    given_teg(upstream)
    run(coordinator.fetch_gross(view.run_id))

    with pytest.raises(WorkflowValidationError):
        run(coordinator.complete_gross(view.run_id))
    assert upstream.calls_to("POST", "master/token") == []


def test_failed_completion_keeps_state_for_retry(coordinator, upstream):
    view = to_gross(coordinator, upstream)
    upstream.on("GET", "LoadedDetailsSet", json_response(200, {"d": {"results": [loaded_detail_row("8001", "10", "10")]}}))
    given_teg(upstream, update=text_response(503, "TEG unavailable"))
    run(coordinator.fetch_gross(view.run_id))

    with pytest.raises(UpstreamHttpError):
        run(coordinator.complete_gross(view.run_id))

    current = coordinator.view(view.run_id)
    assert current.stage == WorkflowStage.GROSS
    assert current.gross.error == "TEG unavailable"
    assert current.gross.last_attempt == {"is_completed": True, "additional_materials": []}
