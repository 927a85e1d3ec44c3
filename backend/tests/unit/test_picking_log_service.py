import asyncio
import json

import pytest
from fastapi import HTTPException

from dockout.schemas.picking_log import PickingLogResendRequest
from dockout.schemas.workflow import GroupStatus
from dockout.services.picking_log_service import PickingLogService, stored_results
from dockout.services.picking_service import PickingResult, PickingService
from dockout.services.session_broker import SessionBroker

from fakes import FakeUpstream, csrf_response, json_response


def _payload(do_no, token="VEP100"):
    return {"tokenno": token, "getloadingsequence": {"results": [{"obd_no": do_no, "matnr": "MAT1"}]}}


def test_record_generated_stores_payload_json(db):
    log = PickingLogService(db).record_generated("VEP100", "8001", _payload("8001"))
    assert log.id is not None
    assert log.status == "generated"
    assert json.loads(log.payload_json)["getloadingsequence"]["results"][0]["obd_no"] == "8001"
    assert stored_results(log) == [{"obd_no": "8001", "matnr": "MAT1"}]


def test_list_filters_by_substring_and_status(db):
    service = PickingLogService(db)
    service.record_generated("VEP100", "8001", _payload("8001"))
    service.record_generated("VEP100", "8002", _payload("8002"))
    service.record_generated("VEP200", "9001", _payload("9001", "VEP200"))
    service.record_outcome("VEP100", "8002", _payload("8002"), PickingResult(GroupStatus.PICKED, "ok", "S"))

    assert service.list_logs(vep_token="vep1").total == 2
    assert [r.do_no for r in service.list_logs(do_no="900").items] == ["9001"]
    picked = service.list_logs(status="picked")
    assert [(r.do_no, r.rescode) for r in picked.items] == [("8002", "S")]


def test_list_paginates_newest_first(db):
    service = PickingLogService(db)
    for do_no in ("8001", "8002", "8003"):
        service.record_generated("VEP100", do_no, _payload(do_no))

    page = service.list_logs(page=2, page_size=2)

    assert page.total == 3
    assert [r.do_no for r in page.items] == ["8001"]


def test_outcome_without_prior_log_creates_one(db):
    service = PickingLogService(db)
    log = service.record_outcome("VEP100", "8001", _payload("8001"), PickingResult(GroupStatus.ERROR, "Bin blocked"))
    assert log.status == "error"
    assert log.message == "Bin blocked"
    assert log.rescode is None


def test_missing_log_is_404(db):
    with pytest.raises(HTTPException) as exc:
        PickingLogService(db).get_log(999)
    assert exc.value.status_code == 404


def test_delete_log(db):
    service = PickingLogService(db)
    log = service.record_generated("VEP100", "8001", _payload("8001"))
    service.delete_log(log.id)
    assert service.list_logs().total == 0


def test_resend_uses_requested_token_and_reports_missing_logs(db):
    upstream = (
        FakeUpstream()
        .on("GET", "TokenDetailsSet", csrf_response())
        .on("POST", "TokenDetailsSet", json_response(201, {"d": {"rescode": "S", "message": "Picked"}}))
    )
    service = PickingLogService(db, PickingService(SessionBroker(upstream)))
    log = service.record_generated("VEP100", "8001", _payload("8001"))

    response = asyncio.run(
        service.resend(PickingLogResendRequest(vep_token=" VEP999 ", log_ids=[log.id, 999]))
    )

    assert response.vep_token == "VEP999"
    assert response.success_count == 1
    assert response.error_count == 1
    assert response.results[0].status == "success"
    assert response.results[0].do_no == "8001"
    assert response.results[1].message == "PickingLog 999 not found."

    sent = upstream.calls_to("POST")[0].json_body
    assert sent == {"tokenno": "VEP999", "getloadingsequence": {"results": [{"obd_no": "8001", "matnr": "MAT1"}]}}

    refreshed = service.get_log(log.id)
    assert refreshed.status == "picked"
    assert refreshed.rescode == "S"
