import pytest

from dockout.core.exceptions import InvalidTransitionError
from dockout.schemas.workflow import GroupStatus
from dockout.services.lifecycle import (
    TransitionEvent,
    initial_status,
    picking_transition,
    transfer_transition,
)


@pytest.mark.parametrize(
    "current,event,expected",
    [
        (GroupStatus.PENDING, TransitionEvent.TRANSFER_STARTED, GroupStatus.LOADING),
        (GroupStatus.ERROR, TransitionEvent.TRANSFER_STARTED, GroupStatus.LOADING),
        (GroupStatus.LOADING, TransitionEvent.TRANSFER_SUCCEEDED, GroupStatus.TRANSFERRED),
        (GroupStatus.LOADING, TransitionEvent.TRANSFER_WARNED, GroupStatus.TRANSFERRED),
        (GroupStatus.LOADING, TransitionEvent.TRANSFER_FAILED, GroupStatus.ERROR),
    ],
)
def test_transfer_transitions(current, event, expected):
    assert transfer_transition(current, event) == expected


@pytest.mark.parametrize(
    "current,event,expected",
    [
        (GroupStatus.TRANSFERRED, TransitionEvent.PICKING_STARTED, GroupStatus.LOADING),
        (GroupStatus.ERROR, TransitionEvent.PICKING_STARTED, GroupStatus.LOADING),
        (GroupStatus.LOADING, TransitionEvent.PICKING_SUCCEEDED, GroupStatus.PICKED),
        (GroupStatus.LOADING, TransitionEvent.PICKING_FAILED, GroupStatus.ERROR),
    ],
)
def test_picking_transitions(current, event, expected):
    assert picking_transition(current, event) == expected


def test_completed_group_cannot_start_transfer():
    with pytest.raises(InvalidTransitionError) as exc:
        transfer_transition(GroupStatus.COMPLETED, TransitionEvent.TRANSFER_STARTED)
    assert "completed" in exc.value.message


def test_pending_group_cannot_start_picking():
    with pytest.raises(InvalidTransitionError):
        picking_transition(GroupStatus.PENDING, TransitionEvent.PICKING_STARTED)


def test_picked_group_is_final_for_picking():
    with pytest.raises(InvalidTransitionError):
        picking_transition(GroupStatus.PICKED, TransitionEvent.PICKING_STARTED)


def test_initial_status():
    assert initial_status([GroupStatus.COMPLETED, GroupStatus.COMPLETED]) == GroupStatus.COMPLETED
    assert initial_status([GroupStatus.COMPLETED, GroupStatus.PENDING]) == GroupStatus.PENDING
    assert initial_status([]) == GroupStatus.PENDING
