"""
Delivery-order group lifecycle.

Group status is never assigned directly by the workflow; it is always the
result of one of the two transition functions below applied to the group's
current status and the outcome of the last orchestrator call.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from dockout.core.exceptions import InvalidTransitionError
from dockout.schemas.workflow import GroupStatus


class TransitionEvent(str, Enum):
    TRANSFER_STARTED = "transfer_started"
    TRANSFER_SUCCEEDED = "transfer_succeeded"
    TRANSFER_WARNED = "transfer_warned"
    TRANSFER_FAILED = "transfer_failed"
    PICKING_STARTED = "picking_started"
    PICKING_SUCCEEDED = "picking_succeeded"
    PICKING_FAILED = "picking_failed"


TRANSFER_TRANSITIONS: Dict[Tuple[GroupStatus, TransitionEvent], GroupStatus] = {
    (GroupStatus.PENDING, TransitionEvent.TRANSFER_STARTED): GroupStatus.LOADING,
    (GroupStatus.ERROR, TransitionEvent.TRANSFER_STARTED): GroupStatus.LOADING,
    # re-submission after an edit of an already transferred group
    (GroupStatus.TRANSFERRED, TransitionEvent.TRANSFER_STARTED): GroupStatus.LOADING,
    (GroupStatus.LOADING, TransitionEvent.TRANSFER_SUCCEEDED): GroupStatus.TRANSFERRED,
    (GroupStatus.LOADING, TransitionEvent.TRANSFER_WARNED): GroupStatus.TRANSFERRED,
    (GroupStatus.LOADING, TransitionEvent.TRANSFER_FAILED): GroupStatus.ERROR,
}

PICKING_TRANSITIONS: Dict[Tuple[GroupStatus, TransitionEvent], GroupStatus] = {
    (GroupStatus.TRANSFERRED, TransitionEvent.PICKING_STARTED): GroupStatus.LOADING,
    (GroupStatus.ERROR, TransitionEvent.PICKING_STARTED): GroupStatus.LOADING,
    (GroupStatus.LOADING, TransitionEvent.PICKING_SUCCEEDED): GroupStatus.PICKED,
    (GroupStatus.LOADING, TransitionEvent.PICKING_FAILED): GroupStatus.ERROR,
}


def _apply(table, current: GroupStatus, event: TransitionEvent, stage: str) -> GroupStatus:
    try:
        return table[(current, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot apply {event.value} to a group in '{current.value}' status during {stage}."
        ) from None


def transfer_transition(current: GroupStatus, event: TransitionEvent) -> GroupStatus:
    return _apply(TRANSFER_TRANSITIONS, current, event, "stock transfer")


def picking_transition(current: GroupStatus, event: TransitionEvent) -> GroupStatus:
    return _apply(PICKING_TRANSITIONS, current, event, "picking")


def initial_status(item_statuses) -> GroupStatus:
    """A freshly loaded group is completed only when every item already is."""
    statuses = list(item_statuses)
    if statuses and all(s == GroupStatus.COMPLETED for s in statuses):
        return GroupStatus.COMPLETED
    return GroupStatus.PENDING
