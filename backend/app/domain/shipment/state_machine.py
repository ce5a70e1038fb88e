"""
Shipment status state machine.

The full transition graph is the ``TRANSITIONS`` table below. Nothing else
in the codebase decides whether a status change is legal or sets
``Shipment.status`` on an instance. Persisting the new status is
``shipment_store.save_if_unchanged``, guarded on the status it was read with.

    PENDING          -> SHIPPED, CANCELED
    SHIPPED          -> IN_TRANSIT, RETURNED, CANCELED
    IN_TRANSIT       -> OUT_FOR_DELIVERY, DELAYED, CANCELED, DELIVERED
    OUT_FOR_DELIVERY -> DELIVERED, FAILED_DELIVERY, CANCELED
    DELAYED          -> IN_TRANSIT, CANCELED
    FAILED_DELIVERY  -> RETURNED, OUT_FOR_DELIVERY, CANCELED
    RETURNED         -> CANCELED
    DELIVERED, CANCELED are terminal
"""

from typing import Dict, FrozenSet, Iterable

from backend.app.core.exceptions import TransitionError
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus

S = ShipmentStatus

TRANSITIONS: Dict[ShipmentStatus, FrozenSet[ShipmentStatus]] = {
    S.PENDING: frozenset({S.SHIPPED, S.CANCELED}),
    S.SHIPPED: frozenset({S.IN_TRANSIT, S.RETURNED, S.CANCELED}),
    S.IN_TRANSIT: frozenset({S.OUT_FOR_DELIVERY, S.DELAYED, S.CANCELED, S.DELIVERED}),
    S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED, S.FAILED_DELIVERY, S.CANCELED}),
    S.DELAYED: frozenset({S.IN_TRANSIT, S.CANCELED}),
    S.FAILED_DELIVERY: frozenset({S.RETURNED, S.OUT_FOR_DELIVERY, S.CANCELED}),
    S.RETURNED: frozenset({S.CANCELED}),
    S.DELIVERED: frozenset(),
    S.CANCELED: frozenset(),
}


def allowed_transitions(status: ShipmentStatus) -> FrozenSet[ShipmentStatus]:
    return TRANSITIONS[status]


def is_terminal(status: ShipmentStatus) -> bool:
    return not TRANSITIONS[status]


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    """True if ``current -> target`` is an edge of the graph."""
    return target in TRANSITIONS[current]


def apply(shipment: Shipment, target: ShipmentStatus) -> Shipment:
    """
    Move ``shipment`` to ``target``.

    Raises:
        TransitionError: if the edge is not in the table. The shipment is
            left unchanged.
    """
    current = shipment.status
    if current is None or not can_transition(current, target):
        raise TransitionError(current, target, shipment_id=shipment.id)
    shipment._status = target
    return shipment


def apply_path(shipment: Shipment, path: Iterable[ShipmentStatus]) -> Shipment:
    """
    Apply several edges in sequence, all or nothing.

    Used where a command must reach a status through intermediate states,
    e.g. PENDING -> SHIPPED -> IN_TRANSIT when tracking info is entered.
    """
    path = list(path)
    current = shipment.status
    for target in path:
        if current is None or not can_transition(current, target):
            raise TransitionError(current, target, shipment_id=shipment.id)
        current = target
    if path:
        shipment._status = current
    return shipment
