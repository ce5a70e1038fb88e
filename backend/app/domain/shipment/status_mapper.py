"""
Courier status text -> canonical shipment status.

Pure and deterministic: no I/O, never raises. Text that is not in the
table falls back to IN_TRANSIT so an unknown courier message can never
mark a shipment delivered.
"""

from typing import Dict, Mapping

from backend.app.models.shipment_enums import ShipmentStatus

# CJ Logistics status cell texts, matched exactly
CJ_DELIVERED = "배송완료"
CJ_OUT_FOR_DELIVERY = "배송출발"

CJ_STATUS_TABLE: Dict[str, ShipmentStatus] = {
    CJ_DELIVERED: ShipmentStatus.DELIVERED,
    CJ_OUT_FOR_DELIVERY: ShipmentStatus.OUT_FOR_DELIVERY,
}

DEFAULT_STATUS = ShipmentStatus.IN_TRANSIT


def map_status(raw_text: str, table: Mapping[str, ShipmentStatus] = CJ_STATUS_TABLE) -> ShipmentStatus:
    """Map raw courier text to a canonical status."""
    if not isinstance(raw_text, str):
        return DEFAULT_STATUS
    return table.get(raw_text, DEFAULT_STATUS)


def is_known_status(raw_text: str, table: Mapping[str, ShipmentStatus] = CJ_STATUS_TABLE) -> bool:
    """True if ``raw_text`` has an explicit entry rather than the fallback."""
    return isinstance(raw_text, str) and raw_text in table
