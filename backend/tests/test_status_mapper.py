"""
Tests for courier status text mapping.
"""

import pytest

from backend.app.domain.shipment.status_mapper import (
    CJ_DELIVERED,
    CJ_OUT_FOR_DELIVERY,
    map_status,
    is_known_status,
)
from backend.app.models.shipment_enums import ShipmentStatus


def test_delivered_marker():
    assert map_status(CJ_DELIVERED) == ShipmentStatus.DELIVERED


def test_out_for_delivery_marker():
    assert map_status(CJ_OUT_FOR_DELIVERY) == ShipmentStatus.OUT_FOR_DELIVERY


@pytest.mark.parametrize("raw_text", [
    "집화처리",
    "간선상차",
    "반품",
    "",
    " 배송완료",  # exact match only
    "DELIVERED",
])
def test_unknown_text_falls_back_to_in_transit(raw_text):
    assert map_status(raw_text) == ShipmentStatus.IN_TRANSIT
    assert not is_known_status(raw_text)


@pytest.mark.parametrize("raw_text", [None, 42])
def test_non_text_never_raises(raw_text):
    assert map_status(raw_text) == ShipmentStatus.IN_TRANSIT


def test_mapping_is_deterministic():
    for raw_text in (CJ_DELIVERED, CJ_OUT_FOR_DELIVERY, "터미널입고"):
        assert map_status(raw_text) == map_status(raw_text)


def test_custom_table():
    table = {"Delivered": ShipmentStatus.DELIVERED}

    assert map_status("Delivered", table) == ShipmentStatus.DELIVERED
    assert map_status(CJ_DELIVERED, table) == ShipmentStatus.IN_TRANSIT
    assert is_known_status("Delivered", table)
