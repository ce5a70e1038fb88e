"""
Tests for delivered-shipment side effects and the collaborator HTTP clients.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock

from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.services.shipment_side_effects import (
    NotificationServiceClient,
    OrderStatusService,
    OrderServiceClient,
    ShipmentNotifier,
    SideEffectDispatcher,
    close_dispatcher,
)


def delivered_order_shipment(order_id=42):
    shipment = Shipment.for_order(order_id)
    shipment.id = 7
    shipment._status = ShipmentStatus.DELIVERED
    return shipment


@pytest.fixture
def order_service():
    return AsyncMock(spec=OrderServiceClient)


@pytest.fixture
def notifier():
    return AsyncMock(spec=NotificationServiceClient)


@pytest.mark.asyncio
async def test_completes_order_then_notifies_buyer(order_service, notifier):
    calls = []
    order_service.complete_order.side_effect = lambda order_id: calls.append(("complete", order_id))
    notifier.notify_shipment_completed.side_effect = lambda order_id: calls.append(("notify", order_id))

    result = await SideEffectDispatcher(order_service, notifier).shipment_delivered(delivered_order_shipment())

    assert calls == [("complete", 42), ("notify", 42)]
    assert result.order_updated
    assert result.buyer_notified


@pytest.mark.asyncio
async def test_order_failure_still_notifies(order_service, notifier):
    order_service.complete_order.side_effect = httpx.ConnectError("connection refused")

    result = await SideEffectDispatcher(order_service, notifier).shipment_delivered(delivered_order_shipment())

    assert not result.order_updated
    assert result.buyer_notified
    notifier.notify_shipment_completed.assert_awaited_once_with(42)


@pytest.mark.asyncio
async def test_notification_failure_is_swallowed(order_service, notifier):
    notifier.notify_shipment_completed.side_effect = RuntimeError("queue down")

    result = await SideEffectDispatcher(order_service, notifier).shipment_delivered(delivered_order_shipment())

    assert result.order_updated
    assert not result.buyer_notified


@pytest.mark.asyncio
async def test_not_delivered_does_nothing(order_service, notifier):
    shipment = delivered_order_shipment()
    shipment._status = ShipmentStatus.OUT_FOR_DELIVERY

    await SideEffectDispatcher(order_service, notifier).shipment_delivered(shipment)

    order_service.complete_order.assert_not_awaited()
    notifier.notify_shipment_completed.assert_not_awaited()


@pytest.mark.asyncio
async def test_seller_shipment_has_no_side_effects(order_service, notifier):
    shipment = Shipment.for_sale(9)
    shipment._status = ShipmentStatus.DELIVERED

    result = await SideEffectDispatcher(order_service, notifier).shipment_delivered(shipment)

    assert not result.order_updated
    order_service.complete_order.assert_not_awaited()
    notifier.notify_shipment_completed.assert_not_awaited()


@pytest.mark.asyncio
async def test_departed_marks_order_in_transit_then_notifies(order_service, notifier):
    calls = []
    order_service.mark_order_in_transit.side_effect = lambda order_id: calls.append(("in_transit", order_id))
    notifier.notify_shipment_departed.side_effect = lambda order_id: calls.append(("departed", order_id))
    shipment = delivered_order_shipment()
    shipment._status = ShipmentStatus.IN_TRANSIT

    result = await SideEffectDispatcher(order_service, notifier).shipment_departed(shipment)

    assert calls == [("in_transit", 42), ("departed", 42)]
    assert result.order_updated
    assert result.buyer_notified
    order_service.complete_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_departed_ignores_shipment_not_in_transit(order_service, notifier):
    result = await SideEffectDispatcher(order_service, notifier).shipment_departed(delivered_order_shipment())

    assert not result.order_updated
    order_service.mark_order_in_transit.assert_not_awaited()
    notifier.notify_shipment_departed.assert_not_awaited()


@pytest.mark.asyncio
async def test_departed_seller_shipment_has_no_side_effects(order_service, notifier):
    shipment = Shipment.for_sale(9)
    shipment._status = ShipmentStatus.IN_TRANSIT

    await SideEffectDispatcher(order_service, notifier).shipment_departed(shipment)

    order_service.mark_order_in_transit.assert_not_awaited()
    notifier.notify_shipment_departed.assert_not_awaited()


@pytest.mark.asyncio
async def test_http_clients_call_collaborators():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    transport = httpx.MockTransport(handler)
    orders = OrderServiceClient("http://orders.local/", token="secret", transport=transport)
    notifications = NotificationServiceClient("http://notify.local", transport=transport)
    dispatcher = SideEffectDispatcher(orders, notifications)

    assert isinstance(orders, OrderStatusService)
    assert isinstance(notifications, ShipmentNotifier)

    result = await dispatcher.shipment_delivered(delivered_order_shipment(order_id=55))
    await close_dispatcher(dispatcher)

    assert result.order_updated and result.buyer_notified
    assert [str(r.url) for r in requests] == [
        "http://orders.local/api/v1/orders/55/complete",
        "http://notify.local/api/v1/notifications/shipment-completed",
    ]
    assert requests[0].headers["X-Internal-Service-Token"] == "secret"
    assert "X-Internal-Service-Token" not in requests[1].headers
    assert json.loads(requests[1].content) == {"order_id": 55}
    assert orders.client.is_closed


@pytest.mark.asyncio
async def test_http_error_status_is_reported_not_raised():
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    dispatcher = SideEffectDispatcher(
        OrderServiceClient("http://orders.local", transport=transport),
        NotificationServiceClient("http://notify.local", transport=transport),
    )

    result = await dispatcher.shipment_delivered(delivered_order_shipment())
    await close_dispatcher(dispatcher)

    assert not result.order_updated
    assert not result.buyer_notified


@pytest.mark.asyncio
async def test_http_clients_report_departure():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    transport = httpx.MockTransport(handler)
    dispatcher = SideEffectDispatcher(
        OrderServiceClient("http://orders.local", transport=transport),
        NotificationServiceClient("http://notify.local", transport=transport),
    )
    shipment = delivered_order_shipment(order_id=56)
    shipment._status = ShipmentStatus.IN_TRANSIT

    result = await dispatcher.shipment_departed(shipment)
    await close_dispatcher(dispatcher)

    assert result.order_updated and result.buyer_notified
    assert [str(r.url) for r in requests] == [
        "http://orders.local/api/v1/orders/56/in-transit",
        "http://notify.local/api/v1/notifications/shipment-departed",
    ]
    assert json.loads(requests[1].content) == {"order_id": 56}
