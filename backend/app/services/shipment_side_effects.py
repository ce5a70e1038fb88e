"""
Side effects of shipment status changes on the order side.

When tracking info is entered the order moves to IN_TRANSIT and the buyer
is told the package left. When a shipment reaches DELIVERED the order is
completed and the buyer is notified. Orders and notifications live in
other services; this module holds their client interfaces, HTTP
implementations and the dispatcher that calls them.

Side effects are best-effort. The committed shipment row is the source of
truth, so a failure here is logged and never undoes the transition.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

import httpx

from backend.app.core.config import settings
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class OrderStatusService(Protocol):
    """Moves an order along as its shipment progresses."""

    async def mark_order_in_transit(self, order_id: int) -> None:
        ...

    async def complete_order(self, order_id: int) -> None:
        ...


@runtime_checkable
class ShipmentNotifier(Protocol):
    """Tells the buyer their shipment left or arrived."""

    async def notify_shipment_departed(self, order_id: int) -> None:
        ...

    async def notify_shipment_completed(self, order_id: int) -> None:
        ...


class ServiceClient:
    """
    Base HTTP client for a collaborating service.

    Subclasses set ``service_name`` and call ``self.client``.
    """

    service_name: str = None

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.collaborator_timeout_seconds,
            headers=self._build_headers(token),
            transport=transport,
        )

    def _build_headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"shipment-tracking/{self.service_name}",
        }
        if token:
            headers["X-Internal-Service-Token"] = token
        return headers

    async def close(self):
        await self.client.aclose()


class OrderServiceClient(ServiceClient):
    service_name = "order_service"

    async def mark_order_in_transit(self, order_id: int) -> None:
        response = await self.client.post(f"/api/v1/orders/{order_id}/in-transit")
        response.raise_for_status()

    async def complete_order(self, order_id: int) -> None:
        response = await self.client.post(f"/api/v1/orders/{order_id}/complete")
        response.raise_for_status()


class NotificationServiceClient(ServiceClient):
    service_name = "notification_service"

    async def notify_shipment_departed(self, order_id: int) -> None:
        response = await self.client.post(
            "/api/v1/notifications/shipment-departed",
            json={"order_id": order_id},
        )
        response.raise_for_status()

    async def notify_shipment_completed(self, order_id: int) -> None:
        response = await self.client.post(
            "/api/v1/notifications/shipment-completed",
            json={"order_id": order_id},
        )
        response.raise_for_status()


@dataclass
class DispatchResult:
    order_updated: bool = False
    buyer_notified: bool = False


class SideEffectDispatcher:
    """Updates the order, then notifies the buyer, for an order-bound shipment."""

    def __init__(self, order_service: OrderStatusService, notifier: ShipmentNotifier):
        self.order_service = order_service
        self.notifier = notifier

    async def shipment_departed(self, shipment: Shipment) -> DispatchResult:
        """Tracking info was entered and the shipment is now IN_TRANSIT."""
        return await self._dispatch(
            shipment,
            ShipmentStatus.IN_TRANSIT,
            self.order_service.mark_order_in_transit,
            self.notifier.notify_shipment_departed,
        )

    async def shipment_delivered(self, shipment: Shipment) -> DispatchResult:
        return await self._dispatch(
            shipment,
            ShipmentStatus.DELIVERED,
            self.order_service.complete_order,
            self.notifier.notify_shipment_completed,
        )

    async def _dispatch(
        self,
        shipment: Shipment,
        expected_status: ShipmentStatus,
        update_order: Callable[[int], Awaitable[None]],
        notify_buyer: Callable[[int], Awaitable[None]],
    ) -> DispatchResult:
        result = DispatchResult()

        if shipment.status != expected_status:
            logger.warning(
                "%s dispatch requested for shipment %s in status %s, ignoring",
                expected_status.value, shipment.id, shipment.status
            )
            return result

        if not shipment.is_order_bound:
            # Seller-bound shipments have no order or buyer to act on
            logger.info("Shipment %s is seller-bound, no order side effects", shipment.id)
            return result

        order_id = shipment.order_id
        log_data = {"shipment_id": shipment.id, "order_id": order_id, "event": expected_status.value}

        try:
            await update_order(order_id)
            result.order_updated = True
        except Exception as exc:
            logger.error("Order update failed for shipment %s: %s", shipment.id, exc, extra=log_data)

        try:
            await notify_buyer(order_id)
            result.buyer_notified = True
        except Exception as exc:
            logger.error("Buyer notification failed for shipment %s: %s", shipment.id, exc, extra=log_data)

        logger.info(
            "Shipment side effects dispatched",
            extra={**log_data, "order_updated": result.order_updated, "buyer_notified": result.buyer_notified}
        )
        return result


def build_default_dispatcher() -> SideEffectDispatcher:
    """Dispatcher wired to the order and notification services from settings."""
    return SideEffectDispatcher(
        order_service=OrderServiceClient(
            settings.order_service_url, token=settings.internal_service_token
        ),
        notifier=NotificationServiceClient(
            settings.notification_service_url, token=settings.internal_service_token
        ),
    )


async def close_dispatcher(dispatcher: SideEffectDispatcher) -> None:
    """Close any HTTP clients the dispatcher holds."""
    for collaborator in (dispatcher.order_service, dispatcher.notifier):
        close = getattr(collaborator, "close", None)
        if close is not None:
            await close()
