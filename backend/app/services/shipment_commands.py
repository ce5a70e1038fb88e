"""
Shipment commands used outside the scheduled sync.

Creating shipments, entering tracking info by hand, and checking one
shipment against the courier on demand. Every status change goes through
the state machine, and every write to an existing shipment is a
compare-and-set on the status it was read with.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import TrackingInfoRequiredError, TransitionError
from backend.app.domain.shipment import state_machine
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.services.shipment_side_effects import SideEffectDispatcher
from backend.app.services.shipment_store import add_shipment, get_shipment, save_if_unchanged
from backend.app.services.shipment_sync import reconcile_shipment
from backend.app.services.tracking.browser import BrowserSessionManager
from backend.app.services.tracking.scraper import CourierTracker

logger = logging.getLogger(__name__)

S = ShipmentStatus

# Edges walked to reach IN_TRANSIT when tracking info is entered.
# Statuses missing here cannot accept new tracking info.
TRACKING_ENTRY_PATHS = {
    S.PENDING: (S.SHIPPED, S.IN_TRANSIT),
    S.SHIPPED: (S.IN_TRANSIT,),
    S.DELAYED: (S.IN_TRANSIT,),
    S.IN_TRANSIT: (),
}


def _require_tracking_info(courier: Optional[str], tracking_number: Optional[str]):
    if not courier or not courier.strip() or not tracking_number or not tracking_number.strip():
        raise TrackingInfoRequiredError()
    return courier.strip(), tracking_number.strip()


def apply_tracking_info(shipment: Shipment, courier: str, tracking_number: str) -> Shipment:
    """
    Set courier and tracking number and move the shipment to IN_TRANSIT.

    Raises:
        TrackingInfoRequiredError: blank courier or tracking number
        TransitionError: the shipment's status cannot reach IN_TRANSIT
    """
    courier, tracking_number = _require_tracking_info(courier, tracking_number)

    path = TRACKING_ENTRY_PATHS.get(shipment.status)
    if path is None:
        raise TransitionError(shipment.status, S.IN_TRANSIT, shipment_id=shipment.id)

    state_machine.apply_path(shipment, path)
    shipment.courier = courier
    shipment.tracking_number = tracking_number
    return shipment


async def create_order_shipment(
    db: AsyncSession,
    order_id: int,
    receiver_name: str,
    receiver_phone: str,
    postal_code: str,
    address: str
) -> Shipment:
    """Create a buyer-bound shipment in PENDING for a confirmed order."""
    shipment = Shipment.for_order(
        order_id,
        receiver_name=receiver_name,
        receiver_phone=receiver_phone,
        postal_code=postal_code,
        address=address,
    )
    await add_shipment(db, shipment)
    await db.commit()
    await db.refresh(shipment)

    logger.info("Order shipment created", extra={"shipment_id": shipment.id, "order_id": order_id})
    return shipment


async def create_seller_shipment(
    db: AsyncSession,
    sale_id: int,
    courier: str,
    tracking_number: str
) -> Shipment:
    """Create a seller-bound shipment already in transit to the warehouse."""
    shipment = Shipment.for_sale(sale_id)
    apply_tracking_info(shipment, courier, tracking_number)
    await add_shipment(db, shipment)
    await db.commit()
    await db.refresh(shipment)

    logger.info("Seller shipment created", extra={"shipment_id": shipment.id, "sale_id": sale_id})
    return shipment


async def update_tracking_info(
    db: AsyncSession,
    shipment_id: int,
    courier: str,
    tracking_number: str,
    dispatcher: Optional[SideEffectDispatcher] = None
) -> Shipment:
    """
    Manual tracking-info entry. Takes effect immediately, outside the scheduled run.

    When the entry moves an order-bound shipment into IN_TRANSIT, the
    order and buyer are told after the commit.

    Raises:
        ShipmentNotFoundError, TrackingInfoRequiredError, TransitionError,
        ShipmentConflictError
    """
    shipment = await get_shipment(db, shipment_id)
    db.expunge(shipment)
    previous = shipment.status
    expected_tracking_number = shipment.tracking_number

    apply_tracking_info(shipment, courier, tracking_number)
    await save_if_unchanged(db, shipment, previous, expected_tracking_number)
    await db.commit()

    logger.info(
        "Tracking info updated",
        extra={
            "shipment_id": shipment.id,
            "courier": shipment.courier,
            "tracking_number": shipment.tracking_number,
            "from_status": previous.value,
            "to_status": shipment.status.value,
        }
    )

    if dispatcher is not None and previous != S.IN_TRANSIT:
        await dispatcher.shipment_departed(shipment)

    return await get_shipment(db, shipment_id)


async def check_shipment_status(
    db: AsyncSession,
    shipment_id: int,
    tracker: CourierTracker,
    browser_manager: BrowserSessionManager,
    dispatcher: SideEffectDispatcher,
    courier: Optional[str] = None,
    tracking_number: Optional[str] = None
) -> ShipmentStatus:
    """
    Reconcile one shipment against the courier right now.

    If courier/tracking number are given they are applied first. Uses its
    own browser session, commits the result and fires delivered side
    effects, then returns the resulting status. The write is guarded on
    the status read here, so a sync run delivering the same shipment
    meanwhile turns this check into a conflict instead of a second
    delivery.

    Raises:
        ShipmentNotFoundError, TrackingInfoRequiredError, TransitionError,
        TrackingScrapeError, BrowserInitializationError, ShipmentConflictError
    """
    shipment = await get_shipment(db, shipment_id)
    db.expunge(shipment)
    stored_status = shipment.status
    stored_tracking_number = shipment.tracking_number

    if courier is not None or tracking_number is not None:
        apply_tracking_info(shipment, courier, tracking_number)

    async with browser_manager.session() as browser:
        previous, result = await reconcile_shipment(browser, tracker, shipment)

    await save_if_unchanged(db, shipment, stored_status, stored_tracking_number)
    await db.commit()

    logger.info(
        "On-demand status check",
        extra={
            "shipment_id": shipment.id,
            "raw_status": result.raw_status,
            "from_status": previous.value,
            "to_status": shipment.status.value,
        }
    )

    if shipment.status == S.DELIVERED and previous != S.DELIVERED:
        await dispatcher.shipment_delivered(shipment)

    return shipment.status
