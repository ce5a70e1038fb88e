"""
Shipment persistence helpers.

Reads trackable shipments in keyset pages and persists status changes
with a compare-and-set on the status the caller read.
Callers own the session and decide when to commit.
"""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from backend.app.core.exceptions import ShipmentConflictError, ShipmentNotFoundError
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import ShipmentStatus

# Statuses the sync job polls the courier for
TRACKABLE_STATUSES = (ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY)


async def fetch_trackable_shipments(
    db: AsyncSession,
    after_id: Optional[int],
    limit: int
) -> List[Shipment]:
    """
    Load the next page of shipments awaiting delivery.

    Pages are keyed on ``id`` rather than offset, so shipments that leave
    the trackable set after an earlier chunk commits do not shift later
    pages.

    Args:
        db: Database session
        after_id: Last shipment ID of the previous page (None for the first page)
        limit: Page size

    Returns:
        Shipments ordered by ID
    """
    query = select(Shipment).where(
        Shipment.status.in_(TRACKABLE_STATUSES),
        Shipment.tracking_number.is_not(None)
    )
    if after_id is not None:
        query = query.where(Shipment.id > after_id)
    query = query.order_by(Shipment.id).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_shipment(db: AsyncSession, shipment_id: int) -> Shipment:
    """
    Load a shipment by ID.

    Raises:
        ShipmentNotFoundError: If no such shipment exists
    """
    result = await db.execute(select(Shipment).where(Shipment.id == shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise ShipmentNotFoundError(shipment_id)
    return shipment


async def add_shipment(db: AsyncSession, shipment: Shipment) -> Shipment:
    """Stage a new shipment and assign its ID."""
    db.add(shipment)
    await db.flush()
    return shipment


async def save_if_unchanged(
    db: AsyncSession,
    shipment: Shipment,
    expected_status: ShipmentStatus,
    expected_tracking_number: Optional[str]
) -> None:
    """
    Write a shipment's tracking fields only if the stored row still has the
    status and tracking number it was read with.

    ``shipment`` must be detached from ``db``; the write is a single guarded
    UPDATE, so of two writers racing on the same row exactly one wins.

    Raises:
        ShipmentConflictError: The row changed since it was read
    """
    result = await db.execute(
        update(Shipment)
        .where(
            Shipment.id == shipment.id,
            Shipment._status == expected_status,
            Shipment.tracking_number == expected_tracking_number,
        )
        .values({
            Shipment._status: shipment.status,
            Shipment.courier: shipment.courier,
            Shipment.tracking_number: shipment.tracking_number,
            Shipment.last_raw_status: shipment.last_raw_status,
            Shipment.last_tracked_at: shipment.last_tracked_at,
        })
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ShipmentConflictError(shipment.id, expected_status)
