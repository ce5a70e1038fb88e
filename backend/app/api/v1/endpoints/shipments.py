"""
Shipment API Endpoints.

Shipment creation, manual tracking-info entry, on-demand courier checks,
and admin control of the reconciliation job.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Body, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_tracker, get_browser_manager, get_dispatcher, get_sync_job
from backend.app.core.exceptions import SyncRunNotFoundError
from backend.app.models.shipment_enums import SyncTrigger
from backend.app.models.shipment_sync_run import ShipmentSyncRun
from backend.app.schemas.shipment import (
    OrderShipmentCreate, SellerShipmentCreate, TrackingInfoUpdate, StatusCheckRequest,
    ShipmentResponse, ShipmentStatusResponse,
    SyncRunResponse, SyncRunDetailResponse, SyncRunListResponse
)
from backend.app.services import shipment_commands
from backend.app.services.shipment_side_effects import SideEffectDispatcher
from backend.app.services.shipment_store import get_shipment
from backend.app.services.shipment_sync import ShipmentSyncJob
from backend.app.services.tracking.browser import BrowserSessionManager
from backend.app.services.tracking.scraper import CourierTracker

router = APIRouter(prefix="/shipments", tags=["Shipments"])
admin_router = APIRouter(prefix="/admin/shipment-sync", tags=["Admin - Shipment Sync"])


@router.post("/order", response_model=ShipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_order_shipment(
    shipment_data: OrderShipmentCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create the shipment for a confirmed order.

    The shipment starts in PENDING until tracking info is entered.
    """
    try:
        return await shipment_commands.create_order_shipment(
            db,
            order_id=shipment_data.order_id,
            receiver_name=shipment_data.receiver_name,
            receiver_phone=shipment_data.receiver_phone,
            postal_code=shipment_data.postal_code,
            address=shipment_data.address,
        )
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order {shipment_data.order_id} already has a shipment"
        )


@router.post("/seller", response_model=ShipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_seller_shipment(
    shipment_data: SellerShipmentCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a seller's outbound package.

    The shipment is created already IN_TRANSIT.
    """
    try:
        return await shipment_commands.create_seller_shipment(
            db,
            sale_id=shipment_data.sale_id,
            courier=shipment_data.courier,
            tracking_number=shipment_data.tracking_number,
        )
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Sale {shipment_data.sale_id} already has a shipment"
        )


@router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment_detail(
    shipment_id: int = Path(..., description="Shipment ID"),
    db: AsyncSession = Depends(get_db)
):
    """Get a shipment with its current status."""
    return await get_shipment(db, shipment_id)


@router.patch("/{shipment_id}/tracking", response_model=ShipmentResponse)
async def update_tracking_info(
    shipment_id: int = Path(..., description="Shipment ID"),
    tracking: TrackingInfoUpdate = Body(...),
    db: AsyncSession = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher)
):
    """
    Enter courier and tracking number.

    Moves the shipment to IN_TRANSIT immediately; for an order shipment the
    order is marked in transit and the buyer notified.
    """
    return await shipment_commands.update_tracking_info(
        db, shipment_id, tracking.courier, tracking.tracking_number, dispatcher=dispatcher
    )


@router.post("/{shipment_id}/check-status", response_model=ShipmentStatusResponse)
async def check_shipment_status(
    shipment_id: int = Path(..., description="Shipment ID"),
    check: Optional[StatusCheckRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    tracker: CourierTracker = Depends(get_tracker),
    browser_manager: BrowserSessionManager = Depends(get_browser_manager),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher)
):
    """
    Check one shipment against the courier now and return its status.

    Optional courier/tracking number in the body are applied first.
    """
    check = check or StatusCheckRequest()
    new_status = await shipment_commands.check_shipment_status(
        db,
        shipment_id,
        tracker=tracker,
        browser_manager=browser_manager,
        dispatcher=dispatcher,
        courier=check.courier,
        tracking_number=check.tracking_number,
    )
    return ShipmentStatusResponse(shipment_id=shipment_id, status=new_status)


# --- Admin: sync runs ---

async def _load_run(db: AsyncSession, run_id: int) -> ShipmentSyncRun:
    result = await db.execute(
        select(ShipmentSyncRun)
        .options(selectinload(ShipmentSyncRun.skips))
        .where(ShipmentSyncRun.id == run_id)
    )
    run = result.scalar_one_or_none()
    if run is None:
        raise SyncRunNotFoundError(run_id)
    return run


@admin_router.post("/runs", response_model=SyncRunDetailResponse)
async def trigger_sync_run(
    job: ShipmentSyncJob = Depends(get_sync_job),
    db: AsyncSession = Depends(get_db)
):
    """
    Run the reconciliation job now and return the run record.

    Returns 409 if another run is in progress.
    """
    report = await job.run(SyncTrigger.MANUAL)
    return await _load_run(db, report.run_id)


@admin_router.get("/runs", response_model=SyncRunListResponse)
async def list_sync_runs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    """List sync runs, newest first."""
    total = (await db.execute(select(func.count(ShipmentSyncRun.id)))).scalar()

    result = await db.execute(
        select(ShipmentSyncRun)
        .order_by(desc(ShipmentSyncRun.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return SyncRunListResponse(
        runs=[SyncRunResponse.model_validate(run) for run in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size
    )


@admin_router.get("/runs/{run_id}", response_model=SyncRunDetailResponse)
async def get_sync_run(
    run_id: int = Path(..., description="Sync run ID"),
    db: AsyncSession = Depends(get_db)
):
    """Get one sync run with its skipped shipments."""
    return await _load_run(db, run_id)
