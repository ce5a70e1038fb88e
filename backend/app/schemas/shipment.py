"""
Shipment Pydantic schemas.

Defines request and response models for shipment commands and sync runs.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List
from backend.app.models.shipment_enums import ShipmentStatus, SyncRunStatus, SyncTrigger, SkipKind


class OrderShipmentCreate(BaseModel):
    """Schema for creating a buyer-bound shipment for a confirmed order."""
    order_id: int = Field(..., gt=0, description="Order in the order service")
    receiver_name: str = Field(..., min_length=1, max_length=100)
    receiver_phone: str = Field(..., min_length=1, max_length=30)
    postal_code: str = Field(..., min_length=1, max_length=20)
    address: str = Field(..., min_length=1, max_length=500)


class SellerShipmentCreate(BaseModel):
    """Schema for a seller registering an outbound package."""
    sale_id: int = Field(..., gt=0, description="Sale in the catalog service")
    courier: str = Field(..., min_length=1, max_length=100, description="Courier name")
    tracking_number: str = Field(..., min_length=1, max_length=100, description="Courier tracking number")


class TrackingInfoUpdate(BaseModel):
    """Schema for manual tracking-info entry."""
    courier: str = Field(..., min_length=1, max_length=100, description="Courier name")
    tracking_number: str = Field(..., min_length=1, max_length=100, description="Courier tracking number")


class StatusCheckRequest(BaseModel):
    """Optional tracking info to apply before an on-demand check."""
    courier: Optional[str] = Field(None, max_length=100)
    tracking_number: Optional[str] = Field(None, max_length=100)


class ShipmentResponse(BaseModel):
    """Schema for shipment response."""
    id: int
    order_id: Optional[int]
    sale_id: Optional[int]
    receiver_name: Optional[str]
    receiver_phone: Optional[str]
    postal_code: Optional[str]
    address: Optional[str]
    courier: Optional[str]
    tracking_number: Optional[str]
    status: ShipmentStatus
    last_raw_status: Optional[str]
    last_tracked_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ShipmentStatusResponse(BaseModel):
    """Result of an on-demand status check."""
    shipment_id: int
    status: ShipmentStatus


class SyncSkipResponse(BaseModel):
    shipment_id: int
    tracking_number: Optional[str]
    kind: SkipKind
    reason: str

    model_config = ConfigDict(from_attributes=True)


class SyncRunResponse(BaseModel):
    """Schema for a sync run record."""
    id: int
    trigger: SyncTrigger
    status: SyncRunStatus
    failure_reason: Optional[str]
    read_count: int
    updated_count: int
    unchanged_count: int
    delivered_count: int
    skip_count: int
    chunk_count: int
    started_at: datetime
    finished_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class SyncRunDetailResponse(SyncRunResponse):
    skips: List[SyncSkipResponse]


class SyncRunListResponse(BaseModel):
    runs: List[SyncRunResponse]
    total: int
    page: int
    page_size: int
