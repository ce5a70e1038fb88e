"""
Shipment-related enumerations.

The legal transitions between ``ShipmentStatus`` values live in
``backend.app.domain.shipment.state_machine``, not on the enum.
"""

import enum


class ShipmentStatus(str, enum.Enum):
    """Canonical delivery status of a shipment."""
    PENDING = "PENDING"  # Created, not yet handed to a courier
    SHIPPED = "SHIPPED"  # Handed to the courier
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELAYED = "DELAYED"
    FAILED_DELIVERY = "FAILED_DELIVERY"
    RETURNED = "RETURNED"  # Only an administrative process moves it on
    DELIVERED = "DELIVERED"  # Terminal
    CANCELED = "CANCELED"  # Terminal


class SyncRunStatus(str, enum.Enum):
    """Outcome of a shipment sync run."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SyncTrigger(str, enum.Enum):
    """What started a sync run."""
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class SkipKind(str, enum.Enum):
    """Why a shipment was skipped during a sync run."""
    SCRAPE = "SCRAPE"  # Courier page unreachable, timed out or unparseable
    TRANSITION = "TRANSITION"  # Courier reported an impossible next status
    INVALID_TRACKING = "INVALID_TRACKING"
    CONFLICT = "CONFLICT"  # Shipment changed by another writer mid-run
    UNEXPECTED = "UNEXPECTED"
