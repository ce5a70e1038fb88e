"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import shipments

router = APIRouter()

# Shipment commands
router.include_router(shipments.router)

# Reconciliation job control
router.include_router(shipments.admin_router)
