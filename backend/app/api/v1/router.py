"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import shipments, delivery_actions, issues, notifications, riders

router = APIRouter()

# Shipment lifecycle
router.include_router(shipments.router)
router.include_router(delivery_actions.router)

# Issue queue
router.include_router(issues.router)
router.include_router(issues.shipment_router)

# Rider review and live location
router.include_router(riders.router)

# Notification ledger and maintenance
router.include_router(notifications.router)
router.include_router(notifications.admin_router)
