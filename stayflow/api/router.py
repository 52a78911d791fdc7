from fastapi import APIRouter

from stayflow.api.routes import (
    automation,
    cleaning,
    dashboard,
    guest,
    messaging,
    properties,
    reservations,
    users,
    webhooks,
)

router = APIRouter(prefix="/api")
router.include_router(properties.router, prefix="/admin/properties", tags=["properties"])
router.include_router(reservations.router, prefix="/admin/reservations", tags=["reservations"])
router.include_router(cleaning.router, prefix="/admin/cleaning-tasks", tags=["cleaning"])
router.include_router(users.router, prefix="/admin/users", tags=["users"])
router.include_router(automation.router, prefix="/admin/automation", tags=["automation"])
router.include_router(messaging.router, prefix="/admin/threads", tags=["messaging"])
router.include_router(dashboard.router, prefix="/admin/dashboard", tags=["dashboard"])
router.include_router(guest.router, prefix="/guest", tags=["guest"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
