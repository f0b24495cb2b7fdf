from fastapi import APIRouter

from dockyard.api.v1.endpoints import yard_management


api_router = APIRouter(prefix="/api/v1")

# ==================== Yard Management (Dock Scheduling & Yard Operations) ====================
api_router.include_router(
    yard_management.router,
    prefix="/yard",
    tags=["Yard Management"]
)
