"""
Yard Management API Endpoints - Dock Scheduling & Yard Operations.

API endpoints for:
- Dock appointments (schedule, reschedule, confirm, start, cancel)
- Trailer arrival, check-in and check-out
- Yard moves
- Dock schedule and dock doors
- Yard locations
- Per-warehouse yard configuration
- Snapshot, optimization and utilization reporting

Domain errors raised by the services are mapped to HTTP responses by the
application exception handler.
"""
from datetime import date
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.api.deps import get_tenant_id, get_actor
from dockyard.database import get_db
from dockyard.models.yard import (
    YardLocationType, AppointmentStatus, TrailerStatus, YardMoveStatus
)
from dockyard.schemas.yard import (
    YardLocationCreate, YardLocationResponse,
    DockDoorCreate, DockDoorResponse,
    AppointmentCreate, AppointmentReschedule, AppointmentCancel,
    AppointmentResponse, AppointmentListResponse,
    DockScheduleResponse,
    TrailerArrival, TrailerCheckIn, TrailerCheckOut, TrailerResponse,
    CheckInResult, CheckOutResult,
    YardMoveCreate, YardMoveExecute, YardMoveResponse,
    YardConfigUpdate, YardPolicy,
    YardSnapshot, OptimizationResult, UtilizationReport
)
from dockyard.services.appointment_service import AppointmentService
from dockyard.services.dock_calendar import DockCalendarService
from dockyard.services.trailer_service import TrailerService
from dockyard.services.yard_analytics_service import YardAnalyticsService
from dockyard.services.yard_config_service import YardConfigService
from dockyard.services.yard_location_service import YardLocationService
from dockyard.services.yard_move_service import YardMoveService

router = APIRouter()


# ============================================================================
# APPOINTMENTS
# ============================================================================

@router.post(
    "/appointments",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule Appointment"
)
async def schedule_appointment(
    data: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Book the earliest free dock slot matching the request. 409 when nothing fits."""
    service = AppointmentService(db, tenant_id)
    return await service.schedule(data, created_by=actor)


@router.get(
    "/appointments",
    response_model=AppointmentListResponse,
    summary="List Appointments"
)
async def list_appointments(
    warehouse_id: UUID,
    scheduled_date: Optional[date] = None,
    status: Optional[AppointmentStatus] = None,
    dock_number: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """List appointments with filters."""
    service = AppointmentService(db, tenant_id)
    items, total = await service.list_appointments(
        warehouse_id=warehouse_id,
        scheduled_date=scheduled_date,
        status=status,
        dock_number=dock_number,
        skip=skip,
        limit=limit
    )
    return AppointmentListResponse(
        items=[AppointmentResponse.model_validate(a) for a in items],
        total=total,
        skip=skip,
        limit=limit
    )


@router.get(
    "/appointments/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Get Appointment"
)
async def get_appointment(
    appointment_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Get appointment details."""
    service = AppointmentService(db, tenant_id)
    return await service.require_appointment(appointment_id)


@router.post(
    "/appointments/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    summary="Reschedule Appointment"
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Move an appointment to another date. The old slot is kept if nothing fits."""
    service = AppointmentService(db, tenant_id)
    return await service.reschedule(appointment_id, data, actor=actor)


@router.post(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    summary="Cancel Appointment"
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Cancel an appointment and free its dock slot."""
    service = AppointmentService(db, tenant_id)
    return await service.cancel(appointment_id, data.reason, actor=actor)


@router.post(
    "/appointments/{appointment_id}/confirm",
    response_model=AppointmentResponse,
    summary="Confirm Appointment"
)
async def confirm_appointment(
    appointment_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = AppointmentService(db, tenant_id)
    return await service.confirm(appointment_id)


@router.post(
    "/appointments/{appointment_id}/start",
    response_model=AppointmentResponse,
    summary="Start Dock Work"
)
async def start_appointment(
    appointment_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = AppointmentService(db, tenant_id)
    return await service.start(appointment_id)


# ============================================================================
# TRAILERS
# ============================================================================

@router.post(
    "/trailers/arrivals",
    response_model=TrailerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register Trailer Arrival"
)
async def register_trailer_arrival(
    data: TrailerArrival,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Record a trailer at the gate before check-in."""
    service = TrailerService(db, tenant_id)
    return await service.register_arrival(data, actor=actor)


@router.post(
    "/trailers/check-in",
    response_model=CheckInResult,
    summary="Check In Trailer"
)
async def check_in_trailer(
    data: TrailerCheckIn,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Check a trailer in at a dock door or yard location."""
    service = TrailerService(db, tenant_id)
    return await service.check_in(data, actor=actor)


@router.post(
    "/trailers/{trailer_id}/check-out",
    response_model=CheckOutResult,
    summary="Check Out Trailer"
)
async def check_out_trailer(
    trailer_id: UUID,
    data: Optional[TrailerCheckOut] = None,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Close the visit; returns dwell time and the informational detention charge."""
    service = TrailerService(db, tenant_id)
    return await service.check_out(trailer_id, actor=actor, notes=data.notes if data else None)


@router.get(
    "/trailers",
    response_model=List[TrailerResponse],
    summary="List Trailers"
)
async def list_trailers(
    warehouse_id: UUID,
    status: Optional[TrailerStatus] = None,
    on_site_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = TrailerService(db, tenant_id)
    trailers, _ = await service.list_trailers(
        warehouse_id=warehouse_id,
        status=status,
        on_site_only=on_site_only,
        skip=skip,
        limit=limit
    )
    return trailers


@router.get(
    "/trailers/{trailer_id}",
    response_model=TrailerResponse,
    summary="Get Trailer"
)
async def get_trailer(
    trailer_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = TrailerService(db, tenant_id)
    return await service.require_trailer(trailer_id)


# ============================================================================
# YARD MOVES
# ============================================================================

@router.post(
    "/moves",
    response_model=YardMoveResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request Yard Move"
)
async def request_yard_move(
    data: YardMoveCreate,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    actor: Optional[str] = Depends(get_actor)
):
    """Request a trailer relocation. Occupancy changes on execution."""
    service = YardMoveService(db, tenant_id)
    return await service.request_move(data, actor=actor)


@router.post(
    "/moves/{move_id}/execute",
    response_model=YardMoveResponse,
    summary="Execute Yard Move"
)
async def execute_yard_move(
    move_id: UUID,
    data: YardMoveExecute,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Perform the move and update occupancy in one transaction."""
    service = YardMoveService(db, tenant_id)
    return await service.execute(move_id, data.operator_id)


@router.get(
    "/moves",
    response_model=List[YardMoveResponse],
    summary="List Yard Moves"
)
async def list_yard_moves(
    warehouse_id: UUID,
    status: Optional[YardMoveStatus] = None,
    trailer_id: Optional[UUID] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = YardMoveService(db, tenant_id)
    moves, _ = await service.list_moves(
        warehouse_id=warehouse_id,
        status=status,
        trailer_id=trailer_id,
        skip=skip,
        limit=limit
    )
    return moves


@router.get(
    "/moves/{move_id}",
    response_model=YardMoveResponse,
    summary="Get Yard Move"
)
async def get_yard_move(
    move_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = YardMoveService(db, tenant_id)
    return await service.require_move(move_id)


# ============================================================================
# DOCK SCHEDULE & DOCK DOORS
# ============================================================================

@router.get(
    "/dock-schedule",
    response_model=DockScheduleResponse,
    summary="Get Dock Schedule"
)
async def get_dock_schedule(
    warehouse_id: UUID,
    schedule_date: date,
    dock_number: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Granule-level availability for a day, optionally for one dock."""
    service = DockCalendarService(db, tenant_id)
    return await service.get_dock_schedule(warehouse_id, schedule_date, dock_number)


@router.post(
    "/dock-doors",
    response_model=DockDoorResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Dock Door"
)
async def create_dock_door(
    data: DockDoorCreate,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Register a dock door. Once a warehouse has doors, only those are scheduled."""
    service = YardLocationService(db, tenant_id)
    return await service.create_dock_door(data)


@router.get(
    "/dock-doors",
    response_model=List[DockDoorResponse],
    summary="List Dock Doors"
)
async def list_dock_doors(
    warehouse_id: UUID,
    active_only: bool = True,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = YardLocationService(db, tenant_id)
    return await service.list_dock_doors(warehouse_id, active_only=active_only)


# ============================================================================
# YARD LOCATIONS
# ============================================================================

@router.post(
    "/locations",
    response_model=YardLocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Yard Location"
)
async def create_yard_location(
    data: YardLocationCreate,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Create a new yard location (parking, staging, waiting, drop yard)."""
    service = YardLocationService(db, tenant_id)
    return await service.create_location(data)


@router.get(
    "/locations",
    response_model=List[YardLocationResponse],
    summary="List Yard Locations"
)
async def list_yard_locations(
    warehouse_id: UUID,
    location_type: Optional[YardLocationType] = None,
    zone: Optional[str] = None,
    active_only: bool = True,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """List yard locations with filters."""
    service = YardLocationService(db, tenant_id)
    locations, _ = await service.list_locations(
        warehouse_id=warehouse_id,
        location_type=location_type,
        zone=zone,
        active_only=active_only,
        skip=skip,
        limit=limit
    )
    return locations


@router.get(
    "/locations/{location_id}",
    response_model=YardLocationResponse,
    summary="Get Yard Location"
)
async def get_yard_location(
    location_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Get yard location details."""
    service = YardLocationService(db, tenant_id)
    return await service.require_location(location_id)


@router.post(
    "/locations/{location_id}/deactivate",
    response_model=YardLocationResponse,
    summary="Deactivate Yard Location"
)
async def deactivate_yard_location(
    location_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Take an empty location out of service."""
    service = YardLocationService(db, tenant_id)
    return await service.deactivate_location(location_id)


# ============================================================================
# CONFIGURATION
# ============================================================================

@router.get(
    "/config/{warehouse_id}",
    response_model=YardPolicy,
    summary="Get Yard Configuration"
)
async def get_yard_config(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Effective policy: warehouse overrides on top of the application defaults."""
    service = YardConfigService(db, tenant_id)
    return await service.get_policy(warehouse_id)


@router.put(
    "/config/{warehouse_id}",
    response_model=YardPolicy,
    summary="Update Yard Configuration"
)
async def update_yard_config(
    warehouse_id: UUID,
    data: YardConfigUpdate,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = YardConfigService(db, tenant_id)
    return await service.upsert_config(warehouse_id, data)


# ============================================================================
# ANALYTICS
# ============================================================================

@router.get(
    "/snapshot",
    response_model=YardSnapshot,
    summary="Get Yard Snapshot"
)
async def get_yard_snapshot(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Current operating day overview. Failed sections are listed in partial_errors."""
    service = YardAnalyticsService(db, tenant_id)
    return await service.snapshot(warehouse_id)


@router.post(
    "/optimize",
    response_model=OptimizationResult,
    summary="Optimize Yard Flow"
)
async def optimize_yard(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    """Heuristic, advisory projection with a ranked action plan."""
    service = YardAnalyticsService(db, tenant_id)
    return await service.optimize(warehouse_id)


@router.get(
    "/reports/utilization",
    response_model=UtilizationReport,
    summary="Yard Utilization Report"
)
async def get_utilization_report(
    warehouse_id: UUID,
    start_date: date,
    end_date: date,
    db: AsyncSession = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id)
):
    service = YardAnalyticsService(db, tenant_id)
    return await service.utilization_report(warehouse_id, start_date, end_date)
