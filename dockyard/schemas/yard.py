"""
Yard & Dock Scheduling Schemas.

Pydantic schemas for:
- Yard locations and dock doors
- Appointments (schedule / reschedule / cancel)
- Trailer arrival, check-in and check-out
- Yard moves
- Dock schedule views
- Snapshot, optimization and utilization report output
- Per-warehouse yard configuration
"""
from datetime import datetime, date
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, model_validator

from dockyard.models.yard import (
    YardLocationType, DockDoorType, TrailerStatus, TrailerType, LoadType,
    AppointmentStatus, AppointmentType, OperationType, Priority,
    YardMoveStatus, YardMoveReason
)


class TimeWindow(str, Enum):
    """Preferred time of day for an appointment."""
    MORNING = "morning"         # before 12:00
    AFTERNOON = "afternoon"     # 12:00 - 17:00
    EVENING = "evening"         # 17:00 onwards


# ============================================================================
# YARD LOCATION SCHEMAS
# ============================================================================

class YardLocationBase(BaseModel):
    """Base schema for yard location."""
    location_code: str = Field(..., max_length=30)
    location_name: str = Field(..., max_length=100)
    location_type: YardLocationType = YardLocationType.PARKING
    zone: Optional[str] = Field(None, max_length=30)
    capacity: int = Field(1, ge=1)
    pos_x: Optional[float] = None
    pos_y: Optional[float] = None
    has_refrigeration: bool = False
    is_hazmat_approved: bool = False
    notes: Optional[str] = None


class YardLocationCreate(YardLocationBase):
    """Schema for creating yard location."""
    warehouse_id: UUID


class YardLocationResponse(YardLocationBase):
    """Response schema for yard location."""
    id: UUID
    tenant_id: UUID
    warehouse_id: UUID
    current_occupancy: int
    available_spots: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# DOCK DOOR SCHEMAS
# ============================================================================

class DockDoorBase(BaseModel):
    """Base schema for dock door."""
    door_number: str = Field(..., max_length=20)
    door_name: Optional[str] = Field(None, max_length=100)
    door_type: DockDoorType = DockDoorType.DUAL
    has_refrigeration: bool = False
    is_hazmat_approved: bool = False
    supports_oversized: bool = False
    has_leveler: bool = True


class DockDoorCreate(DockDoorBase):
    """Schema for creating dock door."""
    warehouse_id: UUID


class DockDoorResponse(DockDoorBase):
    """Response schema for dock door."""
    id: UUID
    tenant_id: UUID
    warehouse_id: UUID
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# APPOINTMENT SCHEMAS
# ============================================================================

class SpecialRequirements(BaseModel):
    """Handling flags that constrain dock selection."""
    refrigerated: bool = False
    hazmat: bool = False
    liftgate_required: bool = False
    oversized: bool = False
    live_unload: bool = False
    drop_trailer: bool = False


class AppointmentCreate(BaseModel):
    """Schema for scheduling a dock appointment."""
    warehouse_id: UUID
    preferred_date: date
    preferred_time_window: Optional[TimeWindow] = None
    appointment_type: AppointmentType = AppointmentType.INBOUND
    operation_type: OperationType = OperationType.RECEIVING
    priority: Priority = Priority.NORMAL
    expected_duration: Optional[int] = Field(None, gt=0, description="Minutes")
    special_requirements: SpecialRequirements = Field(default_factory=SpecialRequirements)

    carrier: Optional[str] = Field(None, max_length=100)
    trailer_number: Optional[str] = Field(None, max_length=50)
    driver_name: Optional[str] = Field(None, max_length=100)
    driver_phone: Optional[str] = Field(None, max_length=30)
    purchase_order_number: Optional[str] = Field(None, max_length=50)
    order_numbers: Optional[List[str]] = None
    notes: Optional[str] = None


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to another date / window."""
    new_date: date
    preferred_time_window: Optional[TimeWindow] = None
    reason: Optional[str] = None


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""
    reason: str = Field(..., min_length=1)


class AppointmentResponse(BaseModel):
    """Response schema for dock appointment."""
    id: UUID
    tenant_id: UUID
    warehouse_id: UUID
    appointment_number: str
    appointment_type: AppointmentType
    operation_type: OperationType
    status: AppointmentStatus
    priority: Priority
    dock_number: str
    scheduled_date: date
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    expected_duration: int
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_duration: Optional[int] = None
    is_late: bool
    delay_minutes: int
    special_requirements: Dict[str, Any] = {}
    carrier: Optional[str] = None
    trailer_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    purchase_order_number: Optional[str] = None
    order_numbers: Optional[List[str]] = None
    reschedule_history: List[Dict[str, Any]] = []
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    """Paginated appointment list."""
    items: List[AppointmentResponse]
    total: int
    skip: int
    limit: int


# ============================================================================
# DOCK SCHEDULE SCHEMAS
# ============================================================================

class DockScheduleSlot(BaseModel):
    """One granule of one dock door; derived, never stored."""
    dock_number: str
    slot_date: date
    start_time: datetime
    end_time: datetime
    available: bool
    appointment_id: Optional[UUID] = None
    appointment_number: Optional[str] = None


class DockScheduleResponse(BaseModel):
    """Dock schedule view for a warehouse day."""
    warehouse_id: UUID
    schedule_date: date
    dock_number: Optional[str] = None
    total_slots: int
    available_slots: int
    slots: List[DockScheduleSlot]


# ============================================================================
# TRAILER SCHEMAS
# ============================================================================

class ContentLine(BaseModel):
    """Declared trailer content."""
    description: str
    quantity: float
    weight: Optional[float] = None


class TrailerBase(BaseModel):
    """Base schema for trailer."""
    trailer_number: str = Field(..., max_length=50)
    license_plate: Optional[str] = Field(None, max_length=30)
    trailer_type: TrailerType = TrailerType.DRY_VAN
    carrier: Optional[str] = Field(None, max_length=100)
    driver_name: Optional[str] = Field(None, max_length=100)
    driver_phone: Optional[str] = Field(None, max_length=30)
    load_type: Optional[LoadType] = None
    seal_number: Optional[str] = Field(None, max_length=50)
    temperature: Optional[float] = None
    contents: Optional[List[ContentLine]] = None
    notes: Optional[str] = None


class TrailerArrival(TrailerBase):
    """Gate arrival of a trailer (no dock or yard spot yet)."""
    warehouse_id: UUID
    appointment_id: Optional[UUID] = None


class TrailerCheckIn(TrailerBase):
    """
    Check-in of a trailer.

    Either references a trailer registered at the gate (trailer_id) or
    creates the visit record. A dock_number puts the trailer at the dock,
    a yard_location (code) parks it in the yard.
    """
    warehouse_id: UUID
    trailer_id: Optional[UUID] = None
    trailer_number: Optional[str] = Field(None, max_length=50)
    appointment_id: Optional[UUID] = None
    dock_number: Optional[str] = Field(None, max_length=20)
    yard_location: Optional[str] = Field(None, max_length=30)
    inspection_notes: Optional[str] = None

    @model_validator(mode="after")
    def check_identity(self):
        if self.trailer_id is None and not self.trailer_number:
            raise ValueError("trailer_id or trailer_number is required")
        if self.dock_number and self.yard_location:
            raise ValueError("Provide either dock_number or yard_location, not both")
        return self


class TrailerCheckOut(BaseModel):
    """Schema for checking a trailer out."""
    notes: Optional[str] = None


class TrailerResponse(BaseModel):
    """Response schema for trailer."""
    id: UUID
    tenant_id: UUID
    warehouse_id: UUID
    trailer_number: str
    license_plate: Optional[str] = None
    trailer_type: TrailerType
    carrier: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    load_type: Optional[LoadType] = None
    seal_number: Optional[str] = None
    temperature: Optional[float] = None
    contents: Optional[List[Dict[str, Any]]] = None
    inspection_notes: Optional[str] = None
    status: TrailerStatus
    current_location: Optional[str] = None
    appointment_id: Optional[UUID] = None
    arrival_time: Optional[datetime] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    dwell_time_hours: Optional[float] = None
    checked_in_by: Optional[str] = None
    checked_out_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CheckInResult(BaseModel):
    """Outcome of a trailer check-in."""
    trailer: TrailerResponse
    appointment: Optional[AppointmentResponse] = None
    assigned_location: Optional[str] = None
    check_in_time: datetime
    is_late: bool = False
    delay_minutes: int = 0


class CheckOutResult(BaseModel):
    """Outcome of a trailer check-out; detention_charge is informational."""
    trailer: TrailerResponse
    check_out_time: datetime
    dwell_time_hours: float
    detention_charge: float


# ============================================================================
# YARD MOVE SCHEMAS
# ============================================================================

class YardMoveCreate(BaseModel):
    """Schema for requesting a yard move."""
    trailer_id: UUID
    to_location: str = Field(..., max_length=30)
    move_reason: YardMoveReason = YardMoveReason.YARD_REORGANIZATION
    priority: Priority = Priority.NORMAL
    assigned_operator: Optional[str] = Field(None, max_length=100)
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class YardMoveExecute(BaseModel):
    """Schema for executing a yard move."""
    operator_id: str = Field(..., min_length=1, max_length=100)


class YardMoveResponse(BaseModel):
    """Response schema for yard move."""
    id: UUID
    tenant_id: UUID
    warehouse_id: UUID
    move_number: str
    trailer_id: UUID
    from_location: Optional[str] = None
    to_location: str
    move_reason: YardMoveReason
    status: YardMoveStatus
    priority: Priority
    requested_time: datetime
    scheduled_time: Optional[datetime] = None
    started_time: Optional[datetime] = None
    completed_time: Optional[datetime] = None
    assigned_operator: Optional[str] = None
    requested_by: Optional[str] = None
    duration: Optional[int] = None
    distance: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# CONFIGURATION SCHEMAS
# ============================================================================

class YardConfigUpdate(BaseModel):
    """Per-warehouse overrides; omitted fields keep the application default."""
    dock_count: Optional[int] = Field(None, ge=1, le=200)
    operating_start_hour: Optional[int] = Field(None, ge=0, le=23)
    operating_end_hour: Optional[int] = Field(None, ge=1, le=24)
    timezone: Optional[str] = Field(None, max_length=50)
    detention_free_hours: Optional[float] = Field(None, ge=0)
    detention_rate_per_hour: Optional[float] = Field(None, ge=0)
    on_time_grace_minutes: Optional[int] = Field(None, ge=0)
    late_alert_threshold_minutes: Optional[int] = Field(None, ge=0)
    yard_spot_cost_per_day: Optional[float] = Field(None, ge=0)


class YardPolicy(BaseModel):
    """Effective yard policy for a warehouse."""
    warehouse_id: UUID
    dock_count: int
    operating_start_hour: int
    operating_end_hour: int
    timezone: str
    granule_minutes: int
    detention_free_hours: float
    detention_rate_per_hour: float
    on_time_grace_minutes: int
    late_alert_threshold_minutes: int
    yard_spot_cost_per_day: float
    is_default: bool = True

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ============================================================================
# ANALYTICS SCHEMAS
# ============================================================================

class TrailerStatusCounts(BaseModel):
    arrived: int = 0
    at_dock: int = 0
    in_yard: int = 0
    departed: int = 0


class DockUtilization(BaseModel):
    total_docks: int = 0
    occupied_docks: int = 0
    utilization_rate: float = 0.0
    upcoming_appointments: int = 0


class YardUtilization(BaseModel):
    total_spots: int = 0
    occupied_spots: int = 0
    utilization_rate: float = 0.0


class DwellTimeStats(BaseModel):
    overall: float = 0.0
    by_operation_type: Dict[str, float] = {}


class OnTimePerformance(BaseModel):
    appointments_on_time: int = 0
    appointments_late: int = 0
    on_time_rate: float = 0.0
    average_delay: float = 0.0


class ActiveIssues(BaseModel):
    count: int = 0
    types: Dict[str, int] = {}


class YardSnapshot(BaseModel):
    """Point-in-time view of a warehouse yard for the current operating day."""
    warehouse_id: UUID
    timestamp: datetime
    operating_date: date
    total_trailers: int = 0
    trailers_by_status: TrailerStatusCounts = Field(default_factory=TrailerStatusCounts)
    trailers_by_type: Dict[str, int] = {}
    dock_utilization: DockUtilization = Field(default_factory=DockUtilization)
    yard_utilization: YardUtilization = Field(default_factory=YardUtilization)
    average_dwell_time: DwellTimeStats = Field(default_factory=DwellTimeStats)
    on_time_performance: OnTimePerformance = Field(default_factory=OnTimePerformance)
    active_issues: ActiveIssues = Field(default_factory=ActiveIssues)
    partial_errors: List[str] = []


class YardMetrics(BaseModel):
    average_dwell_time: float
    dock_utilization: float
    yard_utilization: float
    average_wait_time: float


class OptimizationImprovements(BaseModel):
    dwell_time_reduction: float
    wait_time_reduction: float
    throughput_increase: float
    cost_savings: float


class OptimizationAction(BaseModel):
    action: str
    priority: int
    estimated_impact: float
    implementation: str


class OptimizationResult(BaseModel):
    """Heuristic projection. Advisory only, not a solved schedule."""
    warehouse_id: UUID
    optimization_type: str = "flow_optimization"
    model: str
    advisory: bool = True
    current_metrics: YardMetrics
    optimized_metrics: YardMetrics
    improvements: OptimizationImprovements
    action_plan: List[OptimizationAction]


class ReportPeriod(BaseModel):
    start_date: date
    end_date: date


class PeakDay(BaseModel):
    day: date
    trailer_count: int


class DockUtilizationRange(BaseModel):
    average: float = 0.0
    peak: float = 0.0
    lowest: float = 0.0


class UtilizationReport(BaseModel):
    """Yard utilization over a date range."""
    warehouse_id: UUID
    period: ReportPeriod
    total_appointments: int
    total_trailers: int
    average_daily_trailers: float
    peak_day: PeakDay
    dock_utilization: DockUtilizationRange
    on_time_performance: float
    average_dwell_time: float
    detention_costs: float
    recommendations: List[str] = []
