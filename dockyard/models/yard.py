"""
Yard & Dock Scheduling Models.

This module holds the persisted state of the scheduling engine:
- YardLocation: Parking spots, staging and waiting areas with capacity
- DockDoor: Dock door configuration (type and capabilities)
- Trailer: One physical trailer visit, from arrival to departure
- DockAppointment: Reservation of one dock door for one time window
- YardMove: Relocation task for a trailer between yard locations
- WarehouseYardConfig: Per-warehouse operating and detention policy
- YardSequence: Date-scoped counters for appointment / move numbers

Dock schedule slots are derived from appointments and never stored.
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy import (
    String, Boolean, Integer, Text, Float, Date, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from dockyard.database import Base
from dockyard.db_types import JSONType, UUIDType, UTCDateTime


# ============================================================================
# ENUMS
# ============================================================================

class YardLocationType(str, Enum):
    """Types of yard locations."""
    PARKING = "parking"                 # Trailer parking spot
    STAGING = "staging"                 # Staging lane near the docks
    WAITING = "waiting"                 # Waiting area at the gate
    DROP_YARD = "drop_yard"             # Drop trailer pool


class DockDoorType(str, Enum):
    """Types of dock doors."""
    INBOUND = "INBOUND"                 # Receiving only
    OUTBOUND = "OUTBOUND"               # Shipping only
    DUAL = "DUAL"                       # Both inbound/outbound
    CROSS_DOCK = "CROSS_DOCK"           # Cross-docking


class TrailerStatus(str, Enum):
    """Where a trailer visit currently stands."""
    ARRIVED = "arrived"
    AT_DOCK = "at_dock"
    IN_YARD = "in_yard"
    DEPARTED = "departed"


class TrailerType(str, Enum):
    """Types of trailers."""
    DRY_VAN = "dry_van"
    REEFER = "reefer"
    FLATBED = "flatbed"
    TANKER = "tanker"
    CONTAINER = "container"


class LoadType(str, Enum):
    """Trailer load state at arrival."""
    FULL = "full"
    PARTIAL = "partial"
    EMPTY = "empty"
    LTL = "ltl"


class AppointmentStatus(str, Enum):
    """Dock appointment status."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentType(str, Enum):
    """Type of dock appointment."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    CROSS_DOCK = "cross_dock"
    RETURN = "return"


class OperationType(str, Enum):
    """Dock operation performed during the appointment."""
    RECEIVING = "receiving"
    SHIPPING = "shipping"
    BOTH = "both"


class Priority(str, Enum):
    """Appointment / move priority."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class YardMoveStatus(str, Enum):
    """Status of yard move."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class YardMoveReason(str, Enum):
    """Why a trailer is being relocated."""
    TO_DOCK = "to_dock"
    FROM_DOCK = "from_dock"
    YARD_REORGANIZATION = "yard_reorganization"
    STAGING = "staging"
    DEPARTURE_PREP = "departure_prep"


# ============================================================================
# MODELS
# ============================================================================

class YardLocation(Base):
    """
    Yard location definition.

    A physical spot with capacity; 0 <= current_occupancy <= capacity.
    Locations are deactivated, never deleted.
    """
    __tablename__ = "yard_locations"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'warehouse_id', 'location_code', name='uq_yard_location_code'),
        Index('ix_yard_locations_active', 'tenant_id', 'warehouse_id', 'is_active'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    # Location Identity
    location_code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="e.g., PARK-A1, STAGE-01"
    )
    location_name: Mapped[str] = mapped_column(String(100), nullable=False)
    location_type: Mapped[str] = mapped_column(
        String(30),
        default=YardLocationType.PARKING.value,
        nullable=False
    )
    zone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Capacity
    capacity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_occupancy: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Yard-plan coordinates in metres, used for move distance
    pos_x: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pos_y: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Capabilities
    has_refrigeration: Mapped[bool] = mapped_column(Boolean, default=False)
    is_hazmat_approved: Mapped[bool] = mapped_column(Boolean, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.current_occupancy)

    @property
    def is_full(self) -> bool:
        return self.current_occupancy >= self.capacity


class DockDoor(Base):
    """
    Dock door configuration.

    Only active doors are considered by the slot allocator; door_number
    ordering defines the allocator's dock precedence.
    """
    __tablename__ = "dock_doors"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'warehouse_id', 'door_number', name='uq_dock_door_number'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    door_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="e.g., DOCK-01"
    )
    door_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    door_type: Mapped[str] = mapped_column(
        String(20),
        default=DockDoorType.DUAL.value,
        nullable=False
    )

    # Capabilities
    has_refrigeration: Mapped[bool] = mapped_column(Boolean, default=False)
    is_hazmat_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    supports_oversized: Mapped[bool] = mapped_column(Boolean, default=False)
    has_leveler: Mapped[bool] = mapped_column(Boolean, default=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


class Trailer(Base):
    """
    One physical trailer visit.

    Created on arrival or check-in, closed (status=departed) on check-out.
    current_location holds either a dock door number or a yard location code.
    """
    __tablename__ = "trailers"
    __table_args__ = (
        Index('ix_trailers_status', 'tenant_id', 'warehouse_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    # Identity
    trailer_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    license_plate: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    trailer_type: Mapped[str] = mapped_column(
        String(20),
        default=TrailerType.DRY_VAN.value,
        nullable=False
    )

    # Carrier & Driver
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    driver_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    driver_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Load
    load_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    seal_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    contents: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSONType, nullable=True)
    inspection_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status & Location
    status: Mapped[str] = mapped_column(
        String(20),
        default=TrailerStatus.ARRIVED.value,
        nullable=False
    )
    current_location: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    appointment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    # Timeline
    arrival_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    check_in_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    check_out_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    dwell_time_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    checked_in_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    checked_out_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_on_site(self) -> bool:
        return self.status != TrailerStatus.DEPARTED.value


class DockAppointment(Base):
    """
    Dock appointment.

    Reserves one dock door for [scheduled_start_time, scheduled_end_time).
    No two non-cancelled appointments on the same dock may overlap.
    """
    __tablename__ = "dock_appointments"
    __table_args__ = (
        Index('ix_dock_appointments_calendar', 'tenant_id', 'warehouse_id', 'scheduled_date'),
        Index('ix_dock_appointments_status', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    appointment_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="APPT-YYYYMMDD-NNNN"
    )
    appointment_type: Mapped[str] = mapped_column(
        String(20),
        default=AppointmentType.INBOUND.value,
        nullable=False
    )
    operation_type: Mapped[str] = mapped_column(
        String(20),
        default=OperationType.RECEIVING.value,
        nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=AppointmentStatus.SCHEDULED.value,
        nullable=False
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        default=Priority.NORMAL.value,
        nullable=False
    )

    # Scheduling
    dock_number: Mapped[str] = mapped_column(String(20), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    scheduled_end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expected_duration: Mapped[int] = mapped_column(Integer, nullable=False, comment="Minutes")

    # Actuals
    actual_start_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    actual_end_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    actual_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Minutes")
    is_late: Mapped[bool] = mapped_column(Boolean, default=False)
    delay_minutes: Mapped[int] = mapped_column(Integer, default=0)

    special_requirements: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        comment="refrigerated, hazmat, liftgate_required, oversized, live_unload, drop_trailer"
    )

    # Carrier
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    trailer_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    driver_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    driver_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # References
    purchase_order_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    order_numbers: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)

    # Audit
    reschedule_history: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED.value


class YardMove(Base):
    """
    Relocation task for one trailer.

    from_location is null for a first placement. Terminal on completed.
    """
    __tablename__ = "yard_moves"
    __table_args__ = (
        Index('ix_yard_moves_status', 'tenant_id', 'warehouse_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    move_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="YM-YYYYMMDD-NNNN"
    )
    trailer_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    from_location: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_location: Mapped[str] = mapped_column(String(30), nullable=False)
    move_reason: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=YardMoveStatus.PENDING.value,
        nullable=False
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        default=Priority.NORMAL.value,
        nullable=False
    )

    # Timeline
    requested_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    scheduled_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    started_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    assigned_operator: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    requested_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Minutes")
    distance: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="Metres")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


class WarehouseYardConfig(Base):
    """
    Per-warehouse yard policy.

    Null columns fall back to the application settings.
    """
    __tablename__ = "warehouse_yard_configs"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'warehouse_id', name='uq_warehouse_yard_config'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)

    dock_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    operating_start_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    operating_end_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    detention_free_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    detention_rate_per_hour: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    on_time_grace_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    late_alert_threshold_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    yard_spot_cost_per_day: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


class YardSequence(Base):
    """Date-scoped counter backing appointment and move numbers."""
    __tablename__ = "yard_sequences"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'prefix', 'sequence_date', name='uq_yard_sequence'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    sequence_date: Mapped[date] = mapped_column(Date, nullable=False)
    current_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )
