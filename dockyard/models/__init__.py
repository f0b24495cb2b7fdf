from dockyard.models.yard import (
    YardLocationType,
    DockDoorType,
    TrailerStatus,
    TrailerType,
    LoadType,
    AppointmentStatus,
    AppointmentType,
    OperationType,
    Priority,
    YardMoveStatus,
    YardMoveReason,
    YardLocation,
    DockDoor,
    Trailer,
    DockAppointment,
    YardMove,
    WarehouseYardConfig,
    YardSequence,
)

__all__ = [
    "YardLocationType",
    "DockDoorType",
    "TrailerStatus",
    "TrailerType",
    "LoadType",
    "AppointmentStatus",
    "AppointmentType",
    "OperationType",
    "Priority",
    "YardMoveStatus",
    "YardMoveReason",
    "YardLocation",
    "DockDoor",
    "Trailer",
    "DockAppointment",
    "YardMove",
    "WarehouseYardConfig",
    "YardSequence",
]
