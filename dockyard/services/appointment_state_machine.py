"""
Dock Appointment State Machine

All appointment status changes go through this module.

    scheduled -> confirmed -> checked_in -> in_progress -> completed
        |            |            |
        +------------+------------+--> cancelled

A scheduled appointment may also be checked in directly (no confirmation)
and a checked-in appointment may be completed directly when the trailer
departs before dock work is recorded. completed and cancelled are terminal.
"""
from typing import Dict, List, Optional
from datetime import datetime, timezone

from dockyard.core.exceptions import ConflictError
from dockyard.models.yard import AppointmentStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
APPOINTMENT_TRANSITIONS: Dict[str, List[str]] = {
    AppointmentStatus.SCHEDULED.value: [
        AppointmentStatus.CONFIRMED.value,      # Carrier confirmed
        AppointmentStatus.CHECKED_IN.value,     # Trailer arrived
        AppointmentStatus.CANCELLED.value,
    ],
    AppointmentStatus.CONFIRMED.value: [
        AppointmentStatus.CHECKED_IN.value,
        AppointmentStatus.CANCELLED.value,
    ],
    AppointmentStatus.CHECKED_IN.value: [
        AppointmentStatus.IN_PROGRESS.value,    # Dock work started
        AppointmentStatus.COMPLETED.value,      # Trailer checked out
        AppointmentStatus.CANCELLED.value,
    ],
    AppointmentStatus.IN_PROGRESS.value: [
        AppointmentStatus.COMPLETED.value,
    ],
    AppointmentStatus.COMPLETED.value: [],      # Terminal
    AppointmentStatus.CANCELLED.value: [],      # Terminal
}

# Statuses from which the slot may still be moved
RESCHEDULABLE_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CONFIRMED.value,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in APPOINTMENT_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Statuses reachable from current status."""
    return APPOINTMENT_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises ConflictError if invalid.
    """
    if current_status == new_status:
        raise ConflictError(
            f"Appointment is already '{current_status}'",
            details={"status": current_status}
        )

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise ConflictError(
                f"Appointment in '{current_status}' status cannot be modified. This is a terminal state.",
                details={"status": current_status, "requested": new_status}
            )
        raise ConflictError(
            f"Cannot change appointment from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            details={"status": current_status, "requested": new_status, "allowed": allowed}
        )


def can_reschedule(status: str) -> bool:
    return status in RESCHEDULABLE_STATUSES


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_appointment(
    appointment,
    new_status: str,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Move an appointment to a new status and stamp the matching audit fields.

    Raises:
        ConflictError: If the transition is not allowed
    """
    validate_transition(appointment.status, new_status)
    appointment.status = new_status
    now = now or datetime.now(timezone.utc)

    if new_status == AppointmentStatus.CHECKED_IN.value:
        appointment.actual_start_time = now
    elif new_status == AppointmentStatus.COMPLETED.value:
        appointment.actual_end_time = now
        if appointment.actual_start_time:
            elapsed = now - appointment.actual_start_time
            appointment.actual_duration = round(elapsed.total_seconds() / 60)
    elif new_status == AppointmentStatus.CANCELLED.value:
        appointment.cancelled_at = now
        appointment.cancelled_by = actor
