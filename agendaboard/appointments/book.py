"""
In-memory appointment book for one tenant.

update_status() is the only path that changes a status; in strict mode a
transition outside ALLOWED_TRANSITIONS raises InvalidTransition instead of
silently returning False.
"""
import logging
from datetime import date
from typing import Dict, List, Optional

from .schema import Appointment, AppointmentStatus, ALLOWED_TRANSITIONS

logger = logging.getLogger(__name__)


class AppointmentNotFound(Exception):
    def __init__(self, appointment_id: str):
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")


class InvalidTransition(Exception):
    """Raised when a status change is not allowed in strict mode."""

    def __init__(self, appointment_id: str, current: AppointmentStatus, requested: AppointmentStatus):
        self.appointment_id = appointment_id
        self.current = current
        self.requested = requested
        allowed = sorted(s.value for s in ALLOWED_TRANSITIONS[current])
        super().__init__(
            f"Cannot change appointment {appointment_id} from {current.value} "
            f"to {requested.value} (allowed: {', '.join(allowed) or 'none'})"
        )


class AppointmentBook:
    """Holds appointments and enforces the status state machine."""

    def __init__(self, strict_transitions: bool = True):
        self.strict_transitions = strict_transitions
        self._appointments: Dict[str, Appointment] = {}

    def add(self, appointment: Appointment) -> Appointment:
        if appointment.appointment_id in self._appointments:
            raise ValueError(f"Appointment {appointment.appointment_id} already exists")
        self._appointments[appointment.appointment_id] = appointment
        return appointment

    def get(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        reason: str = "",
        changed_by: str = "",
        custom_label: Optional[str] = None,
    ) -> Appointment:
        """Change an appointment's status. Setting the current status is a no-op."""
        appointment = self.get(appointment_id)
        if appointment.status == status:
            return appointment
        if not appointment.transition_to(
            status, reason=reason, changed_by=changed_by, strict=self.strict_transitions
        ):
            raise InvalidTransition(appointment_id, appointment.status, status)
        if status == AppointmentStatus.CUSTOM and custom_label is not None:
            appointment.custom_label = custom_label
        logger.info(f"Appointment {appointment_id} -> {status.value}")
        return appointment

    def list_by_status(self, status: AppointmentStatus) -> List[Appointment]:
        return sorted(
            (a for a in self._appointments.values() if a.status == status),
            key=lambda a: a.start_time,
        )

    def list_for_day(self, day: date) -> List[Appointment]:
        """Appointments starting on `day`, earliest first."""
        return sorted(
            (a for a in self._appointments.values() if a.start_time.date() == day),
            key=lambda a: a.start_time,
        )
