"""
Appointment schema and status state machine.

Status lifecycle (strict mode):
  Pending → InProgress → Completed
  Pending | InProgress → Cancelled
  Custom is an open label reachable from the active states and able to
  return to any of them. Completed and Cancelled are terminal.

Permissive mode accepts any change, matching the admin panel's plain
status selector.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any

from ..kanban.schema import parse_dt


class AppointmentStatus(Enum):
    """Valid appointment statuses."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CUSTOM = "custom"

    @classmethod
    def from_str(cls, value: str) -> "AppointmentStatus":
        key = str(value).strip()
        if key in _LABELS:
            return _LABELS[key]
        try:
            return cls(key.lower().replace(" ", "_").replace("-", "_"))
        except ValueError:
            raise ValueError(f"Unknown appointment status: {value!r}")

    @property
    def label(self) -> str:
        return _DISPLAY[self]


# Labels shown by the Portuguese admin panel
_LABELS = {
    "Pendente": AppointmentStatus.PENDING,
    "Em Andamento": AppointmentStatus.IN_PROGRESS,
    "Concluído": AppointmentStatus.COMPLETED,
    "Cancelado": AppointmentStatus.CANCELLED,
    "Personalizado": AppointmentStatus.CUSTOM,
}
_DISPLAY = {status: label for label, status in _LABELS.items()}

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.CUSTOM,
    },
    AppointmentStatus.IN_PROGRESS: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.CUSTOM,
    },
    AppointmentStatus.CUSTOM: {
        AppointmentStatus.PENDING,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.COMPLETED: set(),   # Terminal
    AppointmentStatus.CANCELLED: set(),   # Terminal
}


def can_transition(current: AppointmentStatus, new: AppointmentStatus, strict: bool = True) -> bool:
    if current == new:
        return False
    if not strict:
        return True
    return new in ALLOWED_TRANSITIONS[current]


@dataclass
class Appointment:
    """A booked service slot for a client."""

    appointment_id: str
    client_name: str
    start_time: datetime
    end_time: datetime
    client_phone: str = ""
    service_name: str = ""
    attendant: str = ""
    source: str = "admin"          # "admin" or "whatsapp"
    status: AppointmentStatus = AppointmentStatus.PENDING
    custom_label: str = ""         # free text shown when status is CUSTOM
    status_history: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.end_time <= self.start_time:
            raise ValueError("Appointment must end after it starts")
        if self.source not in ("admin", "whatsapp"):
            raise ValueError(f"Invalid appointment source: {self.source}")

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def transition_to(
        self,
        new_status: AppointmentStatus,
        reason: str = "",
        changed_by: str = "",
        strict: bool = True,
    ) -> bool:
        """Attempt a status change. Returns True if successful."""
        if not can_transition(self.status, new_status, strict=strict):
            return False
        self.status_history.append({
            "from_status": self.status.value,
            "to_status": new_status.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "reason": reason,
            "changed_by": changed_by,
        })
        self.status = new_status
        self.updated_at = datetime.now(timezone.utc)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "service_name": self.service_name,
            "attendant": self.attendant,
            "source": self.source,
            "status": self.status.value,
            "custom_label": self.custom_label,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status_history": self.status_history,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Appointment":
        now = datetime.now(timezone.utc)
        return cls(
            appointment_id=data["appointment_id"],
            client_name=data.get("client_name", ""),
            start_time=parse_dt(data["start_time"]),
            end_time=parse_dt(data["end_time"]),
            client_phone=data.get("client_phone", ""),
            service_name=data.get("service_name", ""),
            attendant=data.get("attendant", ""),
            source=data.get("source", "admin"),
            status=AppointmentStatus.from_str(data.get("status", "pending")),
            custom_label=data.get("custom_label", ""),
            status_history=list(data.get("status_history") or []),
            created_at=parse_dt(data.get("created_at")) or now,
            updated_at=parse_dt(data.get("updated_at")) or now,
        )
