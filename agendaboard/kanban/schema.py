"""
Kanban board schema.

Board layout:
  Column (ordered by position, optional WIP limit)
    └── Card (ordered by position inside its column)
          └── CardComment (newest first)

Positions are dense: cards in a column always hold 0..n-1, and columns
hold 0..m-1 across the board. Rows use the snake_case shape stored by the
persistence backends (company_id, column_id, limit_wip, ...).
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any
import json


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def parse_dt(value: Any) -> Optional[datetime]:
    """Read an ISO string or datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Priority(Enum):
    """Card priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_str(cls, value: str) -> "Priority":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MEDIUM


HIGH_PRIORITIES = frozenset({Priority.HIGH, Priority.URGENT})

DEFAULT_COLUMN_COLOR = "#6B7280"


@dataclass
class Column:
    """One board column."""

    column_id: str
    name: str
    position: int = 0
    color: str = DEFAULT_COLUMN_COLOR
    limit_wip: Optional[int] = None   # None or 0 = unlimited
    description: str = ""
    is_default: bool = False
    is_done: bool = False             # terminal column: cards here are completed
    version: int = 0                  # bumped on every committed placement change
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def has_wip_limit(self) -> bool:
        return bool(self.limit_wip) and self.limit_wip > 0

    def to_row(self, tenant_id: str) -> Dict[str, Any]:
        return {
            "id": self.column_id,
            "company_id": tenant_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "position": self.position,
            "is_default": self.is_default,
            "is_done": self.is_done,
            "limit_wip": self.limit_wip,
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Column":
        limit = row.get("limit_wip")
        return cls(
            column_id=str(row["id"]),
            name=row.get("name") or "",
            position=int(row.get("position") or 0),
            color=row.get("color") or DEFAULT_COLUMN_COLOR,
            limit_wip=int(limit) if limit is not None else None,
            description=row.get("description") or "",
            is_default=bool(row.get("is_default", False)),
            is_done=bool(row.get("is_done", False)),
            version=int(row.get("version") or 0),
            created_at=parse_dt(row.get("created_at")) or utc_now(),
            updated_at=parse_dt(row.get("updated_at")) or utc_now(),
        )


@dataclass
class Card:
    """One card, owned by exactly one column."""

    card_id: str
    column_id: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    position: int = 0
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Links to the rest of the panel
    appointment_id: Optional[str] = None
    client_name: str = ""
    client_phone: str = ""
    assigned_to: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_high_priority(self) -> bool:
        return self.priority in HIGH_PRIORITIES

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Due strictly before now and not completed."""
        if self.due_date is None or self.completed_at is not None:
            return False
        return self.due_date < (now or utc_now())

    def to_row(self, tenant_id: str) -> Dict[str, Any]:
        return {
            "id": self.card_id,
            "company_id": tenant_id,
            "column_id": self.column_id,
            "appointment_id": self.appointment_id,
            "title": self.title,
            "description": self.description,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "assigned_to": self.assigned_to,
            "priority": self.priority.value,
            "tags": list(self.tags),
            "position": self.position,
            "due_date": iso(self.due_date),
            "completed_at": iso(self.completed_at),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Card":
        tags = row.get("tags") or []
        if isinstance(tags, str):
            try:
                tags = json.loads(tags)
            except json.JSONDecodeError:
                tags = []
        return cls(
            card_id=str(row["id"]),
            column_id=str(row["column_id"]),
            title=row.get("title") or "",
            description=row.get("description") or "",
            priority=Priority.from_str(row.get("priority") or "medium"),
            position=int(row.get("position") or 0),
            due_date=parse_dt(row.get("due_date")),
            completed_at=parse_dt(row.get("completed_at")),
            appointment_id=row.get("appointment_id"),
            client_name=row.get("client_name") or "",
            client_phone=row.get("client_phone") or "",
            assigned_to=row.get("assigned_to"),
            tags=tags if isinstance(tags, list) else [],
            created_by=row.get("created_by"),
            created_at=parse_dt(row.get("created_at")) or utc_now(),
            updated_at=parse_dt(row.get("updated_at")) or utc_now(),
        )


@dataclass(frozen=True)
class CardPlacement:
    """Where a card sits after a mutation; one persisted row update."""
    card_id: str
    column_id: str
    position: int
    completed_at: Optional[datetime] = None


@dataclass
class CardMovement:
    """Audit record of a card changing columns."""
    movement_id: str
    card_id: str
    to_column_id: str
    from_column_id: Optional[str] = None
    moved_by: Optional[str] = None
    notes: str = ""
    moved_at: datetime = field(default_factory=utc_now)

    def to_row(self, tenant_id: str) -> Dict[str, Any]:
        return {
            "id": self.movement_id,
            "company_id": tenant_id,
            "card_id": self.card_id,
            "from_column_id": self.from_column_id,
            "to_column_id": self.to_column_id,
            "moved_by": self.moved_by,
            "moved_at": iso(self.moved_at),
            "notes": self.notes,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CardMovement":
        return cls(
            movement_id=str(row["id"]),
            card_id=str(row["card_id"]),
            to_column_id=str(row["to_column_id"]),
            from_column_id=row.get("from_column_id"),
            moved_by=row.get("moved_by"),
            notes=row.get("notes") or "",
            moved_at=parse_dt(row.get("moved_at")) or utc_now(),
        )


@dataclass
class CardComment:
    """Free-text note left on a card."""
    comment_id: str
    card_id: str
    comment: str
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.comment_id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "comment": self.comment,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CardComment":
        return cls(
            comment_id=str(row["id"]),
            card_id=str(row["card_id"]),
            comment=row.get("comment") or "",
            user_id=row.get("user_id"),
            created_at=parse_dt(row.get("created_at")) or utc_now(),
            updated_at=parse_dt(row.get("updated_at")) or utc_now(),
        )


@dataclass(frozen=True)
class ColumnStats:
    """Read-only summary of one column."""
    column_id: str
    column_name: str
    card_count: int = 0
    high_priority_count: int = 0
    overdue_count: int = 0
    avg_time_in_column: timedelta = timedelta(0)
