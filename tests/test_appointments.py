"""
Tests for appointment statuses and the appointment book.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from agendaboard.appointments.book import AppointmentBook, AppointmentNotFound, InvalidTransition
from agendaboard.appointments.schema import (
    Appointment,
    AppointmentStatus,
    can_transition,
)

S = AppointmentStatus
START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def make(appointment_id="ap-1", start=START, minutes=45, **kwargs):
    return Appointment(
        appointment_id=appointment_id,
        client_name="Ana",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        **kwargs,
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Status parsing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("raw,expected", [
    ("Pendente", S.PENDING),
    ("Em Andamento", S.IN_PROGRESS),
    ("Concluído", S.COMPLETED),
    ("Cancelado", S.CANCELLED),
    ("Personalizado", S.CUSTOM),
    ("in_progress", S.IN_PROGRESS),
    ("In Progress", S.IN_PROGRESS),
    ("COMPLETED", S.COMPLETED),
])
def test_from_str(raw, expected):
    assert AppointmentStatus.from_str(raw) == expected


def test_from_str_unknown():
    with pytest.raises(ValueError):
        AppointmentStatus.from_str("Reagendado")


def test_label():
    assert S.IN_PROGRESS.label == "Em Andamento"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# State machine
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_valid_lifecycle():
    ap = make()
    assert ap.transition_to(S.IN_PROGRESS, changed_by="staff-1")
    assert ap.transition_to(S.COMPLETED)
    assert ap.status == S.COMPLETED
    assert [h["to_status"] for h in ap.status_history] == ["in_progress", "completed"]
    assert ap.status_history[0]["changed_by"] == "staff-1"


def test_cannot_skip_in_progress():
    ap = make()
    assert not ap.transition_to(S.COMPLETED)
    assert ap.status == S.PENDING
    assert ap.status_history == []


@pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELLED])
def test_terminal_states(terminal):
    for target in S:
        assert not can_transition(terminal, target)


def test_custom_can_return():
    assert can_transition(S.CUSTOM, S.PENDING)
    assert can_transition(S.PENDING, S.CUSTOM)


def test_same_status_is_not_a_transition():
    assert not can_transition(S.PENDING, S.PENDING, strict=False)


def test_permissive_mode():
    assert can_transition(S.COMPLETED, S.PENDING, strict=False)
    ap = make(status=S.CANCELLED)
    assert ap.transition_to(S.IN_PROGRESS, strict=False)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Appointment model
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_must_end_after_start():
    with pytest.raises(ValueError):
        make(minutes=0)


def test_invalid_source():
    with pytest.raises(ValueError):
        make(source="email")


def test_duration():
    assert make(minutes=90).duration_minutes == 90


def test_dict_round_trip_keeps_history():
    ap = make(source="whatsapp", service_name="Corte")
    ap.transition_to(S.IN_PROGRESS, reason="client arrived")
    restored = Appointment.from_dict(ap.to_dict())
    assert restored.status == S.IN_PROGRESS
    assert restored.source == "whatsapp"
    assert restored.status_history == ap.status_history
    assert restored.start_time == START


def test_from_dict_accepts_utc_suffix():
    restored = Appointment.from_dict({
        "appointment_id": "ap-9",
        "client_name": "Ana",
        "start_time": "2024-05-01T09:00:00Z",
        "end_time": "2024-05-01T09:45:00Z",
        "created_at": "2024-04-30T18:00:00.000Z",
    })
    assert restored.start_time == START
    assert restored.duration_minutes == 45
    assert restored.created_at.tzinfo is not None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Appointment book
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_book_rejects_duplicates():
    book = AppointmentBook()
    book.add(make())
    with pytest.raises(ValueError):
        book.add(make())


def test_book_unknown_appointment():
    with pytest.raises(AppointmentNotFound, match="ap-9"):
        AppointmentBook().get("ap-9")


def test_update_status_strict():
    book = AppointmentBook()
    book.add(make())
    with pytest.raises(InvalidTransition) as exc:
        book.update_status("ap-1", S.COMPLETED)
    assert exc.value.current == S.PENDING
    assert "in_progress" in str(exc.value)
    assert book.get("ap-1").status == S.PENDING

    book.update_status("ap-1", S.IN_PROGRESS)
    book.update_status("ap-1", S.COMPLETED)
    assert book.get("ap-1").status == S.COMPLETED


def test_update_status_from_terminal():
    book = AppointmentBook()
    book.add(make(status=S.CANCELLED))
    with pytest.raises(InvalidTransition, match="none"):
        book.update_status("ap-1", S.PENDING)


def test_update_status_same_is_noop():
    book = AppointmentBook()
    book.add(make())
    book.update_status("ap-1", S.PENDING)
    assert book.get("ap-1").status_history == []


def test_update_status_permissive():
    book = AppointmentBook(strict_transitions=False)
    book.add(make())
    book.update_status("ap-1", S.COMPLETED)
    book.update_status("ap-1", S.PENDING)
    assert book.get("ap-1").status == S.PENDING


def test_custom_label():
    book = AppointmentBook()
    book.add(make())
    ap = book.update_status("ap-1", S.CUSTOM, custom_label="Aguardando pagamento")
    assert ap.custom_label == "Aguardando pagamento"


def test_listing():
    book = AppointmentBook()
    book.add(make("late", start=START + timedelta(hours=3)))
    book.add(make("early", start=START))
    book.add(make("tomorrow", start=START + timedelta(days=1)))
    book.update_status("early", S.IN_PROGRESS)

    assert [a.appointment_id for a in book.list_for_day(date(2024, 5, 1))] == ["early", "late"]
    assert [a.appointment_id for a in book.list_by_status(S.PENDING)] == ["late", "tomorrow"]
