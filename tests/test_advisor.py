# tests/test_advisor.py
from datetime import datetime, timedelta, timezone

from clinicqueue import models
from clinicqueue.models import AppointmentStatus
from clinicqueue.schemas import Actor, SuggestionType
from clinicqueue.services import advisor, doctor_service

from conftest import DAY

NOW = datetime(2025, 6, 5, 4, 0, tzinfo=timezone.utc)


def appointment(id, token, status=AppointmentStatus.in_queue, position=None, started=None, duration=None):
    return models.Appointment(
        id=id,
        doctor_id=1,
        patient_id=f"p{id}",
        slot_date=DAY,
        slot_time="09:00",
        token_number=token,
        queue_position=position if position is not None else token,
        status=status,
        actual_start_time=started,
        consultation_duration=duration,
    )


def test_no_show_pulls_head_of_queue():
    finished = appointment(1, 1, status=AppointmentStatus.no_show)
    waiting = [appointment(2, 2, position=1), appointment(3, 3, position=2)]

    suggestions = advisor.build_suggestions(finished, waiting, 15, NOW)

    assert len(suggestions) == 1
    assert suggestions[0].type == SuggestionType.pull_next
    assert suggestions[0].appointment_id == 2
    assert suggestions[0].time_saved is None


def test_short_consultation_reports_time_saved():
    finished = appointment(1, 1, status=AppointmentStatus.completed, started=NOW - timedelta(minutes=4), duration=4)
    waiting = [appointment(2, 2, position=1)]

    suggestions = advisor.build_suggestions(finished, waiting, 15, NOW)

    assert [(s.type, s.time_saved) for s in suggestions] == [(SuggestionType.pull_next, 11)]


def test_regular_consultation_has_no_pull_forward():
    finished = appointment(1, 1, status=AppointmentStatus.completed, started=NOW - timedelta(minutes=8), duration=8)
    waiting = [appointment(2, 2, position=1)]

    assert advisor.build_suggestions(finished, waiting, 15, NOW) == []


def test_running_consultation_is_not_early():
    finished = appointment(1, 1, status=AppointmentStatus.in_consult, started=NOW - timedelta(minutes=2))
    waiting = [appointment(2, 2, position=1)]

    assert advisor.build_suggestions(finished, waiting, 15, NOW) == []


def test_nothing_to_pull_from_empty_queue():
    finished = appointment(1, 1, status=AppointmentStatus.no_show)

    assert advisor.build_suggestions(finished, [], 15, NOW) == []


def test_gap_at_front_suggests_follow_up_promotion():
    waiting = [appointment(3, 3, position=3), appointment(4, 4, position=4)]

    suggestions = advisor.build_suggestions(None, waiting, 15, NOW)

    assert len(suggestions) == 1
    assert suggestions[0].type == SuggestionType.move_followup
    assert suggestions[0].appointment_id == 3
    assert suggestions[0].suggested_position == 1


def test_follow_up_promotion_skips_head_within_first_two_positions():
    waiting = [appointment(2, 2, position=2), appointment(5, 5, position=5)]

    suggestions = advisor.build_suggestions(None, waiting, 15, NOW)

    assert [s.appointment_id for s in suggestions] == [5]


def test_no_promotion_without_gap():
    waiting = [appointment(2, 2, position=1), appointment(3, 3, position=2), appointment(4, 4, position=3)]

    assert advisor.build_suggestions(None, waiting, 15, NOW) == []


def test_heuristics_are_independent():
    finished = appointment(1, 1, status=AppointmentStatus.no_show)
    waiting = [appointment(2, 2, position=2), appointment(3, 3, position=3)]

    types = [s.type for s in advisor.build_suggestions(finished, waiting, 15, NOW)]

    assert types == [SuggestionType.pull_next, SuggestionType.move_followup]


def test_elapsed_minutes():
    assert advisor.elapsed_minutes(appointment(1, 1), NOW) is None
    assert advisor.elapsed_minutes(appointment(1, 1, started=NOW - timedelta(minutes=9), duration=6), NOW) == 6
    assert advisor.elapsed_minutes(appointment(1, 1, started=NOW - timedelta(minutes=9)), NOW) == 9


def test_suggest_reads_the_live_queue(db, doctor, book, clock):
    first = book(doctor, "09:00", patient_id="p1")
    second = book(doctor, "09:15", patient_id="p2")
    actor = Actor.doctor(doctor.id)
    doctor_service.start_consultation(db, actor, first.id, clock=clock)
    doctor_service.complete_consultation(db, actor, first.id, mark_no_show=True, clock=clock)

    suggestions = advisor.suggest(db, doctor.id, DAY, first.id, now=clock())

    assert [s.appointment_id for s in suggestions if s.type == SuggestionType.pull_next] == [second.id]


def test_suggest_degrades_to_empty(db):
    assert advisor.suggest(db, 404, DAY, None) == []
