# tests/test_api.py
import pytest
from httpx import ASGITransport, AsyncClient

from clinicqueue.main import app

from conftest import DAY, headers

API = "/api/v1"


@pytest.fixture
def doctor_id(client):
    response = client.post(f"{API}/admin/doctors", json={"name": "Dr. Api"}, headers=headers("admin"))
    assert response.status_code == 201
    return response.json()["id"]


def book(client, doctor_id, slot_time, patient_id="p1", slot_date=DAY):
    return client.post(
        f"{API}/appointments",
        json={"doctor_id": doctor_id, "slot_date": slot_date, "slot_time": slot_time},
        headers=headers("patient", patient_id),
    )


def test_booking_returns_token_and_position(client, doctor_id):
    first = book(client, doctor_id, "09:00", patient_id="p1")
    second = book(client, doctor_id, "09:15", patient_id="p2")

    assert first.status_code == 201
    assert second.status_code == 201
    body = second.json()
    assert body["token_number"] == 2
    assert body["queue_position"] == 2
    assert body["estimated_wait_time"] == 15
    assert body["status"] == "in-queue"
    assert body["cancelled"] is False


def test_missing_identity_is_unauthorized(client, doctor_id):
    response = client.post(
        f"{API}/appointments",
        json={"doctor_id": doctor_id, "slot_date": DAY, "slot_time": "09:00"},
    )

    assert response.status_code == 401


def test_double_booking_conflicts(client, doctor_id):
    book(client, doctor_id, "09:00", patient_id="p1")

    response = book(client, doctor_id, "09:00", patient_id="p2")

    assert response.status_code == 409


def test_invalid_slot_time_is_rejected(client, doctor_id):
    assert book(client, doctor_id, "9am").status_code == 422


def test_patient_polls_queue_status(client, doctor_id, clock):
    book(client, doctor_id, "09:00", patient_id="p1")
    mine = book(client, doctor_id, "09:15", patient_id="p2").json()
    clock.set_local(9, 5)

    response = client.get(f"{API}/appointments/{mine['id']}/queue-status", headers=headers("patient", "p2"))

    assert response.status_code == 200
    body = response.json()
    assert body["queue_position"] == 2
    assert body["estimated_wait_time"] == 15
    assert body["total_in_queue"] == 2
    assert body["doctor_status"] == "in-clinic"
    assert body["is_next_up"] is False
    assert body["is_delayed"] is False


def test_other_patients_cannot_read_status(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()

    response = client.get(f"{API}/appointments/{mine['id']}/queue-status", headers=headers("patient", "p2"))

    assert response.status_code == 403


def test_unknown_appointment_is_not_found(client):
    response = client.get(f"{API}/appointments/999/queue-status", headers=headers("admin"))

    assert response.status_code == 404


def test_patient_cancels_and_lists(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()

    response = client.post(f"{API}/appointments/{mine['id']}/cancel", headers=headers("patient", "p1"))
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancelled"] is True

    again = client.post(f"{API}/appointments/{mine['id']}/cancel", headers=headers("patient", "p1"))
    assert again.status_code == 409

    listed = client.get(f"{API}/appointments/mine", headers=headers("patient", "p1")).json()
    assert [a["id"] for a in listed] == [mine["id"]]


def test_patient_marks_alert_seen(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()

    response = client.post(f"{API}/appointments/{mine['id']}/alerted", headers=headers("patient", "p1"))

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_consultation_flow(client, doctor_id, clock):
    first = book(client, doctor_id, "09:00", patient_id="p1").json()
    second = book(client, doctor_id, "09:15", patient_id="p2").json()
    doc = headers("doctor", doctor_id)

    started = client.post(f"{API}/doctor/start-consultation", json={"appointment_id": first["id"]}, headers=doc)
    assert started.status_code == 200
    assert started.json()["status"] == "in-consult"

    live = client.get(f"{API}/doctors/{doctor_id}/live-status").json()
    assert live["is_in_consult"] is True

    clock.advance(minutes=5)
    done = client.post(f"{API}/doctor/complete-consultation", json={"appointment_id": first["id"]}, headers=doc)
    assert done.status_code == 200
    body = done.json()
    assert body["appointment"]["consultation_duration"] == 5
    assert body["appointment"]["is_completed"] is True
    assert any(s["type"] == "pull-next" and s["time_saved"] == 10 for s in body["suggestions"])

    status = client.get(f"{API}/appointments/{second['id']}/queue-status", headers=headers("patient", "p2")).json()
    assert status["queue_position"] == 1
    assert status["is_next_up"] is True


def test_doctor_cannot_touch_other_queues(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()

    response = client.post(
        f"{API}/doctor/start-consultation",
        json={"appointment_id": mine["id"]},
        headers=headers("doctor", doctor_id + 1),
    )

    assert response.status_code == 403


def test_patient_cannot_use_doctor_routes(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()

    response = client.post(
        f"{API}/doctor/start-consultation",
        json={"appointment_id": mine["id"]},
        headers=headers("patient", "p1"),
    )

    assert response.status_code == 403


def test_doctor_queue_overview_flags_delays(client, doctor_id, clock):
    late = book(client, doctor_id, "09:00", patient_id="p1").json()
    book(client, doctor_id, "09:30", patient_id="p2")
    clock.set_local(9, 20)
    doc = headers("doctor", doctor_id)

    first = client.get(f"{API}/doctor/queue-status", headers=doc)
    assert first.status_code == 200
    body = first.json()
    assert body["queue_status"]["slot_date"] == DAY
    assert body["queue_status"]["queue_length"] == 2
    assert [d["appointment_id"] for d in body["delayed_appointments"]] == [late["id"]]

    second = client.get(f"{API}/doctor/queue-status", params={"slot_date": DAY}, headers=doc).json()
    assert second["delayed_appointments"] == []


def test_doctor_moves_and_status_changes(client, doctor_id):
    booked = [book(client, doctor_id, t, patient_id=f"p{i}").json() for i, t in enumerate(["09:00", "09:15", "09:30"])]
    doc = headers("doctor", doctor_id)

    moved = client.post(
        f"{API}/doctor/move-appointment",
        json={"appointment_id": booked[2]["id"], "new_position": 1},
        headers=doc,
    )
    assert moved.status_code == 200
    assert [a["id"] for a in moved.json()] == [booked[2]["id"], booked[0]["id"], booked[1]["id"]]

    out_of_range = client.post(
        f"{API}/doctor/move-appointment",
        json={"appointment_id": booked[0]["id"], "new_position": 9},
        headers=doc,
    )
    assert out_of_range.status_code == 409

    no_show = client.patch(
        f"{API}/doctor/appointments/{booked[1]['id']}/status",
        json={"status": "no-show"},
        headers=doc,
    )
    assert no_show.status_code == 200
    assert no_show.json()["status"] == "no-show"

    cancelled = client.post(f"{API}/doctor/cancel-appointment", json={"appointment_id": booked[0]["id"]}, headers=doc)
    assert cancelled.status_code == 200

    queue = client.get(f"{API}/doctor/queue-status", params={"slot_date": DAY}, headers=doc).json()
    assert [a["id"] for a in queue["queue_status"]["appointments"]] == [booked[2]["id"]]


def test_doctor_break_and_live_status(client, doctor_id):
    doc = headers("doctor", doctor_id)

    response = client.post(
        f"{API}/doctor/update-status",
        json={"status": "on-break", "break_duration": 20},
        headers=doc,
    )

    assert response.status_code == 200
    assert response.json()["break_duration"] == 20
    live = client.get(f"{API}/doctors/{doctor_id}/live-status").json()
    assert live["is_on_break"] is True
    assert live["break_ends_at"] is not None

    direct = client.post(f"{API}/doctor/update-status", json={"status": "in-consult"}, headers=doc)
    assert direct.status_code == 409


def test_suggestions_endpoint(client, doctor_id):
    book(client, doctor_id, "09:00", patient_id="p1")

    response = client.get(f"{API}/doctor/suggestions", params={"slot_date": DAY}, headers=headers("doctor", doctor_id))

    assert response.status_code == 200
    assert response.json() == []


def test_live_status_of_unknown_doctor(client):
    assert client.get(f"{API}/doctors/404/live-status").status_code == 404


def test_admin_routes(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()
    admin = headers("admin")

    queue = client.get(f"{API}/admin/doctors/{doctor_id}/queue", params={"slot_date": DAY}, headers=admin)
    assert queue.status_code == 200
    assert queue.json()["queue_status"]["queue_length"] == 1

    cancelled = client.post(f"{API}/admin/appointments/{mine['id']}/cancel", headers=admin)
    assert cancelled.status_code == 200

    doctors = client.get(f"{API}/admin/doctors", headers=admin).json()
    assert [d["id"] for d in doctors] == [doctor_id]

    assert client.get(f"{API}/admin/doctors", headers=headers("doctor", doctor_id)).status_code == 403
    assert client.get(f"{API}/admin/doctors/404/queue", headers=admin).status_code == 404


async def test_queue_status_over_asgi(client, doctor_id):
    mine = book(client, doctor_id, "09:00", patient_id="p1").json()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get(
            f"{API}/appointments/{mine['id']}/queue-status",
            headers=headers("patient", "p1"),
        )

    assert response.status_code == 200
    assert response.json()["token_number"] == 1
