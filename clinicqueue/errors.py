# clinicqueue/errors.py
"""Failures raised by the queue engine's mutating operations.

Read-only helpers (positions, delays, suggestions) never raise these; they
return a neutral result instead.
"""


class QueueError(Exception):
    """Base class for queue engine failures."""


class AppointmentNotFoundError(QueueError):
    def __init__(self, appointment_id):
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")


class DoctorNotFoundError(QueueError):
    def __init__(self, doctor_id):
        self.doctor_id = doctor_id
        super().__init__(f"Doctor {doctor_id} not found")


class InvalidStateError(QueueError):
    """A transition or re-ordering that would break queue invariants."""


class OwnershipError(QueueError):
    """The acting doctor or patient does not own the appointment."""


class QueueConflictError(QueueError):
    """Concurrent writers collided on the same day-queue or slot."""
