# rm_core/appointments/permissions.py
from __future__ import annotations

from rm_core.common.permissions import BaseCapabilityPermission, Caller, rule


def _same_scope(caller: Caller, appointment) -> bool:
    return str(caller.tenant_id) == str(appointment.tenant_id) and str(caller.facility_id) == str(appointment.facility_id)


@rule("appointments.treat")
def _is_treating_doctor(caller: Caller, appointment) -> bool:
    """Starting and completing a visit is for the booked doctor (or an admin)."""
    if not _same_scope(caller, appointment):
        return False
    return caller.is_admin or caller.user_id == appointment.doctor_id


class AppointmentPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "appointments.view",
        "retrieve": "appointments.view",
        "availability": "appointments.view",
        "slots": "appointments.view",
        "create": "appointments.book",
        "reschedule": "appointments.book",
        "confirm": "appointments.front_desk",
        "check_in": "appointments.front_desk",
        "start": "appointments.treat",
        "complete": "appointments.treat",
        "cancel": "appointments.cancel",
    }
