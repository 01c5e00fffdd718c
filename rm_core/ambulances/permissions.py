# rm_core/ambulances/permissions.py
"""
Dispatches belong to the facility that runs the fleet. Crew members may only
move the dispatches they are assigned to.
"""
from __future__ import annotations

from rm_core.common.permissions import BaseCapabilityPermission, Caller, Role, rule


def _same_scope(caller: Caller, obj) -> bool:
    return str(caller.tenant_id) == str(obj.tenant_id) and str(caller.facility_id) == str(obj.facility_id)


def is_crew_member(caller: Caller, dispatch) -> bool:
    return caller.user_id is not None and caller.user_id in (dispatch.crew_ids or [])


@rule("dispatches.transition")
def _can_transition(caller: Caller, dispatch) -> bool:
    if not _same_scope(caller, dispatch):
        return False
    if caller.is_admin or Role.DISPATCHER in caller.roles:
        return True
    return is_crew_member(caller, dispatch)


@rule("dispatches.cancel")
def _can_cancel(caller: Caller, dispatch) -> bool:
    return _same_scope(caller, dispatch)


@rule("ambulances.track")
def _can_track(caller: Caller, ambulance) -> bool:
    return _same_scope(caller, ambulance)


class AmbulancePermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "ambulances.view",
        "retrieve": "ambulances.view",
        "nearby": "ambulances.view",
        "locations": "ambulances.view",
        "create": "ambulances.manage",
        "update": "ambulances.manage",
        "partial_update": "ambulances.manage",
        "destroy": "ambulances.manage",
        "location": "ambulances.track",
        "set_status": "ambulances.manage",
    }


class DispatchPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "dispatches.view",
        "retrieve": "dispatches.view",
        "progress": "dispatches.view",
        "timeline": "dispatches.view",
        "analytics": "dispatches.analytics",
        "create": "dispatches.create",
        "acknowledge": "dispatches.transition",
        "en_route_pickup": "dispatches.transition",
        "at_pickup": "dispatches.transition",
        "patient_loaded": "dispatches.transition",
        "en_route_destination": "dispatches.transition",
        "at_destination": "dispatches.transition",
        "deliver": "dispatches.transition",
        "complete": "dispatches.transition",
        "update_status": "dispatches.transition",
        "cancel": "dispatches.cancel",
    }
