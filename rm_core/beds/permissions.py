# rm_core/beds/permissions.py
from rm_core.common.permissions import BaseCapabilityPermission


class BedPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "beds.view",
        "retrieve": "beds.view",
        "available": "beds.view",
        "occupancy": "beds.view",
        "create": "beds.manage",
        "update": "beds.manage",
        "partial_update": "beds.manage",
        "destroy": "beds.manage",
        "reserve": "beds.reserve",
        "release": "beds.manage",
        "maintenance": "beds.manage",
        "clear_maintenance": "beds.manage",
    }


class BedReservationPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "beds.view",
        "retrieve": "beds.view",
        "confirm": "beds.reserve",
        "cancel": "beds.reserve",
    }
