# rm_core/equipment/permissions.py
from rm_core.common.permissions import BaseCapabilityPermission


class EquipmentPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "equipment.view",
        "retrieve": "equipment.view",
        "overdue": "equipment.view",
        "history": "equipment.view",
        "create": "equipment.manage",
        "update": "equipment.manage",
        "partial_update": "equipment.manage",
        "destroy": "equipment.manage",
        "use": "equipment.use",
        "release": "equipment.use",
        "schedule_maintenance": "equipment.maintain",
    }


class MaintenancePermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "equipment.view",
        "retrieve": "equipment.view",
        "start": "equipment.maintain",
        "complete": "equipment.maintain",
        "cancel": "equipment.maintain",
    }
