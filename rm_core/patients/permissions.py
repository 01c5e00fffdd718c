from rm_core.common.permissions import BaseCapabilityPermission


class PatientPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "patients.view",
        "retrieve": "patients.view",
        "create": "patients.manage",
        "partial_update": "patients.manage",
    }
