from rm_core.common.permissions import BaseCapabilityPermission


class AuditPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "audit.view",
    }
