from rm_core.common.permissions import BaseCapabilityPermission


class AlertPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "alerts.view",
        "retrieve": "alerts.view",
        "ack": "alerts.view",
    }


class NotificationPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "alerts.view",
        "retrieve": "alerts.view",
        "mark_read": "alerts.view",
        "mark_all_read": "alerts.view",
    }
