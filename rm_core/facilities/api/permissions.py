from __future__ import annotations

from rm_core.common.permissions import BaseCapabilityPermission


class FacilityPermission(BaseCapabilityPermission):
    """
    Facilities are tenant-level records; the scope header still names the
    facility the caller acts for.
    """
    required_capability_per_action = {
        "list": "facilities.view",
        "retrieve": "facilities.view",
        "suitable": "facilities.view",
        "create": "facilities.manage",
        "partial_update": "facilities.manage",
        "deactivate": "facilities.manage",
    }


class SpecialtyPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "facilities.view",
        "create": "facilities.manage",
    }
