# rm_core/referrals/permissions.py
"""
Object-level referral rules plus the DRF permission for ReferralViewSet.

A referral is visible to its referring facility (the owner) and its
receiving facility. Decisions on it belong to the receiving side; cancelling
it belongs to the owner.
"""
from __future__ import annotations

from rm_core.common.permissions import BaseCapabilityPermission, Caller, rule


def _same_tenant(caller: Caller, referral) -> bool:
    return caller.tenant_id is not None and str(caller.tenant_id) == str(referral.tenant_id)


def acts_for_receiving_side(caller: Caller, referral) -> bool:
    if not _same_tenant(caller, referral):
        return False
    if str(caller.facility_id) == str(referral.receiving_facility_id):
        return True
    return referral.receiving_doctor_id is not None and caller.user_id == referral.receiving_doctor_id


def acts_for_referring_side(caller: Caller, referral) -> bool:
    return _same_tenant(caller, referral) and str(caller.facility_id) == str(referral.facility_id)


@rule("referrals.view")
def _can_view(caller: Caller, referral) -> bool:
    return acts_for_referring_side(caller, referral) or acts_for_receiving_side(caller, referral)


@rule("referrals.accept")
def _can_accept(caller: Caller, referral) -> bool:
    return acts_for_receiving_side(caller, referral)


@rule("referrals.reject")
def _can_reject(caller: Caller, referral) -> bool:
    return acts_for_receiving_side(caller, referral)


@rule("referrals.complete")
def _can_complete(caller: Caller, referral) -> bool:
    return acts_for_receiving_side(caller, referral)


@rule("referrals.progress")
def _can_progress(caller: Caller, referral) -> bool:
    return _can_view(caller, referral)


@rule("referrals.cancel")
def _can_cancel(caller: Caller, referral) -> bool:
    if not _same_tenant(caller, referral):
        return False
    return caller.is_admin or acts_for_referring_side(caller, referral)


class ReferralPermission(BaseCapabilityPermission):
    required_capability_per_action = {
        "list": "referrals.view",
        "retrieve": "referrals.view",
        "overdue": "referrals.view",
        "due_soon": "referrals.view",
        "stats": "referrals.view",
        "priority": "referrals.view",
        "create": "referrals.create",
        "accept": "referrals.accept",
        "reject": "referrals.reject",
        "in_transit": "referrals.progress",
        "arrived": "referrals.progress",
        "complete": "referrals.complete",
        "cancel": "referrals.cancel",
    }
