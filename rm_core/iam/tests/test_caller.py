# rm_core/iam/tests/test_caller.py
import pytest
from django.contrib.auth.models import Group, User

from rm_core.common.permissions import Role, can
from rm_core.iam.services.caller import resolve_caller

pytestmark = pytest.mark.django_db


def test_membership_role_drives_capabilities(nurse, tenant, facility):
    caller = resolve_caller(nurse, tenant_id=tenant.id, facility_id=facility.id)
    assert caller.roles == frozenset({Role.NURSE})
    assert can(caller, "beds.reserve")
    assert not can(caller, "dispatches.create")


def test_group_named_after_role_adds_capabilities(nurse, tenant, facility):
    nurse.groups.add(Group.objects.create(name="DISPATCHER"))
    nurse.groups.add(Group.objects.create(name="night-shift"))

    caller = resolve_caller(nurse, tenant_id=tenant.id, facility_id=facility.id)
    assert caller.roles == frozenset({Role.NURSE, Role.DISPATCHER})
    assert can(caller, "dispatches.create")


def test_groups_ignored_for_non_members(nurse, tenant, other_facility):
    nurse.groups.add(Group.objects.create(name="ADMIN"))
    caller = resolve_caller(nurse, tenant_id=tenant.id, facility_id=other_facility.id)
    assert caller.roles == frozenset()
    assert not caller.capabilities


def test_superuser_is_admin_everywhere(other_tenant, other_facility):
    root = User.objects.create_superuser(username="root", password="x", email="root@example.com")
    caller = resolve_caller(root, tenant_id=other_tenant.id, facility_id=other_facility.id)
    assert caller.is_admin
    assert can(caller, "audit.view")


def test_no_scope_means_no_capabilities(doctor):
    caller = resolve_caller(doctor, tenant_id=None, facility_id=None)
    assert not can(caller, "referrals.view")
