# rm_core/iam/management/commands/grant_role.py

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from rm_core.common.permissions import Role
from rm_core.facilities.models import Facility
from rm_core.iam.models import FacilityMembership, UserProfile


class Command(BaseCommand):
    help = "Grant a role to a user at a facility (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("username")
        parser.add_argument("tenant_code")
        parser.add_argument("facility_code")
        parser.add_argument("role", choices=Role.values)
        parser.add_argument("--primary", action="store_true", help="Make this the user's primary membership.")

    def handle(self, *args, username, tenant_code, facility_code, role, primary, **options):
        User = get_user_model()
        try:
            user = User.objects.get(username=username)
        except User.DoesNotExist:
            raise CommandError(f"Unknown user {username!r}.")

        facility = Facility.objects.select_related("tenant").filter(tenant__code=tenant_code, code=facility_code).first()
        if facility is None:
            raise CommandError(f"Unknown facility {tenant_code}/{facility_code}.")

        profile, _ = UserProfile.objects.get_or_create(user=user, defaults={"tenant": facility.tenant})
        if profile.tenant_id != facility.tenant_id:
            raise CommandError(f"{username} belongs to another tenant.")

        membership, created = FacilityMembership.objects.get_or_create(
            user_profile=profile,
            tenant=facility.tenant,
            facility=facility,
            role=role,
            defaults={"is_primary": primary},
        )
        changed = []
        if not membership.is_active:
            membership.is_active = True
            changed.append("is_active")
        if primary and not membership.is_primary:
            membership.is_primary = True
            changed.append("is_primary")
        if changed:
            membership.save(update_fields=changed)

        verb = "Granted" if created else "Kept"
        self.stdout.write(self.style.SUCCESS(f"{verb} {role} for {username} at {facility.code}."))
