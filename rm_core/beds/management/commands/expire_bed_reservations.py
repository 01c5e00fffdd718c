from django.core.management.base import BaseCommand

from rm_core.beds.services import BedService


class Command(BaseCommand):
    help = "Expire active bed reservations whose hold time has passed."

    def handle(self, *args, **options):
        n = BedService.expire_reservations()
        self.stdout.write(self.style.SUCCESS(f"Expired {n} reservation(s)."))
