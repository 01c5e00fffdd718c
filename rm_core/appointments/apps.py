from django.apps import AppConfig


class AppointmentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rm_core.appointments"
    label = "appointments"

    def ready(self):
        from rm_core.appointments import permissions  # noqa: F401
