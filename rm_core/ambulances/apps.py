from django.apps import AppConfig


class AmbulancesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rm_core.ambulances"
    label = "ambulances"

    def ready(self):
        from rm_core.ambulances import permissions  # noqa: F401
