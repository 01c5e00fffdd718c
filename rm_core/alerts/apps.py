from django.apps import AppConfig


class AlertsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rm_core.alerts"
    label = "alerts"

    def ready(self) -> None:
        # registers event handlers
        from rm_core.alerts import subscribers  # noqa: F401
