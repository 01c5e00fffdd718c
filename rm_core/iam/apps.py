from django.apps import AppConfig


class IamConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rm_core.iam"
    label = "iam"

    def ready(self) -> None:
        # registers the drf-spectacular auth extension
        from rm_core.iam import openapi  # noqa: F401
