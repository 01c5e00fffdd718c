from django.apps import AppConfig


class BedsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rm_core.beds"
    label = "beds"
