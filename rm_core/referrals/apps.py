from django.apps import AppConfig


class ReferralsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rm_core.referrals"
    label = "referrals"

    def ready(self):
        from rm_core.referrals import permissions  # noqa: F401
