from django.apps import AppConfig


class SollistConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "sollist"
    verbose_name = "SOLL/IST-Abstimmung"
