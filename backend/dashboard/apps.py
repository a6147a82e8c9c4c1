from django.apps import AppConfig


class DashboardConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    # App lives in the top-level "dashboard" package (under backend/ on disk)
    name = "dashboard"
