from django.apps import AppConfig


class ContainersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    # App lives in the top-level "containers" package (under backend/ on disk)
    name = "containers"
