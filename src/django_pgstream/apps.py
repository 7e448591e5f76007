from django.apps import AppConfig


class DjangoPgstreamConfig(AppConfig):
    name = "django_pgstream"
    verbose_name = "Django PG Stream"
