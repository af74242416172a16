from django.apps import AppConfig


class MarketConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'market'
    verbose_name = 'Marketplace'

    def ready(self):
        # Register signal receivers
        from . import signals  # noqa: F401
