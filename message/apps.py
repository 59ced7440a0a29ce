from django.apps import AppConfig


class MessageConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "message"

    def ready(self):
        from .presence import SubscriptionRegistry

        self.subscriptions = SubscriptionRegistry()
