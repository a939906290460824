from app.domain.models.subscription import Subscription
from app.domain.models.user import User
from app.domain.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "WebhookEvent",
    "Subscription",
]
