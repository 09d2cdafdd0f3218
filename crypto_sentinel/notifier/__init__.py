from crypto_sentinel.notifier.base_channel import BaseChannel, webhook_payload
from crypto_sentinel.notifier.channels import (
    EmailChannel,
    LogChannel,
    TelegramChannel,
    WebhookChannel,
)
from crypto_sentinel.notifier.dispatcher import NotificationDispatcher

__all__ = [
    "BaseChannel",
    "EmailChannel",
    "LogChannel",
    "NotificationDispatcher",
    "TelegramChannel",
    "WebhookChannel",
    "webhook_payload",
]
