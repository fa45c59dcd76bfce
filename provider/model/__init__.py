from provider.model.provider import (
    CalendarEvent,
    EmailMessage,
    DeliveryResult,
    CalendarSettings,
    BotSettings,
    EmailSettings,
    WebhookSettings,
    ProviderConfig,
)

__all__ = [
    'CalendarEvent',
    'EmailMessage',
    'DeliveryResult',
    'CalendarSettings',
    'BotSettings',
    'EmailSettings',
    'WebhookSettings',
    'ProviderConfig',
]
