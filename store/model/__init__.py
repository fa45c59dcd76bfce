from store.model.store import (
    MeetingStatus,
    BOT_ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    WebhookStatus,
    User,
    CalendarConnection,
    Meeting,
    Webhook,
    WebhookDelivery,
)

__all__ = [
    'MeetingStatus',
    'BOT_ACTIVE_STATUSES',
    'TERMINAL_STATUSES',
    'WebhookStatus',
    'User',
    'CalendarConnection',
    'Meeting',
    'Webhook',
    'WebhookDelivery',
]
