from provider.base import CalendarProvider, BotProvider, EmailProvider, WebhookSender
from provider.exception import ProviderError, ProviderNotConfiguredError
from provider.google import GoogleCalendarProvider, detect_platform, extract_meeting_link, extract_meeting_url
from provider.model.provider import (
    CalendarEvent,
    EmailMessage,
    DeliveryResult,
    ProviderConfig,
)
from provider.recall import RecallBotProvider
from provider.resend import ResendEmailProvider
from provider.webhook import HttpWebhookSender, sign_payload, verify_signature

__all__ = [
    'CalendarProvider',
    'BotProvider',
    'EmailProvider',
    'WebhookSender',
    'ProviderError',
    'ProviderNotConfiguredError',
    'GoogleCalendarProvider',
    'RecallBotProvider',
    'ResendEmailProvider',
    'HttpWebhookSender',
    'CalendarEvent',
    'EmailMessage',
    'DeliveryResult',
    'ProviderConfig',
    'detect_platform',
    'extract_meeting_link',
    'extract_meeting_url',
    'sign_payload',
    'verify_signature',
]
