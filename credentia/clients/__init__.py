"""
Credentia — External Service Clients

Document store backends (in-memory, Redis) and notification senders.
"""

from credentia.clients.memory_store import InMemoryDocumentStore
from credentia.clients.notifications import (
    LogNotificationSender,
    NotificationSender,
    WebhookNotificationSender,
    create_notification_sender,
)
from credentia.clients.store import Collection, DocumentStore, WriteSet

__all__ = [
    "Collection",
    "DocumentStore",
    "InMemoryDocumentStore",
    "LogNotificationSender",
    "NotificationSender",
    "WebhookNotificationSender",
    "WriteSet",
    "create_notification_sender",
]
