"""
school_automation.adapters -- collaborator contracts and implementations.

The engine only talks to the Data Store and the Notification Sender
through the protocols defined here.
"""

from school_automation.adapters.data_store import DataStore
from school_automation.adapters.notification import (
    DeliveryResult,
    LoggingNotificationSender,
    NotificationSender,
)
from school_automation.adapters.sql_data_store import SqlAlchemyDataStore

__all__ = [
    "DataStore",
    "DeliveryResult",
    "LoggingNotificationSender",
    "NotificationSender",
    "SqlAlchemyDataStore",
]
