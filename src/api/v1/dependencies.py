"""Dependency injection factories for API v1."""

from functools import lru_cache
from typing import Callable

from core.config import settings
from domain.services.dedup_index import DedupIndex
from domain.services.delivery_tracker import DeliveryTracker
from domain.services.notification_service import NotificationService
from domain.services.preference_service import PreferenceService
from infrastructure.database.session import async_session_factory
from infrastructure.database.sqlalchemy_uow import SQLAlchemyUnitOfWork


def get_uow_factory() -> Callable[[], SQLAlchemyUnitOfWork]:
    """Factory for creating Unit of Work instances."""

    def factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(async_session_factory)

    return factory


@lru_cache
def get_delivery_tracker() -> DeliveryTracker:
    """Get DeliveryTracker instance."""
    return DeliveryTracker(
        get_uow_factory(),
        dedup_index=DedupIndex(settings.fingerprint_window_seconds),
        max_retries=settings.max_message_retries,
        store_attempts=settings.signal_store_retries,
    )


@lru_cache
def get_preference_service() -> PreferenceService:
    """Get Preference service instance."""
    return PreferenceService(get_uow_factory())


@lru_cache
def get_notification_service() -> NotificationService:
    """Get Notification service instance."""
    return NotificationService(
        get_uow_factory(),
        tracker=get_delivery_tracker(),
        preferences=get_preference_service(),
    )
