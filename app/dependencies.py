"""FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated

import redis
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import UnauthorizedException
from app.core.ledger_client import LedgerClient
from app.core.payment_gateway import StripePaymentGateway, StripeWebhookVerifier
from app.core.redis_client import WebhookEventRegistry, get_redis_client
from app.core.tasks import SagaSupervisor, get_saga_supervisor
from app.core.video_provider import VideoProvider
from app.database import get_db, get_session_factory
from app.services.notification_service import NotificationService


@lru_cache
def get_payment_gateway() -> StripePaymentGateway:
    """Get the shared payment gateway client."""
    return StripePaymentGateway(
        api_key=settings.stripe_secret_key,
        currency=settings.payment_currency,
    )


@lru_cache
def get_webhook_verifier() -> StripeWebhookVerifier:
    """Get the webhook signature verifier."""
    return StripeWebhookVerifier(webhook_secret=settings.stripe_webhook_secret)


@lru_cache
def get_video_provider() -> VideoProvider:
    """Get the shared video provider client."""
    return VideoProvider(
        base_url=settings.video_api_base_url,
        api_key_sid=settings.video_api_key_sid,
        api_key_secret=settings.video_api_key_secret,
        status_callback_url=settings.video_status_callback_url,
    )


@lru_cache
def get_ledger_client() -> LedgerClient:
    """Get the shared ledger RPC client."""
    return LedgerClient(
        rpc_url=settings.ledger_rpc_url,
        package_id=settings.ledger_package_id,
        admin_cap_id=settings.ledger_admin_cap_id,
    )


@lru_cache
def get_notification_service() -> NotificationService:
    """Get the push notification service."""
    return NotificationService()


def get_event_registry(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> WebhookEventRegistry:
    """Get the webhook event registry backed by redis."""
    return WebhookEventRegistry(redis_client)


async def verify_admin_secret(
    x_admin_secret: Annotated[str | None, Header(description="Admin secret key")] = None,
) -> None:
    """
    Check the admin secret header of reconciliation endpoints.

    Raises:
        UnauthorizedException: If the header is missing or wrong
    """
    if not x_admin_secret or x_admin_secret != settings.admin_secret:
        raise UnauthorizedException("Invalid admin secret key")


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
PaymentGateway = Annotated[StripePaymentGateway, Depends(get_payment_gateway)]
WebhookVerifier = Annotated[StripeWebhookVerifier, Depends(get_webhook_verifier)]
Video = Annotated[VideoProvider, Depends(get_video_provider)]
Ledger = Annotated[LedgerClient, Depends(get_ledger_client)]
Notifier = Annotated[NotificationService, Depends(get_notification_service)]
EventRegistry = Annotated[WebhookEventRegistry, Depends(get_event_registry)]
Supervisor = Annotated[SagaSupervisor, Depends(get_saga_supervisor)]
AdminAccess = Depends(verify_admin_secret)
