"""Redis client configuration and webhook event bookkeeping."""

import redis
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class WebhookEventRegistry:
    """
    Redis-backed record of payment events already taken into processing.

    A claim is a ``SET NX`` with a short TTL so that a crashed worker does
    not block redelivery forever; completed events are kept for the
    gateway's full retry window. Redis errors fail open: the appointment
    status check downstream is the authoritative duplicate guard.
    """

    PREFIX = "webhook:payment_event"
    PROCESSING = "processing"
    COMPLETED = "completed"

    def __init__(
        self,
        redis_client: redis.Redis,
        processing_ttl: int | None = None,
        completed_ttl: int | None = None,
    ):
        """Initialize registry with Redis client and TTLs in seconds."""
        self.redis = redis_client
        self.processing_ttl = processing_ttl or settings.webhook_processing_ttl_seconds
        self.completed_ttl = completed_ttl or settings.webhook_event_ttl_seconds

    def _key(self, event_id: str) -> str:
        return f"{self.PREFIX}:{event_id}"

    def claim(self, event_id: str) -> bool:
        """
        Take an event into processing.

        Args:
            event_id: Gateway event identifier

        Returns:
            True if the caller should process the event, False for a duplicate
        """
        try:
            return bool(
                self.redis.set(self._key(event_id), self.PROCESSING, nx=True, ex=self.processing_ttl)
            )
        except redis.RedisError as e:
            logger.warning("webhook_event_claim_unavailable", event_id=event_id, error=str(e))
            return True

    def mark_completed(self, event_id: str) -> bool:
        """Remember an event as fully processed."""
        try:
            self.redis.set(self._key(event_id), self.COMPLETED, ex=self.completed_ttl)
            return True
        except redis.RedisError as e:
            logger.warning("webhook_event_complete_failed", event_id=event_id, error=str(e))
            return False

    def release(self, event_id: str) -> bool:
        """Drop a claim so that a redelivery is processed again."""
        try:
            self.redis.delete(self._key(event_id))
            return True
        except redis.RedisError as e:
            logger.warning("webhook_event_release_failed", event_id=event_id, error=str(e))
            return False

    def state(self, event_id: str) -> str | None:
        """Get the recorded state of an event."""
        try:
            return self.redis.get(self._key(event_id))  # type: ignore[return-value]
        except redis.RedisError:
            return None
