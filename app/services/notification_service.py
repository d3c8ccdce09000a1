"""Notification service for sending push notifications via FCM."""

import asyncio
from datetime import datetime
from uuid import UUID

import structlog
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from app.core.exceptions import NotificationError
from app.core.firebase import is_firebase_initialized

logger = structlog.get_logger(__name__)


def patient_topic(patient_id: str | UUID) -> str:
    """FCM topic a patient's devices subscribe to."""
    return f"patient-{patient_id}"


class NotificationService:
    """Best-effort push notifications to patients."""

    async def send_to_topic(
        self,
        topic: str,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> bool:
        """
        Send a push notification to an FCM topic.

        Args:
            topic: Topic name
            title: Notification title
            body: Notification body
            data: Optional data payload

        Returns:
            True if FCM accepted the message, False if Firebase is not set up

        Raises:
            NotificationError: If FCM rejects the message
        """
        if not is_firebase_initialized():
            logger.warning("push_notification_skipped_firebase_not_initialized", topic=topic)
            return False

        message = messaging.Message(
            notification=messaging.Notification(
                title=title,
                body=body,
            ),
            data=data or {},
            topic=topic,
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(
                        sound="default",
                    ),
                ),
            ),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    sound="default",
                ),
            ),
        )

        try:
            message_id = await asyncio.to_thread(messaging.send, message)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            logger.error("push_notification_failed", error=str(e), topic=topic, title=title)
            raise NotificationError(f"Push notification to {topic} failed: {e!s}") from e

        logger.info("push_notification_sent", topic=topic, title=title, message_id=message_id)
        return True

    async def notify_rescheduled(
        self,
        patient_id: UUID,
        appointment_id: UUID,
        previous_time: datetime,
        new_time: datetime,
    ) -> bool:
        """Tell a patient their appointment moved."""
        return await self.send_to_topic(
            patient_topic(patient_id),
            title="Appointment rescheduled",
            body=f"Your appointment has been moved to {new_time:%Y-%m-%d %H:%M} UTC.",
            data={
                "type": "appointment_rescheduled",
                "appointment_id": str(appointment_id),
                "previous_time": previous_time.isoformat(),
                "new_time": new_time.isoformat(),
            },
        )
