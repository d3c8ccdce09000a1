"""Video session provider client (Twilio Video REST API)."""

from dataclasses import dataclass
from uuid import UUID

import httpx
import structlog

from app.config import settings
from app.core.exceptions import VideoProvisioningError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VideoSession:
    """Provisioned video room."""

    room_name: str
    room_sid: str


class VideoProvider:
    """Creates one two-party video room per appointment."""

    ROOM_EXISTS_ERROR = 53113
    MAX_PARTICIPANTS = 2

    def __init__(
        self,
        base_url: str,
        api_key_sid: str,
        api_key_secret: str,
        status_callback_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize provider with REST credentials."""
        self.api_key_sid = api_key_sid
        self.api_key_secret = api_key_secret
        self.status_callback_url = status_callback_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(api_key_sid, api_key_secret),
            timeout=timeout or settings.external_call_timeout_seconds,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        """Check whether credentials are present."""
        return bool(self.api_key_sid and self.api_key_secret)

    async def create_room(self, appointment_id: UUID) -> VideoSession:
        """
        Create the video room for an appointment.

        The room's unique name is the appointment id, so a repeated call
        returns the existing room instead of creating a second one.

        Raises:
            VideoProvisioningError: If the room cannot be created
        """
        if not self.is_configured:
            raise VideoProvisioningError("Video provider not configured")

        room_name = str(appointment_id)
        form = {
            "UniqueName": room_name,
            "Type": "group",
            "MaxParticipants": str(self.MAX_PARTICIPANTS),
        }
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url

        try:
            response = await self._client.post("/v1/Rooms", data=form)

            if response.status_code == 400 and self._error_code(response) == self.ROOM_EXISTS_ERROR:
                logger.info("video_room_already_exists", room_name=room_name)
                response = await self._client.get(f"/v1/Rooms/{room_name}")

            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise VideoProvisioningError(
                f"Video provider returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise VideoProvisioningError(f"Video provider unreachable: {e!s}") from e

        return VideoSession(room_name=body.get("unique_name") or room_name, room_sid=body["sid"])

    async def close_room(self, room_sid: str) -> None:
        """
        End a room so nobody can join it.

        Raises:
            VideoProvisioningError: If the provider rejects the request
        """
        try:
            response = await self._client.post(
                f"/v1/Rooms/{room_sid}", data={"Status": "completed"}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise VideoProvisioningError(
                f"Video provider returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise VideoProvisioningError(f"Video provider unreachable: {e!s}") from e

        logger.info("video_room_closed", room_sid=room_sid)

    @staticmethod
    def _error_code(response: httpx.Response) -> int | None:
        try:
            return response.json().get("code")
        except ValueError:
            return None

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        await self._client.aclose()
