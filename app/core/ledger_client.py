"""
Ledger RPC client.

Appointments are attested on-chain through a signing relay that exposes a
JSON-RPC endpoint. The relay holds the admin key; this service only names the
registry function, its arguments and an idempotency key.

Retry strategy:
- transport errors, timeouts, 429 and 5xx: retried with exponential backoff
  and jitter (via tenacity), bounded by ``max_attempts``
- other 4xx and JSON-RPC errors: fail immediately

A timed-out transaction may still have landed, so every mutating call carries
an idempotency key derived from the appointment id and the relay returns the
original digest for a repeated key.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.core.exceptions import LedgerError
from app.schemas.common import PLACEHOLDER_LEDGER_ADDRESS

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class LedgerRetryableError(LedgerError):
    """Transient ledger failure, safe to retry with the same idempotency key."""


@dataclass(frozen=True)
class LedgerReceipt:
    """Executed ledger transaction."""

    digest: str


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "ledger_call_retrying",
        attempt=retry_state.attempt_number,
        error=str(error),
    )


class LedgerClient:
    """JSON-RPC client for the appointment registry."""

    MODULE = "appointment_registry"
    METHOD = "ledger_executeMoveCall"

    def __init__(
        self,
        rpc_url: str,
        package_id: str,
        admin_cap_id: str,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_initial: float | None = None,
        backoff_max: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client with relay URL, registry ids and retry bounds."""
        self.rpc_url = rpc_url
        self.package_id = package_id
        self.admin_cap_id = admin_cap_id
        self.max_attempts = max_attempts or settings.ledger_max_attempts
        self.backoff_initial = (
            settings.ledger_backoff_initial_seconds if backoff_initial is None else backoff_initial
        )
        self.backoff_max = settings.ledger_backoff_max_seconds if backoff_max is None else backoff_max
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.external_call_timeout_seconds,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        """Check whether the relay endpoint and registry are configured."""
        return bool(self.rpc_url and self.package_id)

    async def record_appointment(
        self,
        appointment_id: UUID,
        doctor_address: str,
        patient_address: str,
        appointment_timestamp_ms: int,
        price_cents: int,
    ) -> LedgerReceipt:
        """Attest a confirmed appointment, owned by ``patient_address``."""
        return await self._execute(
            "record_appointment_by_admin",
            [
                self.admin_cap_id,
                doctor_address,
                str(appointment_id),
                patient_address,
                appointment_timestamp_ms,
                price_cents,
            ],
            idempotency_key=f"ledger:record:{appointment_id}",
        )

    async def record_cancellation(self, appointment_id: UUID, refund_cents: int) -> LedgerReceipt:
        """Attest the cancellation of an appointment."""
        return await self._execute(
            "record_cancellation",
            [str(appointment_id), refund_cents],
            idempotency_key=f"ledger:cancel:{appointment_id}",
        )

    async def claim_appointment(
        self,
        appointment_id: UUID,
        patient_address: str,
        doctor_address: str,
        appointment_timestamp_ms: int,
        price_cents: int,
    ) -> LedgerReceipt:
        """Transfer a record from the placeholder identity to the patient's wallet."""
        return await self._execute(
            "claim_appointment",
            [
                self.admin_cap_id,
                str(appointment_id),
                PLACEHOLDER_LEDGER_ADDRESS,
                patient_address,
                doctor_address,
                appointment_timestamp_ms,
                price_cents,
            ],
            idempotency_key=f"ledger:claim:{appointment_id}:{patient_address}",
        )

    async def _execute(
        self,
        function: str,
        arguments: list[Any],
        idempotency_key: str,
    ) -> LedgerReceipt:
        if not self.is_configured:
            raise LedgerError("Ledger RPC not configured")

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(LedgerRetryableError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.backoff_initial,
                max=self.backoff_max,
                jitter=self.backoff_initial,
            ),
            before_sleep=_log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await self._send(function, arguments, idempotency_key)

        raise LedgerError("Ledger call did not run")  # pragma: no cover

    async def _send(
        self,
        function: str,
        arguments: list[Any],
        idempotency_key: str,
    ) -> LedgerReceipt:
        payload = {
            "jsonrpc": "2.0",
            "id": idempotency_key,
            "method": self.METHOD,
            "params": {
                "target": f"{self.package_id}::{self.MODULE}::{function}",
                "arguments": arguments,
                "idempotencyKey": idempotency_key,
            },
        }

        try:
            response = await self._client.post(
                self.rpc_url,
                json=payload,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.TransportError as e:
            raise LedgerRetryableError(f"Ledger RPC unreachable: {e!s}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise LedgerRetryableError(f"Ledger RPC returned {response.status_code}")

        if response.is_error:
            raise LedgerError(f"Ledger RPC returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerError("Ledger RPC returned invalid JSON") from e

        if body.get("error"):
            message = body["error"].get("message") or "Unknown ledger error"
            raise LedgerError(message)

        digest = (body.get("result") or {}).get("digest")
        if not digest:
            raise LedgerError("Ledger RPC response has no transaction digest")

        logger.info("ledger_call_executed", function=function, digest=digest)
        return LedgerReceipt(digest=digest)

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        await self._client.aclose()
