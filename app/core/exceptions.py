"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    code = "internal_error"

    def __init__(self, message: str, status_code: int = 500, code: str | None = None):
        """Initialize exception with message, status code and stable error code."""
        self.message = message
        self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    code = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class BadRequestException(AppException):
    """Bad request exception."""

    code = "bad_request"

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    code = "conflict"

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    code = "validation_error"

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class DoctorNotEligibleException(AppException):
    """Doctor missing, unverified or unable to receive bookings."""

    code = "doctor_not_eligible"

    def __init__(self, message: str = "Doctor is not eligible for bookings", status_code: int = 409):
        """Initialize with 409 (or 404 when the doctor does not exist)."""
        super().__init__(message, status_code=status_code)


class SlotConflictException(ConflictException):
    """Requested time window overlaps an existing appointment."""

    code = "slot_conflict"

    def __init__(self, message: str = "This time slot is already booked"):
        """Initialize with 409 status code."""
        super().__init__(message)


class InvalidStateTransitionException(ConflictException):
    """Appointment status does not allow the requested action."""

    code = "invalid_state_transition"


class ConcurrencyConflictException(ConflictException):
    """Appointment was modified by a concurrent request."""

    code = "concurrent_modification"

    def __init__(self, message: str = "Appointment was modified concurrently, retry the request"):
        """Initialize with 409 status code."""
        super().__init__(message)


class WalletNotLinkedException(BadRequestException):
    """Patient has no ledger wallet address."""

    code = "wallet_not_linked"

    def __init__(self, message: str = "Patient wallet not connected"):
        """Initialize with 400 status code."""
        super().__init__(message)


class WebhookSignatureException(BadRequestException):
    """Webhook payload could not be authenticated."""

    code = "invalid_signature"


class PaymentGatewayException(AppException):
    """Payment gateway rejected or failed a request."""

    code = "payment_gateway_error"

    def __init__(self, message: str = "Payment gateway error", gateway_code: str | None = None):
        """Initialize with 502 status code."""
        self.gateway_code = gateway_code
        super().__init__(message, status_code=502)


# Errors raised by external collaborators. Workflows record these on the
# appointment and in the audit log instead of surfacing them to callers.


class DataIntegrityError(Exception):
    """Event references data that does not exist."""


class VideoProvisioningError(Exception):
    """Video session could not be created."""


class LedgerError(Exception):
    """Ledger call failed."""


class NotificationError(Exception):
    """Push notification could not be delivered."""
