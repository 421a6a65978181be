"""Custom exception classes for the webhook relay."""


class HookRelayError(Exception):
    """Base exception for hookrelay."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(HookRelayError):
    """Request is missing required webhook metadata."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class VerificationError(HookRelayError):
    """Webhook signature could not be verified.

    The reason code is kept for logging only; it is never echoed back to the
    caller.
    """

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__("VERIFICATION_FAILED", "Invalid webhook signature", status_code=401)


class NotFoundError(HookRelayError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class ConflictError(HookRelayError):
    """Resource state conflict."""

    def __init__(self, message: str, details=None):
        super().__init__("CONFLICT", message, details, status_code=409)


class InvalidTransitionError(ConflictError):
    """A delivery status change not permitted by the state machine."""

    def __init__(self, delivery_id: str, current: str, target: str):
        self.delivery_id = delivery_id
        self.current = current
        self.target = target
        super().__init__(
            f"Delivery '{delivery_id}' cannot move from {current} to {target}",
            details={"current_status": current, "target_status": target},
        )


class RetryExhaustedError(ConflictError):
    """The delivery has already been retried the maximum number of times."""

    def __init__(self, delivery_id: str, retry_count: int, max_retries: int):
        self.delivery_id = delivery_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Maximum retry attempts exceeded for delivery '{delivery_id}'",
            details={"retry_count": retry_count, "max_retries": max_retries},
        )
        self.code = "RETRY_EXHAUSTED"


class RecordingError(HookRelayError):
    """The datastore was unavailable while recording a delivery."""

    def __init__(self, message: str = "Delivery could not be recorded"):
        super().__init__("RECORDING_FAILED", message, status_code=503)
