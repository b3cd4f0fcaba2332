class PaymentRelayError(Exception):
    """Base class for errors that map onto an HTTP error envelope."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PaymentRelayError):
    status_code = 400
    code = "validation_error"


class AuthenticityError(PaymentRelayError):
    status_code = 401
    code = "invalid_signature"


class VerificationFailed(PaymentRelayError):
    status_code = 400
    code = "verification_failed"

    def __init__(self, message: str, *, reference: str, gateway_status: str | None = None):
        super().__init__(message)
        self.reference = reference
        self.gateway_status = gateway_status


class UpstreamError(PaymentRelayError):
    """A collaborator or the gateway could not be reached or answered 5xx."""

    status_code = 502
    code = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        service: str,
        response_status: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.service = service
        self.response_status = response_status
        self.response_body = response_body


class RateLimited(PaymentRelayError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after
