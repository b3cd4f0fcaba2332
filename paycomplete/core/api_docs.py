from paycomplete.core.errors import (
    AuthenticityError,
    PaymentRelayError,
    RateLimited,
    UpstreamError,
    ValidationError,
    VerificationFailed,
)
from paycomplete.schemas.common import ErrorOut

# Relay errors that can produce each status; the first one is used as the example.
_RELAY_ERRORS: dict[int, tuple[type[PaymentRelayError], ...]] = {
    400: (VerificationFailed, ValidationError),
    401: (AuthenticityError,),
    429: (RateLimited,),
    502: (UpstreamError,),
}

_EXAMPLE_MESSAGES: dict[int, str] = {
    400: "Transaction was not successful (status=abandoned)",
    401: "Invalid webhook signature",
    404: "Not found",
    429: "Too many payment attempts. Try again later.",
    500: "Internal server error",
    502: "Paystack responded with HTTP 503",
}

_GENERIC_CODES: dict[int, str] = {404: "not_found", 500: "internal_error"}


def error_responses(*status_codes: int) -> dict[int | str, dict]:
    """OpenAPI ``responses`` entries rendering the shared error envelope."""
    responses: dict[int | str, dict] = {}
    for status_code in status_codes:
        errors = _RELAY_ERRORS.get(status_code, ())
        codes = [error.code for error in errors] or [_GENERIC_CODES.get(status_code, "http_error")]
        responses[status_code] = {
            "model": ErrorOut,
            "description": "Error envelope with code " + " or ".join(codes),
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": codes[0],
                            "message": _EXAMPLE_MESSAGES.get(status_code, "HTTP error"),
                            "request_id": "5f0c6a4e-3b1d-4a53-9a3e-2f1d0c9b8a7e",
                            "path": "/api/process-order",
                            "details": None,
                        }
                    }
                }
            },
        }
    return responses
