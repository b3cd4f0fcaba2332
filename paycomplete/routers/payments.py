from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from paycomplete.core.api_docs import error_responses
from paycomplete.core.config import Settings, settings as app_settings
from paycomplete.core.deps import get_orchestrator, get_settings
from paycomplete.core.errors import RateLimited
from paycomplete.core.id_utils import generate_payment_reference, generate_short_token
from paycomplete.core.observability import log_event
from paycomplete.core.rate_limit import ClientRateLimiter
from paycomplete.schemas.payment import (
    CollaboratorResultOut,
    InitializePaymentData,
    InitializePaymentIn,
    InitializePaymentOut,
    ProcessOrderIn,
    ProcessOrderOut,
    VerifiedTransactionOut,
    VerifyPaymentOut,
)
from paycomplete.services.collaborator import ConfirmedPayment
from paycomplete.services.fanout import FanoutResult
from paycomplete.services.order_processing import (
    ClientOrderRequest,
    OrderOutcome,
    PaymentConfirmationOrchestrator,
)
from paycomplete.services.payment_gateway import PaymentInitRequest

router = APIRouter(prefix=app_settings.api_prefix, tags=["payments"])

initialize_rate_limiter = ClientRateLimiter(
    limit=app_settings.initialize_rate_limit_requests,
    window_seconds=app_settings.initialize_rate_limit_window_seconds,
)

_OUTCOME_MESSAGES = {
    "committed": "Order processed successfully",
    "already_processed": "Order already processed",
    "released": "Order processed with failures; it can be retried",
}


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _callback_url(request: Request, config: Settings) -> str | None:
    if config.paystack_callback_url:
        return config.paystack_callback_url
    origin = request.headers.get("origin")
    if not origin or origin == "null":
        return None
    return f"{origin.rstrip('/')}{config.paystack_callback_path}"


def _collaborators_out(result: FanoutResult | None) -> dict[str, CollaboratorResultOut]:
    if result is None:
        return {}
    return {
        name: CollaboratorResultOut(
            status=outcome.status,
            succeeded=outcome.succeeded,
            detail=outcome.detail,
        )
        for name, outcome in result.outcomes.items()
    }


def _order_out(outcome: OrderOutcome) -> ProcessOrderOut:
    return ProcessOrderOut(
        already_processed=outcome.already_processed,
        reference=outcome.reference,
        state=outcome.state,
        message=_OUTCOME_MESSAGES[outcome.state],
        collaborators=_collaborators_out(outcome.fanout),
    )


@router.post(
    "/initialize-payment",
    response_model=InitializePaymentOut,
    summary="Start a hosted checkout with the payment gateway",
    responses=error_responses(400, 429, 500, 502),
)
def initialize_payment(
    payload: InitializePaymentIn,
    request: Request,
    orchestrator: PaymentConfirmationOrchestrator = Depends(get_orchestrator),
    config: Settings = Depends(get_settings),
):
    retry_after = initialize_rate_limiter.consume(_client_key(request))
    if retry_after:
        raise RateLimited("Too many payment attempts. Try again later.", retry_after=retry_after)

    reference = generate_payment_reference()
    result = orchestrator.gateway.initialize_transaction(
        PaymentInitRequest(
            email=payload.email,
            full_name=payload.full_name,
            amount=float(payload.amount),
            reference=reference,
            currency=config.paystack_currency,
            callback_url=_callback_url(request, config),
            gclid=payload.gclid or None,
        )
    )
    log_event(
        "payment_initialized",
        reference=result.reference,
        amount=str(payload.amount),
        currency=config.paystack_currency,
        has_gclid=bool(payload.gclid),
    )
    return InitializePaymentOut(
        data=InitializePaymentData(
            authorization_url=result.authorization_url,
            access_code=result.access_code,
            reference=result.reference,
        )
    )


@router.get(
    "/verify-payment/{reference}",
    response_model=VerifyPaymentOut,
    summary="Verify a transaction with the payment gateway",
    responses=error_responses(400, 500, 502),
)
def verify_payment(
    reference: str,
    orchestrator: PaymentConfirmationOrchestrator = Depends(get_orchestrator),
):
    transaction = orchestrator.verify(reference.strip())
    return VerifyPaymentOut(
        data=VerifiedTransactionOut(
            succeeded=transaction.succeeded,
            reference=transaction.reference,
            amount_minor_units=transaction.amount_minor,
            amount=transaction.amount,
            currency=transaction.currency,
            payer_email=transaction.payer_email,
            payer_name=transaction.payer_name,
            gclid=transaction.gclid,
            ip_address=transaction.ip_address,
            country=transaction.country,
            paid_at=transaction.paid_at,
        )
    )


@router.post(
    "/process-order",
    response_model=ProcessOrderOut,
    summary="Re-verify a payment and fan the purchase out to collaborators",
    responses=error_responses(400, 500, 502),
)
def process_order(
    payload: ProcessOrderIn,
    orchestrator: PaymentConfirmationOrchestrator = Depends(get_orchestrator),
):
    log_event("process_order_received", reference=payload.reference, has_gclid=bool(payload.gclid))
    outcome = orchestrator.process_client_order(
        ClientOrderRequest(
            reference=payload.reference,
            email=payload.email,
            full_name=payload.full_name,
            gclid=payload.gclid,
            ip_address=payload.ip_address,
            country=payload.country,
        )
    )
    return _order_out(outcome)


@router.get(
    "/test-process",
    response_model=ProcessOrderOut,
    summary="Send a synthetic sale through every collaborator",
    responses=error_responses(404, 500),
)
def test_process(
    orchestrator: PaymentConfirmationOrchestrator = Depends(get_orchestrator),
    config: Settings = Depends(get_settings),
):
    if config.is_production:
        raise HTTPException(status_code=404, detail="Not found")

    event = ConfirmedPayment(
        reference=f"TEST_{generate_short_token(12)}",
        payer_email="test@example.com",
        payer_name="Test User",
        amount_minor=490000,
        amount=4900,
        currency=config.paystack_currency,
        gclid="test_gclid_123",
        ip_address="8.8.8.8",
        country="NG",
        confirmed_at=datetime.now(timezone.utc),
    )
    # Bypasses the reference ledger: test sales must never block real ones.
    result = orchestrator.fanout.deliver(event)
    return ProcessOrderOut(
        already_processed=False,
        reference=event.reference,
        state="test",
        message="Test completed - check collaborator results",
        collaborators=_collaborators_out(result),
    )
