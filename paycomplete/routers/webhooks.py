import json
import logging

from fastapi import APIRouter, Depends, Request

from paycomplete.core.api_docs import error_responses
from paycomplete.core.config import Settings, settings as app_settings
from paycomplete.core.deps import get_dispatcher, get_orchestrator, get_settings
from paycomplete.core.errors import AuthenticityError
from paycomplete.core.observability import log_event
from paycomplete.core.signatures import SIGNATURE_HEADER, verify_signature
from paycomplete.schemas.payment import WebhookAckOut
from paycomplete.services.dispatcher import FanoutDispatcher
from paycomplete.services.order_processing import (
    PaymentConfirmationOrchestrator,
    event_from_gateway_callback,
)

router = APIRouter(prefix=app_settings.api_prefix, tags=["webhooks"])


@router.post(
    "/webhook",
    response_model=WebhookAckOut,
    summary="Receive a payment gateway callback",
    responses=error_responses(401, 500),
)
@router.post("/paystack/webhook", response_model=WebhookAckOut, include_in_schema=False)
async def receive_gateway_webhook(
    request: Request,
    orchestrator: PaymentConfirmationOrchestrator = Depends(get_orchestrator),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    config: Settings = Depends(get_settings),
):
    # The signature covers the bytes as sent; parse only after checking it.
    raw_body = await request.body()
    if not verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), config.paystack_secret_key):
        raise AuthenticityError("Invalid webhook signature")

    # Every signed callback gets a 200, even one that cannot be parsed.
    try:
        envelope = json.loads(raw_body)
    except ValueError:
        envelope = None
    if not isinstance(envelope, dict):
        log_event("gateway_callback_malformed", level=logging.WARNING, body_bytes=len(raw_body))
        return WebhookAckOut(queued=False)

    event_type = envelope.get("event") if isinstance(envelope.get("event"), str) else None
    event = event_from_gateway_callback(envelope)
    if event is None:
        log_event("gateway_callback_ignored", event_type=event_type)
        return WebhookAckOut(event=event_type, queued=False)

    dispatcher.submit(f"webhook:{event.reference}", orchestrator.process_confirmed, event)
    log_event(
        "gateway_callback_queued",
        event_type=event_type,
        reference=event.reference,
    )
    return WebhookAckOut(event=event_type, queued=True, reference=event.reference)
