"""Confirmed-payment orchestration.

Both entry points end in ``process_confirmed``:

* client calls (``process_client_order``) re-verify the reference with the
  gateway before anything is trusted;
* gateway callbacks are trusted once their signature has been checked by
  the route, and the embedded transaction is used as-is.

``process_confirmed`` admits a reference through the guard, runs fan-out and
then settles the reference according to the commit policy.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Sequence

from paycomplete.core.errors import VerificationFailed
from paycomplete.core.observability import log_event
from paycomplete.services.collaborator import DIRECT_CLICK_ID, UNKNOWN, ConfirmedPayment
from paycomplete.services.fanout import FanoutResult, NotificationFanout
from paycomplete.services.idempotency import ReferenceGuard
from paycomplete.services.payment_gateway import (
    PaymentGateway,
    VerifiedTransaction,
    normalize_click_id,
    normalize_transaction,
)

CHARGE_SUCCESS_EVENT = "charge.success"

CommitPolicy = Literal["on_attempt", "on_required_success"]
OrderState = Literal["committed", "already_processed", "released"]


@dataclass(frozen=True)
class ClientOrderRequest:
    reference: str
    email: str
    full_name: str
    gclid: str | None = None
    ip_address: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class OrderOutcome:
    reference: str
    state: OrderState
    fanout: FanoutResult | None = None

    @property
    def already_processed(self) -> bool:
        return self.state == "already_processed"


def confirmed_payment_from_transaction(
    transaction: VerifiedTransaction,
    *,
    reference: str | None = None,
    fallback_email: str | None = None,
    fallback_name: str | None = None,
    gclid: str | None = None,
    ip_address: str | None = None,
    country: str | None = None,
) -> ConfirmedPayment:
    email = transaction.payer_email or fallback_email or ""
    return ConfirmedPayment(
        reference=reference or transaction.reference,
        payer_email=email,
        payer_name=transaction.payer_name or fallback_name or email,
        amount_minor=transaction.amount_minor,
        amount=transaction.amount,
        currency=transaction.currency,
        gclid=normalize_click_id(gclid) or transaction.gclid or DIRECT_CLICK_ID,
        ip_address=ip_address or transaction.ip_address or UNKNOWN,
        country=country or transaction.country or UNKNOWN,
        confirmed_at=transaction.paid_at or datetime.now(timezone.utc),
    )


def event_from_gateway_callback(envelope: dict[str, Any]) -> ConfirmedPayment | None:
    """Build the confirmed payment carried by a ``charge.success`` callback.

    Returns None for other event types and for payloads that cannot be used.
    """
    event_type = envelope.get("event")
    data = envelope.get("data")
    if event_type != CHARGE_SUCCESS_EVENT or not isinstance(data, dict):
        return None

    transaction = normalize_transaction(data)
    if not transaction.succeeded or not transaction.reference or not transaction.payer_email:
        log_event(
            "gateway_callback_unusable",
            level=logging.WARNING,
            reference=transaction.reference or None,
            gateway_status=transaction.gateway_status,
            has_email=bool(transaction.payer_email),
        )
        return None
    return confirmed_payment_from_transaction(transaction)


def check_required_collaborators(fanout: NotificationFanout, required: Sequence[str]) -> None:
    """Reject required collaborators that could never report success.

    Under ``on_required_success`` such a name would release every reference
    and re-run fan-out on each repeat.
    """
    by_name = {collaborator.name: collaborator for collaborator in fanout.collaborators}
    unknown = [name for name in required if name not in by_name]
    if unknown:
        raise ValueError(
            f"Unknown required collaborators {unknown}; expected names from {sorted(by_name)}"
        )
    unconfigured = [name for name in required if not by_name[name].is_configured()]
    if unconfigured:
        raise ValueError(f"Required collaborators are not configured: {unconfigured}")


class PaymentConfirmationOrchestrator:
    def __init__(
        self,
        *,
        gateway: PaymentGateway,
        guard: ReferenceGuard,
        fanout: NotificationFanout,
        commit_policy: CommitPolicy = "on_attempt",
        required_collaborators: Sequence[str] = (),
    ):
        self.gateway = gateway
        self.guard = guard
        self.fanout = fanout
        self.commit_policy = commit_policy
        self.required_collaborators = tuple(required_collaborators)
        if commit_policy == "on_required_success":
            check_required_collaborators(fanout, self.required_collaborators)

    def verify(self, reference: str) -> VerifiedTransaction:
        try:
            transaction = self.gateway.verify_transaction(reference)
        except VerificationFailed as exc:
            log_event(
                "verification_failed",
                level=logging.WARNING,
                reference=reference,
                gateway_status=exc.gateway_status,
                error=exc.message,
            )
            raise
        log_event(
            "payment_verified",
            reference=reference,
            amount=transaction.amount,
            currency=transaction.currency,
        )
        return transaction

    def process_client_order(self, request: ClientOrderRequest) -> OrderOutcome:
        # A ledgered reference was verified before; skip the gateway round trip.
        if self.guard.state_of(request.reference) is not None:
            log_event("duplicate_suppressed", reference=request.reference)
            return OrderOutcome(reference=request.reference, state="already_processed")

        transaction = self.verify(request.reference)
        if transaction.reference and transaction.reference != request.reference:
            log_event(
                "reference_mismatch",
                level=logging.WARNING,
                reference=request.reference,
                gateway_reference=transaction.reference,
            )
            raise VerificationFailed(
                "Gateway returned a different transaction reference",
                reference=request.reference,
                gateway_status=transaction.gateway_status,
            )

        if transaction.payer_email and transaction.payer_email.lower() != request.email.strip().lower():
            log_event(
                "payer_email_mismatch",
                level=logging.WARNING,
                reference=request.reference,
            )

        event = confirmed_payment_from_transaction(
            transaction,
            reference=request.reference,
            fallback_email=request.email,
            fallback_name=request.full_name,
            gclid=request.gclid,
            ip_address=request.ip_address,
            country=request.country,
        )
        return self.process_confirmed(event)

    def process_confirmed(self, event: ConfirmedPayment) -> OrderOutcome:
        if not self.guard.try_begin(event.reference):
            log_event("duplicate_suppressed", reference=event.reference)
            return OrderOutcome(reference=event.reference, state="already_processed")

        result: FanoutResult | None = None
        try:
            result = self.fanout.deliver(event)
        finally:
            state = self._settle(event.reference, result)

        log_event(
            "order_processed",
            reference=event.reference,
            state=state,
            outcomes={name: outcome.status for name, outcome in result.outcomes.items()},
        )
        return OrderOutcome(reference=event.reference, state=state, fanout=result)

    def _settle(self, reference: str, result: FanoutResult | None) -> OrderState:
        if self.commit_policy == "on_required_success" and (
            result is None or not result.all_succeeded(self.required_collaborators)
        ):
            self.guard.release(reference)
            log_event(
                "reference_released",
                level=logging.WARNING,
                reference=reference,
                failed=result.failed_names if result else None,
            )
            return "released"

        self.guard.commit(reference)
        return "committed"
