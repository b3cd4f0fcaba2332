import json
import os
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("ENV", "test")
os.environ.setdefault("IDEMPOTENCY_BACKEND", "memory")

from paycomplete.core.config import Settings
from paycomplete.core.deps import get_dispatcher, get_orchestrator, get_settings
from paycomplete.main import app
from paycomplete.routers.payments import initialize_rate_limiter
from paycomplete.services.chat_alert import TelegramChatAlert
from paycomplete.services.collaborator import CollaboratorOutcome, ConfirmedPayment, succeeded
from paycomplete.services.dispatcher import FanoutDispatcher
from paycomplete.services.fanout import NotificationFanout
from paycomplete.services.fulfillment_provider import FetchAppFulfillment
from paycomplete.services.idempotency import InMemoryReferenceGuard
from paycomplete.services.order_processing import PaymentConfirmationOrchestrator
from paycomplete.services.payment_gateway import PaystackGateway
from paycomplete.services.subscriber_list import MailerLiteSubscriberList

TEST_SECRET = "sk_test_relay_secret"
PAYSTACK_URL = "https://api.paystack.test"
TELEGRAM_URL = "https://telegram.test"
MAILERLITE_URL = "https://mailerlite.test/api"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None):
        self.status_code = status_code
        self._body = body
        if text is not None:
            self.text = text
        else:
            self.text = json.dumps(body) if body is not None else ""

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSession:
    """Stands in for ``requests.Session``; routes every call through ``handler``."""

    def __init__(self, handler: Callable[[str, str, dict[str, Any]], FakeResponse]):
        self.handler = handler
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method.upper(), url, kwargs))
        return self.handler(method.upper(), url, kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("GET", url, **kwargs)

    def calls_to(self, fragment: str) -> list[tuple[str, str, dict[str, Any]]]:
        return [call for call in self.calls if fragment in call[1]]

    def close(self) -> None:
        pass


class RecordingCollaborator:
    def __init__(self, name: str, outcome: CollaboratorOutcome | None = None, error: Exception | None = None):
        self.name = name
        self.outcome = outcome or succeeded()
        self.error = error
        self.events: list[ConfirmedPayment] = []

    def is_configured(self) -> bool:
        return True

    def deliver(self, event: ConfirmedPayment) -> CollaboratorOutcome:
        self.events.append(event)
        if self.error is not None:
            raise self.error
        return self.outcome


def paystack_transaction(
    reference: str = "txn_1",
    *,
    status: str = "success",
    amount: int = 490000,
    email: str = "a@b.com",
    full_name: str | None = "Jane Doe",
    gclid: str = "not_available",
) -> dict[str, Any]:
    metadata: Any = {"full_name": full_name, "gclid": gclid} if full_name else ""
    return {
        "id": 3051231,
        "status": status,
        "reference": reference,
        "amount": amount,
        "currency": "NGN",
        "paid_at": "2026-10-19T10:15:00.000Z",
        "ip_address": "102.89.40.1",
        "metadata": metadata,
        "customer": {"email": email, "first_name": None, "last_name": None},
        "authorization": {"country_code": "NG"},
    }


def make_confirmed_payment(**overrides: Any) -> ConfirmedPayment:
    values: dict[str, Any] = {
        "reference": "txn_1",
        "payer_email": "a@b.com",
        "payer_name": "Jane Doe",
        "amount_minor": 490000,
        "amount": 4900,
        "currency": "NGN",
        "gclid": "direct",
        "ip_address": "102.89.40.1",
        "country": "NG",
        "confirmed_at": datetime(2026, 10, 19, 10, 15, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return ConfirmedPayment(**values)


def default_handler(transactions: dict[str, dict[str, Any]]):
    def handler(method: str, url: str, kwargs: dict[str, Any]) -> FakeResponse:
        if url.startswith(f"{PAYSTACK_URL}/transaction/verify/"):
            reference = url.rsplit("/", 1)[-1]
            transaction = transactions.get(reference)
            if transaction is None:
                return FakeResponse(400, {"status": False, "message": "Transaction reference not found"})
            return FakeResponse(200, {"status": True, "message": "Verification successful", "data": transaction})
        if url == f"{PAYSTACK_URL}/transaction/initialize":
            reference = kwargs["json"]["reference"]
            return FakeResponse(
                200,
                {
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{reference}",
                        "access_code": "acc_123",
                        "reference": reference,
                    },
                },
            )
        if url.startswith(TELEGRAM_URL):
            return FakeResponse(200, {"ok": True, "result": {"message_id": 77}})
        if url.startswith(MAILERLITE_URL):
            return FakeResponse(201, {"data": {"id": "sub_1"}})
        if "fetchapp.test" in url:
            return FakeResponse(201, text="<order><id>ok</id></order>")
        return FakeResponse(404, {"message": "unexpected url"})

    return handler


@pytest.fixture()
def relay_context():
    transactions = {"txn_1": paystack_transaction()}
    session = FakeSession(default_handler(transactions))
    test_settings = Settings(_env_file=None, paystack_secret_key=TEST_SECRET, paystack_base_url=PAYSTACK_URL)

    guard = InMemoryReferenceGuard()
    collaborators = [
        TelegramChatAlert(
            bot_token="bot-token",
            chat_id="-100123",
            api_base_url=TELEGRAM_URL,
            product_title="Digital Course",
            session=session,
            timeout=5,
        ),
        MailerLiteSubscriberList(
            api_key="ml-key",
            group_id="group-1",
            base_url=MAILERLITE_URL,
            session=session,
            timeout=5,
        ),
        FetchAppFulfillment(
            api_key="fa-key",
            api_token="fa-token",
            host="shop.fetchapp.test",
            sku="DIGITAL_COURSE",
            session=session,
            timeout=5,
        ),
    ]
    orchestrator = PaymentConfirmationOrchestrator(
        gateway=PaystackGateway(
            secret_key=TEST_SECRET,
            base_url=PAYSTACK_URL,
            session=session,
            timeout=5,
        ),
        guard=guard,
        fanout=NotificationFanout(collaborators),
    )
    dispatcher = FanoutDispatcher(max_workers=2)

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield SimpleNamespace(
            client=client,
            session=session,
            transactions=transactions,
            guard=guard,
            orchestrator=orchestrator,
            dispatcher=dispatcher,
            settings=test_settings,
        )

    app.dependency_overrides.clear()
    dispatcher.shutdown()
    initialize_rate_limiter.reset()
