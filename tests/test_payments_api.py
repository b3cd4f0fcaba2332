import json

from conftest import TELEGRAM_URL, TEST_SECRET, FakeResponse, paystack_transaction
from paycomplete.core.config import Settings
from paycomplete.core.deps import get_settings
from paycomplete.core.signatures import compute_signature
from paycomplete.main import app
from paycomplete.routers.payments import initialize_rate_limiter


def _order_payload(**overrides):
    payload = {"email": "a@b.com", "fullName": "Jane Doe", "reference": "txn_1"}
    payload.update(overrides)
    return payload


def _signed_post(client, path: str, envelope: dict, *, secret: str = TEST_SECRET):
    body = json.dumps(envelope).encode("utf-8")
    return client.post(
        path,
        content=body,
        headers={
            "Content-Type": "application/json",
            "x-paystack-signature": compute_signature(body, secret),
        },
    )


def test_initialize_payment_returns_checkout_url(relay_context):
    client, session = relay_context.client, relay_context.session

    response = client.post(
        "/api/initialize-payment",
        json={"email": "a@b.com", "fullName": "Jane Doe", "amount": 4900},
        headers={"Origin": "https://shop.example.com"},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    reference = body["data"]["reference"]
    assert reference.startswith("REF_")
    assert body["data"]["authorization_url"] == f"https://checkout.paystack.com/{reference}"
    assert body["data"]["access_code"] == "acc_123"

    (method, url, kwargs), = session.calls
    assert method == "POST"
    assert url.endswith("/transaction/initialize")
    assert kwargs["headers"]["Authorization"] == f"Bearer {TEST_SECRET}"
    assert kwargs["json"]["amount"] == 490000
    assert kwargs["json"]["currency"] == "NGN"
    assert kwargs["json"]["callback_url"] == "https://shop.example.com/paycomplete.html"
    assert kwargs["json"]["metadata"]["full_name"] == "Jane Doe"
    assert kwargs["json"]["metadata"]["gclid"] == "not_available"


def test_initialize_payment_missing_fields_is_rejected_before_gateway(relay_context):
    client, session = relay_context.client, relay_context.session

    for payload in (
        {"fullName": "Jane Doe", "amount": 4900},
        {"email": "a@b.com", "amount": 4900},
        {"email": "a@b.com", "fullName": "Jane Doe"},
        {"email": "a@b.com", "fullName": "Jane Doe", "amount": 0},
    ):
        response = client.post("/api/initialize-payment", json=payload)
        assert response.status_code == 400, response.text
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["path"] == "/api/initialize-payment"
        assert error["details"]

    assert session.calls == []


def test_initialize_payment_is_rate_limited(relay_context, monkeypatch):
    monkeypatch.setattr(initialize_rate_limiter, "limit", 2)
    client = relay_context.client
    payload = {"email": "a@b.com", "fullName": "Jane Doe", "amount": 4900}

    assert client.post("/api/initialize-payment", json=payload).status_code == 200
    assert client.post("/api/initialize-payment", json=payload).status_code == 200
    blocked = client.post("/api/initialize-payment", json=payload)
    assert blocked.status_code == 429
    assert blocked.json()["error"]["code"] == "rate_limited"
    assert int(blocked.headers["Retry-After"]) >= 1
    assert len(relay_context.session.calls) == 2


def test_verify_payment_returns_normalized_record(relay_context):
    response = relay_context.client.get("/api/verify-payment/txn_1")
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["succeeded"] is True
    assert data["reference"] == "txn_1"
    assert data["amountMinorUnits"] == 490000
    assert data["amount"] == 4900
    assert data["currency"] == "NGN"
    assert data["payerEmail"] == "a@b.com"
    assert data["payerName"] == "Jane Doe"
    assert data["country"] == "NG"


def test_verify_payment_unknown_reference(relay_context):
    response = relay_context.client.get("/api/verify-payment/txn_unknown")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "verification_failed"


def test_verify_payment_not_successful(relay_context):
    relay_context.transactions["txn_2"] = paystack_transaction("txn_2", status="abandoned")
    response = relay_context.client.get("/api/verify-payment/txn_2")
    assert response.status_code == 400
    assert "abandoned" in response.json()["error"]["message"]


def test_gateway_outage_maps_to_bad_gateway(relay_context):
    relay_context.session.handler = lambda method, url, kwargs: FakeResponse(503, text="upstream unavailable")
    response = relay_context.client.get("/api/verify-payment/txn_1")
    assert response.status_code == 502
    assert response.json()["error"]["code"] == "upstream_error"


def test_process_order_fans_out_once(relay_context):
    client, session = relay_context.client, relay_context.session

    first = client.post("/api/process-order", json=_order_payload())
    assert first.status_code == 200, first.text
    body = first.json()
    assert body["success"] is True
    assert body["alreadyProcessed"] is False
    assert body["state"] == "committed"
    assert set(body["collaborators"]) == {"telegram", "mailerlite", "fetchapp"}
    assert all(result["succeeded"] for result in body["collaborators"].values())

    (_, _, telegram_kwargs), = session.calls_to(TELEGRAM_URL)
    text = telegram_kwargs["json"]["text"]
    assert "Full Name: Jane Doe" in text
    assert "GCLID: direct" in text
    assert "NGN 4900" in text
    assert len(session.calls_to("/subscribers")) == 1
    assert len(session.calls_to("/api/v2/orders/create")) == 1

    calls_after_first = len(session.calls)
    second = client.post("/api/process-order", json=_order_payload())
    assert second.status_code == 200
    assert second.json()["alreadyProcessed"] is True
    assert second.json()["collaborators"] == {}
    assert len(session.calls) == calls_after_first


def test_process_order_passes_click_id_through(relay_context):
    response = relay_context.client.post(
        "/api/process-order",
        json=_order_payload(gclid="EAIaIQobChMI", ipAddress="8.8.8.8", country="GH"),
    )
    assert response.status_code == 200, response.text

    (_, _, telegram_kwargs), = relay_context.session.calls_to(TELEGRAM_URL)
    assert "GCLID: EAIaIQobChMI" in telegram_kwargs["json"]["text"]
    (_, _, mailerlite_kwargs), = relay_context.session.calls_to("/subscribers")
    assert mailerlite_kwargs["json"]["fields"]["gclid_status"] == "present"
    assert mailerlite_kwargs["json"]["fields"]["country"] == "GH"


def test_process_order_collaborator_failure_is_reported(relay_context):
    default = relay_context.session.handler

    def telegram_down(method, url, kwargs):
        if url.startswith(TELEGRAM_URL):
            return FakeResponse(502, text="Bad Gateway")
        return default(method, url, kwargs)

    relay_context.session.handler = telegram_down
    response = relay_context.client.post("/api/process-order", json=_order_payload())
    assert response.status_code == 200
    collaborators = response.json()["collaborators"]
    assert collaborators["telegram"]["status"] == "failed"
    assert collaborators["mailerlite"]["succeeded"] is True
    assert collaborators["fetchapp"]["succeeded"] is True


def test_process_order_unverified_reference_has_no_side_effects(relay_context):
    response = relay_context.client.post("/api/process-order", json=_order_payload(reference="txn_missing"))
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "verification_failed"
    assert relay_context.session.calls_to(TELEGRAM_URL) == []
    assert relay_context.guard.state_of("txn_missing") is None


def test_process_order_missing_fields(relay_context):
    response = relay_context.client.post("/api/process-order", json={"reference": "txn_1"})
    assert response.status_code == 400
    fields = {item["field"] for item in response.json()["error"]["details"]}
    assert {"email", "fullName"} <= fields
    assert relay_context.session.calls == []


def test_webhook_rejects_missing_or_bad_signature(relay_context):
    client = relay_context.client
    body = json.dumps({"event": "charge.success", "data": paystack_transaction()}).encode("utf-8")

    unsigned = client.post("/api/webhook", content=body, headers={"Content-Type": "application/json"})
    assert unsigned.status_code == 401
    assert unsigned.json()["error"]["code"] == "invalid_signature"

    forged = client.post(
        "/api/webhook",
        content=body,
        headers={"x-paystack-signature": compute_signature(body, "sk_wrong")},
    )
    assert forged.status_code == 401

    tampered = client.post(
        "/api/webhook",
        content=body.replace(b"490000", b"100"),
        headers={"x-paystack-signature": compute_signature(body, TEST_SECRET)},
    )
    assert tampered.status_code == 401
    assert relay_context.session.calls == []
    assert relay_context.guard.state_of("txn_1") is None


def test_webhook_charge_success_fans_out_in_background(relay_context):
    envelope = {"event": "charge.success", "data": paystack_transaction()}

    response = _signed_post(relay_context.client, "/api/webhook", envelope)
    assert response.status_code == 200, response.text
    assert response.json() == {"ok": True, "event": "charge.success", "queued": True, "reference": "txn_1"}

    assert relay_context.dispatcher.drain(timeout=5)
    assert len(relay_context.session.calls_to(TELEGRAM_URL)) == 1
    assert relay_context.session.calls_to("/transaction/verify/") == []
    assert relay_context.guard.state_of("txn_1") == "committed"

    retry = _signed_post(relay_context.client, "/api/paystack/webhook", envelope)
    assert retry.status_code == 200
    assert relay_context.dispatcher.drain(timeout=5)
    assert len(relay_context.session.calls_to(TELEGRAM_URL)) == 1


def test_webhook_then_client_order_is_processed_once(relay_context):
    envelope = {"event": "charge.success", "data": paystack_transaction()}
    assert _signed_post(relay_context.client, "/api/webhook", envelope).status_code == 200
    assert relay_context.dispatcher.drain(timeout=5)

    response = relay_context.client.post("/api/process-order", json=_order_payload())
    assert response.json()["alreadyProcessed"] is True
    assert len(relay_context.session.calls_to(TELEGRAM_URL)) == 1


def test_webhook_ignores_other_events(relay_context):
    response = _signed_post(
        relay_context.client,
        "/api/webhook",
        {"event": "transfer.success", "data": {"reference": "trf_1"}},
    )
    assert response.status_code == 200
    assert response.json()["queued"] is False
    assert response.json()["event"] == "transfer.success"
    assert relay_context.session.calls == []


def test_webhook_signed_but_malformed_body_is_acknowledged(relay_context):
    for body in (b"not json", b"[1, 2]", b'"charge.success"'):
        response = relay_context.client.post(
            "/api/webhook",
            content=body,
            headers={"x-paystack-signature": compute_signature(body, TEST_SECRET)},
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "event": None, "queued": False, "reference": None}

    assert relay_context.dispatcher.drain(timeout=5)
    assert relay_context.session.calls == []


def test_health_reports_configuration_presence_only(relay_context):
    response = relay_context.client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["config"] == {
        "paystack": True,
        "telegram": False,
        "mailerlite": False,
        "email": False,
        "fetchapp": False,
    }
    assert set(body["dispatcher"]) == {"pending", "completed", "failed"}
    assert TEST_SECRET not in response.text
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(relay_context):
    response = relay_context.client.get("/api/verify-payment/txn_unknown", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"
    assert response.json()["error"]["request_id"] == "req-42"


def test_test_process_sends_synthetic_sale_without_ledger_entry(relay_context):
    response = relay_context.client.get("/api/test-process")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["state"] == "test"
    assert body["reference"].startswith("TEST_")
    assert body["collaborators"]["telegram"]["succeeded"] is True
    assert len(relay_context.guard) == 0


def test_test_process_hidden_in_production(relay_context):
    production = Settings(_env_file=None, env="production", paystack_secret_key=TEST_SECRET)
    app.dependency_overrides[get_settings] = lambda: production

    response = relay_context.client.get("/api/test-process")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"
    assert relay_context.session.calls == []
