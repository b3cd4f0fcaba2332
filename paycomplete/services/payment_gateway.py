from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote

import requests

from paycomplete.core.errors import UpstreamError, ValidationError, VerificationFailed
from paycomplete.core.money import to_major_units, to_minor_units

SERVICE_NAME = "paystack"
MISSING_CLICK_ID = "not_available"
_BLANK_CLICK_IDS = {"", MISSING_CLICK_ID, "n/a", "none", "null", "undefined"}


@dataclass(frozen=True)
class PaymentInitRequest:
    email: str
    full_name: str
    amount: float
    reference: str
    currency: str
    callback_url: str | None
    gclid: str | None = None


@dataclass(frozen=True)
class PaymentInitResult:
    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class VerifiedTransaction:
    succeeded: bool
    reference: str
    amount_minor: int
    amount: int
    currency: str
    payer_email: str | None
    payer_name: str | None
    gclid: str | None
    ip_address: str | None
    country: str | None
    paid_at: datetime | None
    gateway_status: str


class PaymentGateway(Protocol):
    name: str

    def initialize_transaction(self, request: PaymentInitRequest) -> PaymentInitResult:
        ...

    def verify_transaction(self, reference: str) -> VerifiedTransaction:
        ...


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def normalize_click_id(value: Any) -> str | None:
    cleaned = _clean(value)
    if cleaned is None or cleaned.lower() in _BLANK_CLICK_IDS:
        return None
    return cleaned


def _parse_paid_at(value: Any) -> datetime | None:
    raw = _clean(value)
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _metadata_name(metadata: dict[str, Any]) -> str | None:
    name = _clean(metadata.get("full_name"))
    if name:
        return name
    for field in metadata.get("custom_fields") or []:
        if isinstance(field, dict) and field.get("variable_name") == "customer_name":
            return _clean(field.get("value"))
    return None


def normalize_transaction(data: dict[str, Any]) -> VerifiedTransaction:
    """Map a Paystack transaction object (verify response or charge event) to our record."""
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        # Paystack sends an empty string when no metadata was attached.
        metadata = {}
    customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
    authorization = data.get("authorization") if isinstance(data.get("authorization"), dict) else {}

    customer_name = " ".join(
        part for part in (_clean(customer.get("first_name")), _clean(customer.get("last_name"))) if part
    )
    amount_minor = int(data.get("amount") or 0)
    gateway_status = (_clean(data.get("status")) or "unknown").lower()

    return VerifiedTransaction(
        succeeded=gateway_status == "success",
        reference=_clean(data.get("reference")) or "",
        amount_minor=amount_minor,
        amount=to_major_units(amount_minor),
        currency=(_clean(data.get("currency")) or "").upper(),
        payer_email=_clean(customer.get("email")),
        payer_name=_metadata_name(metadata) or customer_name or None,
        gclid=normalize_click_id(metadata.get("gclid")),
        ip_address=_clean(data.get("ip_address")),
        country=_clean(authorization.get("country_code")),
        paid_at=_parse_paid_at(data.get("paid_at") or data.get("paidAt")),
        gateway_status=gateway_status,
    )


class PaystackGateway:
    name = SERVICE_NAME

    def __init__(
        self,
        *,
        secret_key: str | None,
        base_url: str,
        session: requests.Session,
        timeout: float,
    ):
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = timeout

    def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, dict[str, Any]]:
        if not self._secret_key:
            raise UpstreamError("Paystack secret key not configured", service=self.name)

        headers = {"Authorization": f"Bearer {self._secret_key}"}
        try:
            response = self._session.request(
                method,
                f"{self._base_url}{path}",
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Paystack request failed: {exc}", service=self.name) from exc

        if response.status_code >= 500 or response.status_code in {401, 403}:
            raise UpstreamError(
                f"Paystack responded with HTTP {response.status_code}",
                service=self.name,
                response_status=response.status_code,
                response_body=response.text[:500],
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "Paystack returned a non-JSON body",
                service=self.name,
                response_status=response.status_code,
                response_body=response.text[:500],
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError("Paystack returned an unexpected body", service=self.name)
        return response.status_code, payload

    def initialize_transaction(self, request: PaymentInitRequest) -> PaymentInitResult:
        body: dict[str, Any] = {
            "email": request.email,
            "amount": to_minor_units(request.amount),
            "reference": request.reference,
            "currency": request.currency,
            "metadata": {
                "full_name": request.full_name,
                "gclid": request.gclid or MISSING_CLICK_ID,
                "custom_fields": [
                    {
                        "display_name": "Customer Name",
                        "variable_name": "customer_name",
                        "value": request.full_name,
                    }
                ],
            },
        }
        if request.callback_url:
            body["callback_url"] = request.callback_url

        _, payload = self._request("POST", "/transaction/initialize", json=body)
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        if not payload.get("status") or not data.get("authorization_url"):
            raise ValidationError(payload.get("message") or "Failed to initialize payment")

        return PaymentInitResult(
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code") or "",
            reference=data.get("reference") or request.reference,
        )

    def verify_transaction(self, reference: str) -> VerifiedTransaction:
        status_code, payload = self._request(
            "GET", f"/transaction/verify/{quote(reference, safe='')}"
        )
        data = payload.get("data")
        if status_code >= 400 or not payload.get("status") or not isinstance(data, dict):
            raise VerificationFailed(
                payload.get("message") or "Transaction not found",
                reference=reference,
            )

        transaction = normalize_transaction(data)
        if not transaction.succeeded:
            raise VerificationFailed(
                f"Transaction was not successful (status={transaction.gateway_status})",
                reference=reference,
                gateway_status=transaction.gateway_status,
            )
        return transaction
