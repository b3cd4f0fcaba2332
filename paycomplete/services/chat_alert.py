import html

import requests

from paycomplete.services.collaborator import (
    CollaboratorOutcome,
    ConfirmedPayment,
    failed,
    skipped,
    succeeded,
)

CONVERSION_NAME = "purchase"


def _e(value: object) -> str:
    return html.escape(str(value), quote=False)


def conversion_time(event: ConfirmedPayment) -> str:
    return event.confirmed_at.isoformat(sep=" ", timespec="seconds")


def render_sale_message(event: ConfirmedPayment, *, product_title: str) -> str:
    """Telegram HTML message for a confirmed sale.

    Customer-supplied values are escaped so a name like ``<b>`` or ``a_b*c``
    is shown literally. The ``<pre>`` block is meant to be copied into an
    offline-conversion upload.
    """
    converted_at = conversion_time(event)
    lines = [
        f"🎉 <b>NEW SALE - {_e(product_title.upper())}</b> 🎉",
        "",
        f"👤 Full Name: {_e(event.payer_name)}",
        f"📧 Email: {_e(event.payer_email)}",
        "",
        f"💰 Amount: {_e(event.currency)} {_e(event.amount)}",
        f"🧾 Transaction Reference: {_e(event.reference)}",
        "",
        f"🌍 Country: {_e(event.country)}",
        f"🖥️ IP Address: {_e(event.ip_address)}",
        f"⏰ Timestamp: {_e(event.confirmed_at.isoformat())}",
        "",
        "━━━━━━━━━━━━━━━━━━━━",
        "📊 <b>Google Ads Conversion Data:</b>",
        "<pre>"
        f"GCLID: {_e(event.gclid)}\n"
        f"Email: {_e(event.payer_email)}\n"
        f"Conversion Name: {CONVERSION_NAME}\n"
        f"Conversion Time: {_e(converted_at)}\n"
        f"Conversion Value: {_e(event.amount)}\n"
        f"Currency: {_e(event.currency)}"
        "</pre>",
        "",
        "<b>Upload format:</b> GCLID, Conversion Name, Conversion Time, Conversion Value, Conversion Currency",
        f"<code>{_e(event.gclid)},{CONVERSION_NAME},{_e(converted_at)},{_e(event.amount)},{_e(event.currency)}</code>",
    ]
    return "\n".join(lines)


class TelegramChatAlert:
    name = "telegram"

    def __init__(
        self,
        *,
        bot_token: str | None,
        chat_id: str | None,
        api_base_url: str,
        product_title: str,
        session: requests.Session,
        timeout: float,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._api_base_url = api_base_url.rstrip("/")
        self._product_title = product_title
        self._session = session
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    def deliver(self, event: ConfirmedPayment) -> CollaboratorOutcome:
        if not self.is_configured():
            return skipped("Telegram credentials not configured")

        response = self._session.post(
            f"{self._api_base_url}/bot{self._bot_token}/sendMessage",
            json={
                "chat_id": self._chat_id,
                "text": render_sale_message(event, product_title=self._product_title),
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
            timeout=self._timeout,
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok"):
            description = body.get("description") or response.text[:200]
            return failed(f"Telegram HTTP {response.status_code}: {description}")

        message_id = (body.get("result") or {}).get("message_id")
        return succeeded(f"message_id={message_id}" if message_id is not None else None)
