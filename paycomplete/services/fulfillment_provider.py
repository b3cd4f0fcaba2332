import xml.etree.ElementTree as ET

import requests

from paycomplete.services.collaborator import (
    CollaboratorOutcome,
    ConfirmedPayment,
    failed,
    skipped,
    succeeded,
)


def split_display_name(full_name: str) -> tuple[str, str]:
    """First token is the first name, the rest is the last name.

    A single-token name is reused as the last name: "Madonna" -> ("Madonna", "Madonna").
    """
    parts = full_name.split()
    if not parts:
        return full_name, full_name
    first_name = parts[0]
    last_name = " ".join(parts[1:]) or first_name
    return first_name, last_name


def build_order_xml(event: ConfirmedPayment, *, sku: str) -> bytes:
    first_name, last_name = split_display_name(event.payer_name)

    order = ET.Element("order")
    ET.SubElement(order, "id").text = event.reference
    ET.SubElement(order, "vendor_id").text = event.reference
    ET.SubElement(order, "first_name").text = first_name
    ET.SubElement(order, "last_name").text = last_name
    ET.SubElement(order, "email").text = event.payer_email
    ET.SubElement(order, "currency").text = event.currency
    ET.SubElement(order, "send_email").text = "true"
    items = ET.SubElement(order, "order_items", {"type": "array"})
    item = ET.SubElement(items, "order_item")
    ET.SubElement(item, "sku").text = sku
    ET.SubElement(item, "price").text = str(event.amount)

    return ET.tostring(order, encoding="utf-8", xml_declaration=True)


class FetchAppFulfillment:
    """Creates the order in FetchApp, which then emails the download link itself."""

    name = "fetchapp"

    def __init__(
        self,
        *,
        api_key: str | None,
        api_token: str | None,
        host: str | None,
        sku: str,
        session: requests.Session,
        timeout: float,
    ):
        self._api_key = api_key
        self._api_token = api_token
        self._host = (host or "").strip().rstrip("/").removeprefix("https://").removeprefix("http://")
        self._sku = sku
        self._session = session
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_token and self._host)

    def deliver(self, event: ConfirmedPayment) -> CollaboratorOutcome:
        if not self.is_configured():
            return skipped("FetchApp credentials not configured")

        response = self._session.post(
            f"https://{self._host}/api/v2/orders/create",
            data=build_order_xml(event, sku=self._sku),
            auth=(self._api_key, self._api_token),
            headers={"Content-Type": "application/xml"},
            timeout=self._timeout,
        )
        if response.status_code >= 400:
            return failed(f"FetchApp HTTP {response.status_code}: {response.text[:200]}")
        return succeeded(f"order {event.reference} created")
