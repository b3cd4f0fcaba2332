import requests

from paycomplete.services.collaborator import (
    CollaboratorOutcome,
    ConfirmedPayment,
    failed,
    skipped,
    succeeded,
)
from paycomplete.services.fulfillment_provider import split_display_name

SOURCE_TAG = "paystack"


class MailerLiteSubscriberList:
    """Upserts the buyer into a MailerLite group.

    Joining the group is what starts the welcome/delivery automation on the
    MailerLite side, so nothing else is sent from here.
    """

    name = "mailerlite"

    def __init__(
        self,
        *,
        api_key: str | None,
        group_id: str | None,
        base_url: str,
        session: requests.Session,
        timeout: float,
    ):
        self._api_key = api_key
        self._group_id = group_id
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key and self._group_id)

    def build_payload(self, event: ConfirmedPayment) -> dict[str, object]:
        first_name, last_name = split_display_name(event.payer_name)
        return {
            "email": event.payer_email,
            "fields": {
                "name": first_name,
                "last_name": last_name,
                "source": SOURCE_TAG,
                "gclid_status": "present" if event.has_click_id else "absent",
                "gclid": event.gclid,
                "payment_reference": event.reference,
                "country": event.country,
            },
            "groups": [self._group_id],
            "status": "active",
        }

    def deliver(self, event: ConfirmedPayment) -> CollaboratorOutcome:
        if not self.is_configured():
            return skipped("MailerLite API key or group not configured")

        response = self._session.post(
            f"{self._base_url}/subscribers",
            json=self.build_payload(event),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "application/json",
            },
            timeout=self._timeout,
        )
        if response.status_code not in {200, 201}:
            return failed(f"MailerLite HTTP {response.status_code}: {response.text[:200]}")

        created = response.status_code == 201
        return succeeded("subscriber created" if created else "subscriber updated")
