import logging
from dataclasses import dataclass, field
from typing import Sequence

import requests

from paycomplete.core.config import Settings
from paycomplete.core.observability import log_event
from paycomplete.services.chat_alert import TelegramChatAlert
from paycomplete.services.collaborator import (
    Collaborator,
    CollaboratorOutcome,
    ConfirmedPayment,
    failed,
)
from paycomplete.services.email_service import AccessEmailSender, SmtpConfig
from paycomplete.services.fulfillment_provider import FetchAppFulfillment
from paycomplete.services.subscriber_list import MailerLiteSubscriberList


@dataclass(frozen=True)
class FanoutResult:
    reference: str
    outcomes: dict[str, CollaboratorOutcome] = field(default_factory=dict)

    @property
    def failed_names(self) -> list[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.status == "failed"]

    def all_succeeded(self, names: Sequence[str]) -> bool:
        return all(
            name in self.outcomes and self.outcomes[name].succeeded
            for name in names
        )


class NotificationFanout:
    """Delivers one confirmed payment to every collaborator, one after another.

    A collaborator that raises or reports failure does not stop the rest.
    """

    def __init__(self, collaborators: Sequence[Collaborator]):
        self.collaborators = list(collaborators)

    @property
    def names(self) -> list[str]:
        return [collaborator.name for collaborator in self.collaborators]

    def deliver(self, event: ConfirmedPayment) -> FanoutResult:
        outcomes: dict[str, CollaboratorOutcome] = {}
        for collaborator in self.collaborators:
            try:
                outcome = collaborator.deliver(event)
            except Exception as exc:  # noqa: BLE001 - one collaborator must not abort the others
                outcome = failed(f"{type(exc).__name__}: {exc}")
            outcomes[collaborator.name] = outcome
            log_event(
                "collaborator_delivery",
                level=logging.ERROR if outcome.status == "failed" else logging.INFO,
                reference=event.reference,
                collaborator=collaborator.name,
                status=outcome.status,
                detail=outcome.detail,
            )
        return FanoutResult(reference=event.reference, outcomes=outcomes)


def build_collaborators(settings: Settings, session: requests.Session) -> list[Collaborator]:
    timeout = settings.http_timeout_seconds
    return [
        TelegramChatAlert(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            api_base_url=settings.telegram_api_base_url,
            product_title=settings.product_title,
            session=session,
            timeout=timeout,
        ),
        MailerLiteSubscriberList(
            api_key=settings.mailerlite_api_key,
            group_id=settings.mailerlite_group_id,
            base_url=settings.mailerlite_base_url,
            session=session,
            timeout=timeout,
        ),
        AccessEmailSender(
            smtp=SmtpConfig(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                sender_email=settings.smtp_sender_email,
                reply_to_email=settings.smtp_reply_to_email,
                use_starttls=settings.smtp_use_starttls,
                use_ssl=settings.smtp_use_ssl,
                timeout=timeout,
            ),
            product_title=settings.product_title,
            access_url=settings.product_access_url,
        ),
        FetchAppFulfillment(
            api_key=settings.fetchapp_key,
            api_token=settings.fetchapp_token,
            host=settings.fetchapp_host,
            sku=settings.product_sku,
            session=session,
            timeout=timeout,
        ),
    ]
