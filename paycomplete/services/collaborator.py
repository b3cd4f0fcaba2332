from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol

DIRECT_CLICK_ID = "direct"
UNKNOWN = "Unknown"

CollaboratorStatus = Literal["succeeded", "failed", "skipped"]


@dataclass(frozen=True)
class ConfirmedPayment:
    reference: str
    payer_email: str
    payer_name: str
    amount_minor: int
    amount: int
    currency: str
    gclid: str
    ip_address: str
    country: str
    confirmed_at: datetime

    @property
    def has_click_id(self) -> bool:
        return self.gclid != DIRECT_CLICK_ID


@dataclass(frozen=True)
class CollaboratorOutcome:
    status: CollaboratorStatus
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


def succeeded(detail: str | None = None) -> CollaboratorOutcome:
    return CollaboratorOutcome(status="succeeded", detail=detail)


def skipped(detail: str) -> CollaboratorOutcome:
    return CollaboratorOutcome(status="skipped", detail=detail)


def failed(detail: str) -> CollaboratorOutcome:
    return CollaboratorOutcome(status="failed", detail=detail)


class Collaborator(Protocol):
    name: str

    def is_configured(self) -> bool:
        ...

    def deliver(self, event: ConfirmedPayment) -> CollaboratorOutcome:
        ...
