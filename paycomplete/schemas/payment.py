from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

CollaboratorStatusOut = Literal["succeeded", "failed", "skipped"]


class InitializePaymentIn(BaseModel):
    email: EmailStr
    full_name: str = Field(alias="fullName", min_length=1, max_length=200)
    amount: Decimal = Field(gt=0, le=Decimal("100000000"))
    gclid: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "email": "jane@example.com",
                "fullName": "Jane Doe",
                "amount": 4900,
                "gclid": "EAIaIQobChMI",
            }
        },
    )


class InitializePaymentData(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class InitializePaymentOut(BaseModel):
    success: bool = True
    data: InitializePaymentData


class VerifiedTransactionOut(BaseModel):
    succeeded: bool
    reference: str
    amount_minor_units: int
    amount: int
    currency: str
    payer_email: str | None = None
    payer_name: str | None = None
    gclid: str | None = None
    ip_address: str | None = None
    country: str | None = None
    paid_at: datetime | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerifyPaymentOut(BaseModel):
    success: bool = True
    data: VerifiedTransactionOut


class ProcessOrderIn(BaseModel):
    email: EmailStr
    full_name: str = Field(alias="fullName", min_length=1, max_length=200)
    reference: str = Field(min_length=1, max_length=120)
    gclid: str | None = Field(default=None, max_length=500)
    ip_address: str | None = Field(default=None, alias="ipAddress", max_length=64)
    country: str | None = Field(default=None, max_length=80)

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "email": "jane@example.com",
                "fullName": "Jane Doe",
                "reference": "REF_1718000000000_a1b2c3d4",
                "gclid": None,
                "ipAddress": "102.89.40.1",
                "country": "NG",
            }
        },
    )


class CollaboratorResultOut(BaseModel):
    status: CollaboratorStatusOut
    succeeded: bool
    detail: str | None = None


class ProcessOrderOut(BaseModel):
    success: bool = True
    already_processed: bool
    reference: str
    state: str
    message: str
    collaborators: dict[str, CollaboratorResultOut] = Field(default_factory=dict)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookAckOut(BaseModel):
    ok: bool = True
    event: str | None = None
    queued: bool = False
    reference: str | None = None


class HealthOut(BaseModel):
    status: str
    timestamp: datetime
    environment: str
    config: dict[str, bool]
    dispatcher: dict[str, int]
