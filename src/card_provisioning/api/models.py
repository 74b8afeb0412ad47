"""Pydantic models for JSON API requests.

Request bodies use camelCase field names on the wire. Responses share the
``{success, data?, error?}`` envelope built by ``ok`` and ``rejected``.
"""

from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def ok(data: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    return body


def rejected(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


def json_number(value: Decimal) -> int | float:
    """Render a Decimal amount as a JSON number."""
    return int(value) if value == value.to_integral_value() else float(value)


class VerifyCryptoRequest(CamelModel):
    """Verify an on-chain payment by its reference."""

    reference: str = Field(..., min_length=1, description="Payment reference or tx hash")
    amount: Decimal = Field(..., gt=0, description="Amount in major units")
    currency: str = Field(..., min_length=1, description="Currency code, e.g. ETH")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {"reference": "crypto_abc", "amount": 50, "currency": "USD"}
        },
    )


class VerifyMomoRequest(CamelModel):
    """Verify a mobile-money payment."""

    reference: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    provider: Literal["mtn", "vodafone", "airteltigo"] = "mtn"
    phone_number: Optional[str] = None
    external_id: Optional[str] = None


class InitiateMomoRequest(CamelModel):
    """Start a mobile-money collection that is polled in the background."""

    provider: Literal["mtn", "vodafone", "airteltigo"] = "mtn"
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1)


class AttemptStatusRequest(CamelModel):
    reference: str = Field(..., min_length=1)


class ProvisionCardRequest(CamelModel):
    """Verify a payment and provision its card in one call."""

    provider: Literal["mtn", "vodafone", "airteltigo", "crypto"]
    reference: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    external_id: Optional[str] = None
    card_type: Optional[str] = Field(None, max_length=32)


class FundingEventModel(CamelModel):
    """A funding event observed by the client, amount in minor units."""

    event_key: Optional[str] = None
    user_address_or_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    funding_type: str = Field(..., min_length=1)
    source_tx_id: str = Field(..., min_length=1)
    card_type: Optional[str] = Field(None, max_length=32)


class FundingEventsRequest(CamelModel):
    events: list[FundingEventModel] = Field(..., min_length=1, max_length=100)


class RecordCardRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    card_id: str = Field(..., min_length=1)
    visa_account_id: str = Field(..., min_length=1)
    payment_reference: str = Field(..., min_length=1)
    payment_method: Literal["momo", "crypto"]


class UpdateCardLimitRequest(CamelModel):
    card_id: str = Field(..., min_length=1)
    new_limit: Decimal = Field(..., gt=0, description="New limit in major units")
    user_id: str = Field(..., min_length=1)


class DeactivateCardRequest(CamelModel):
    card_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class LoginRequest(CamelModel):
    address: str = Field(..., min_length=1, description="Wallet address")
    ens_name: Optional[str] = None
