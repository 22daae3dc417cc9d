"""Decoding and encoding of the QR payloads exchanged between customers and staff."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from cafe_cards.domain.cards import (
    DEFAULT_CUSTOMER_EMAIL,
    DEFAULT_CUSTOMER_NAME,
    CustomerIdentity,
    LoyaltyCard,
)
from cafe_cards.domain.scan_history import format_timestamp

APP_MARKER = "cafe-cards"
PAYLOAD_VERSION = "1.0"
FALLBACK_CARD_ID_LENGTH = 20
ELLIPSIS = "..."


class ScanKind(str, Enum):
    STAMP = "stamp"
    REDEMPTION = "redemption"


class LoyaltyCardPayload(BaseModel):
    """Shown by a customer so staff can issue stamps."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["loyalty_card"]
    app: Literal["cafe-cards"]
    user_id: str = Field(..., alias="userId", min_length=1)
    customer_name: str | None = Field(None, alias="customerName")
    email: str | None = None
    card_id: str | None = Field(None, alias="cardId")
    issue_date: str | None = Field(None, alias="issueDate")


class RewardRedemptionPayload(BaseModel):
    """Shown by a customer to claim one available reward."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["reward_redemption"]
    app: Literal["cafe-cards"]
    customer_id: str = Field(..., alias="customerId", min_length=1)
    customer_name: str | None = Field(None, alias="customerName")
    email: str | None = None
    card_id: str | None = Field(None, alias="cardId")
    current_stamps: int | None = Field(None, alias="currentStamps")
    available_rewards: int | None = Field(None, alias="availableRewards")
    timestamp: str | None = None


_PAYLOAD_ADAPTER: TypeAdapter[LoyaltyCardPayload | RewardRedemptionPayload] = TypeAdapter(
    Annotated[Union[LoyaltyCardPayload, RewardRedemptionPayload], Field(discriminator="type")]
)


@dataclass(frozen=True, slots=True)
class ScanIntent:
    kind: ScanKind
    customer_id: str
    customer_name: str
    customer_email: str
    card_id: str
    issue_date: str | None = None
    current_stamps: int | None = None
    available_rewards: int | None = None
    recognized: bool = True

    @property
    def identity(self) -> CustomerIdentity:
        return CustomerIdentity(
            customer_id=self.customer_id,
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            card_id=self.card_id,
        )


def _fallback_intent(raw: str) -> ScanIntent:
    if len(raw) > FALLBACK_CARD_ID_LENGTH:
        card_id = raw[:FALLBACK_CARD_ID_LENGTH] + ELLIPSIS
    else:
        card_id = raw
    return ScanIntent(
        kind=ScanKind.STAMP,
        customer_id=f"customer_{uuid4().hex[:7]}",
        customer_name=DEFAULT_CUSTOMER_NAME,
        customer_email=DEFAULT_CUSTOMER_EMAIL,
        card_id=card_id,
        recognized=False,
    )


def _decode(raw: str) -> LoyaltyCardPayload | RewardRedemptionPayload | None:
    # Deeply nested arrays make the json decoder hit the recursion limit.
    try:
        return _PAYLOAD_ADAPTER.validate_python(json.loads(raw))
    except (ValueError, TypeError, RecursionError, ValidationError):
        return None


def parse_scan_payload(raw: str) -> ScanIntent:
    """Decode a scanned string into a scan intent.

    Never raises: anything that is not a recognised ``cafe-cards`` payload is
    accepted as an opaque legacy identifier with an anonymous customer.
    """

    payload = _decode(raw)
    if payload is None:
        return _fallback_intent(raw)

    if isinstance(payload, RewardRedemptionPayload):
        return ScanIntent(
            kind=ScanKind.REDEMPTION,
            customer_id=payload.customer_id,
            customer_name=payload.customer_name or DEFAULT_CUSTOMER_NAME,
            customer_email=payload.email or DEFAULT_CUSTOMER_EMAIL,
            card_id=payload.card_id or payload.customer_id,
            current_stamps=payload.current_stamps,
            available_rewards=payload.available_rewards or 0,
        )
    return ScanIntent(
        kind=ScanKind.STAMP,
        customer_id=payload.user_id,
        customer_name=payload.customer_name or DEFAULT_CUSTOMER_NAME,
        customer_email=payload.email or DEFAULT_CUSTOMER_EMAIL,
        card_id=payload.card_id or payload.user_id,
        issue_date=payload.issue_date,
    )


def is_cafe_cards_payload(raw: str) -> bool:
    return _decode(raw) is not None


def build_loyalty_card_payload(
    *,
    user_id: str,
    email: str,
    customer_name: str | None = None,
    issue_date: date | None = None,
) -> str:
    """Encode the customer's personal card QR."""

    name = customer_name or email.split("@")[0] or "Guest User"
    payload = {
        "userId": user_id,
        "email": email,
        "cardId": f"CARD_{user_id[-8:]}",
        "type": "loyalty_card",
        "customerName": name,
        "issueDate": (issue_date or date.today()).isoformat(),
        "version": PAYLOAD_VERSION,
        "app": APP_MARKER,
    }
    return json.dumps(payload)


def build_redemption_payload(
    card: LoyaltyCard,
    *,
    customer_name: str | None = None,
    now: datetime | None = None,
) -> str:
    """Encode the QR a customer shows to redeem a reward from ``card``."""

    payload = {
        "type": "reward_redemption",
        "app": APP_MARKER,
        "customerId": card.customer_id,
        "customerName": card.customer_name or customer_name,
        "email": card.customer_email,
        "cardId": card.card_id,
        "currentStamps": card.current_stamps,
        "availableRewards": card.available_rewards or 0,
        "timestamp": format_timestamp(now),
    }
    return json.dumps(payload)


__all__ = [
    "APP_MARKER",
    "LoyaltyCardPayload",
    "RewardRedemptionPayload",
    "ScanIntent",
    "ScanKind",
    "build_loyalty_card_payload",
    "build_redemption_payload",
    "is_cafe_cards_payload",
    "parse_scan_payload",
]
