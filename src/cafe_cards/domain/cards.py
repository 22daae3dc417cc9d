"""Loyalty card entity as stored in the hosted document store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cafe_cards.domain.rewards import STAMPS_PER_REWARD, RewardBalance
from cafe_cards.domain.scan_history import ScanHistoryEntry, format_timestamp, parse_scan_history

LEGACY_SCHEMA_VERSION = 1
CARD_SCHEMA_VERSION = 2

DEFAULT_CUSTOMER_NAME = "Unknown Customer"
DEFAULT_CUSTOMER_EMAIL = "unknown@example.com"


class LoyaltyCard(BaseModel):
    """One card per customer and cafe.

    The store returns unset attributes as ``null`` and omits attributes the
    collection does not define, so both cases map to ``None`` here.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    document_id: str = Field(..., alias="$id")
    card_id: str | None = Field(None, alias="cardId")
    customer_id: str = Field(..., alias="customerId")
    customer_name: str | None = Field(None, alias="customerName")
    customer_email: str | None = Field(None, alias="customerEmail")
    customer_number: int | None = Field(None, alias="customerNumber")
    cafe_user_id: str = Field(..., alias="cafeUserId")
    current_stamps: int = Field(0, alias="currentStamps")
    total_stamps: int = Field(0, alias="totalStamps")
    available_rewards: int | None = Field(None, alias="availableRewards")
    total_redeemed: int | None = Field(None, alias="totalRedeemed")
    is_pinned: bool = Field(False, alias="isPinned")
    is_active: bool = Field(True, alias="isActive")
    issue_date: str | None = Field(None, alias="issueDate")
    last_stamp_date: str | None = Field(None, alias="lastStampDate")
    scan_history_raw: str | None = Field(None, alias="scanHistory")
    schema_version: int | None = Field(None, alias="schemaVersion")
    updated_at: str | None = Field(None, alias="$updatedAt")

    @field_validator("current_stamps", "total_stamps", mode="before")
    @classmethod
    def _null_counter(cls, value: object) -> object:
        return 0 if value is None else value

    @field_validator("is_pinned", mode="before")
    @classmethod
    def _null_pinned(cls, value: object) -> object:
        return False if value is None else value

    @field_validator("is_active", mode="before")
    @classmethod
    def _null_active(cls, value: object) -> object:
        return True if value is None else value

    @property
    def effective_schema_version(self) -> int:
        if self.schema_version is not None:
            return self.schema_version
        if self.available_rewards is not None:
            return CARD_SCHEMA_VERSION
        return LEGACY_SCHEMA_VERSION

    @property
    def supports_rewards(self) -> bool:
        return self.effective_schema_version >= CARD_SCHEMA_VERSION

    @property
    def scan_history(self) -> list[ScanHistoryEntry]:
        return parse_scan_history(self.scan_history_raw)

    def display_balance(self) -> RewardBalance:
        """Counters to show for the card.

        Legacy cards let ``currentStamps`` run past a full card, so their
        progress and rewards are derived from it.
        """

        if self.supports_rewards:
            return RewardBalance(
                current_stamps=self.current_stamps,
                available_rewards=self.available_rewards or 0,
            )
        rewards, progress = divmod(self.current_stamps, STAMPS_PER_REWARD)
        return RewardBalance(current_stamps=progress, available_rewards=rewards)


@dataclass(slots=True)
class CustomerIdentity:
    """Identity snapshot copied onto a card when it is issued."""

    customer_id: str
    customer_name: str = DEFAULT_CUSTOMER_NAME
    customer_email: str = DEFAULT_CUSTOMER_EMAIL
    card_id: str | None = None
    customer_number: int | None = None

    @classmethod
    def anonymous(cls, customer_id: str) -> "CustomerIdentity":
        return cls(customer_id=customer_id, card_id=customer_id)

    @classmethod
    def from_card(cls, card: LoyaltyCard) -> "CustomerIdentity":
        return cls(
            customer_id=card.customer_id,
            customer_name=card.customer_name or DEFAULT_CUSTOMER_NAME,
            customer_email=card.customer_email or DEFAULT_CUSTOMER_EMAIL,
            card_id=card.card_id,
            customer_number=card.customer_number,
        )


@dataclass(slots=True)
class CardDraft:
    """Caller-supplied values for a card that does not exist yet."""

    customer_id: str
    customer_name: str = DEFAULT_CUSTOMER_NAME
    customer_email: str = DEFAULT_CUSTOMER_EMAIL
    card_id: str | None = None
    customer_number: int | None = None
    current_stamps: int = 0
    total_stamps: int = 0
    available_rewards: int = 0
    total_redeemed: int = 0
    issue_date: str | None = None

    @classmethod
    def for_identity(cls, identity: CustomerIdentity, **counters: int) -> "CardDraft":
        return cls(
            customer_id=identity.customer_id,
            customer_name=identity.customer_name,
            customer_email=identity.customer_email,
            card_id=identity.card_id,
            customer_number=identity.customer_number,
            **counters,
        )

    def to_fields(self, cafe_user_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        timestamp = format_timestamp(now)
        fields: dict[str, Any] = {
            "customerId": self.customer_id,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "cardId": self.card_id or self.customer_id,
            "currentStamps": self.current_stamps,
            "totalStamps": self.total_stamps,
            "availableRewards": self.available_rewards,
            "totalRedeemed": self.total_redeemed,
            "issueDate": self.issue_date or timestamp,
            "lastStampDate": timestamp,
            "cafeUserId": cafe_user_id,
            "isActive": True,
            "isPinned": False,
            "scanHistory": "[]",
            "schemaVersion": CARD_SCHEMA_VERSION,
        }
        if self.customer_number is not None:
            fields["customerNumber"] = self.customer_number
        return fields


__all__ = [
    "CARD_SCHEMA_VERSION",
    "CardDraft",
    "CustomerIdentity",
    "DEFAULT_CUSTOMER_EMAIL",
    "DEFAULT_CUSTOMER_NAME",
    "LEGACY_SCHEMA_VERSION",
    "LoyaltyCard",
]
