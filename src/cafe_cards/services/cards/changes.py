"""Diffing two snapshots of the same loyalty card."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from cafe_cards.domain.cards import LoyaltyCard

DEFAULT_DISPLAY_NAME = "You"


@dataclass(frozen=True, slots=True)
class StampsAddedChange:
    card_id: str
    customer_name: str
    stamps_added: int
    total_stamps: int
    detected_at: datetime


@dataclass(frozen=True, slots=True)
class RewardsRedeemedChange:
    card_id: str
    customer_name: str
    rewards_redeemed: int
    remaining_rewards: int
    detected_at: datetime


CardChange = Union[StampsAddedChange, RewardsRedeemedChange]


def detect_card_changes(
    previous: LoyaltyCard,
    current: LoyaltyCard,
    *,
    now: datetime | None = None,
) -> list[CardChange]:
    """Report what happened to a card between two reads.

    A drop in ``availableRewards`` is a redemption and a rise in
    ``totalStamps`` is a stamp issuance. Snapshots of different cards
    yield no changes.
    """

    if previous.document_id != current.document_id:
        return []

    detected_at = now or datetime.now(timezone.utc)
    name = current.customer_name or DEFAULT_DISPLAY_NAME
    changes: list[CardChange] = []

    old_rewards = previous.available_rewards or 0
    new_rewards = current.available_rewards or 0
    if new_rewards < old_rewards:
        changes.append(
            RewardsRedeemedChange(
                card_id=current.document_id,
                customer_name=name,
                rewards_redeemed=old_rewards - new_rewards,
                remaining_rewards=new_rewards,
                detected_at=detected_at,
            )
        )

    if current.total_stamps > previous.total_stamps:
        changes.append(
            StampsAddedChange(
                card_id=current.document_id,
                customer_name=name,
                stamps_added=current.total_stamps - previous.total_stamps,
                total_stamps=current.total_stamps,
                detected_at=detected_at,
            )
        )
    return changes


__all__ = [
    "CardChange",
    "RewardsRedeemedChange",
    "StampsAddedChange",
    "detect_card_changes",
]
