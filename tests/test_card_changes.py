from datetime import datetime, timezone

from cafe_cards.domain.cards import LoyaltyCard
from cafe_cards.services.cards.changes import RewardsRedeemedChange, StampsAddedChange, detect_card_changes

NOW = datetime(2025, 5, 5, tzinfo=timezone.utc)


def _card(document_id: str = "card-1", **fields) -> LoyaltyCard:
    document = {
        "$id": document_id,
        "customerId": "cust-1",
        "customerName": "Ada",
        "cafeUserId": "cafe-1",
        "currentStamps": 5,
        "totalStamps": 15,
        "availableRewards": 1,
        "totalRedeemed": 0,
    }
    document.update(fields)
    return LoyaltyCard.model_validate(document)


def test_stamp_increase_is_reported() -> None:
    changes = detect_card_changes(_card(), _card(currentStamps=7, totalStamps=17), now=NOW)

    assert changes == [
        StampsAddedChange(card_id="card-1", customer_name="Ada", stamps_added=2, total_stamps=17, detected_at=NOW)
    ]


def test_reward_drop_is_reported_as_redemption() -> None:
    changes = detect_card_changes(_card(), _card(availableRewards=0, totalRedeemed=1), now=NOW)

    assert changes == [
        RewardsRedeemedChange(card_id="card-1", customer_name="Ada", rewards_redeemed=1, remaining_rewards=0, detected_at=NOW)
    ]


def test_unchanged_or_unrelated_snapshots_report_nothing() -> None:
    assert detect_card_changes(_card(), _card()) == []
    assert detect_card_changes(_card(), _card("card-2", totalStamps=30)) == []


def test_missing_name_falls_back_to_you() -> None:
    [change] = detect_card_changes(_card(), _card(customerName=None, totalStamps=16))
    assert change.customer_name == "You"
