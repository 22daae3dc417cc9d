from __future__ import annotations

import pytest

from cafe_cards.domain.cards import LoyaltyCard
from cafe_cards.services.cards.migration import migrate_loyalty_cards, plan_card_migration, validate_migration
from cafe_cards.services.store.client import StoreError
from cafe_cards.services.store.memory import InMemoryDocumentStore
from conftest import COLLECTION_ID


class RejectingStore(InMemoryDocumentStore):
    def __init__(self, rejected: set[str]) -> None:
        super().__init__([COLLECTION_ID])
        self.rejected = rejected

    async def update(self, collection, document_id, fields):
        if document_id in self.rejected:
            raise StoreError("Unknown attribute: schemaVersion", code=400)
        return await super().update(collection, document_id, fields)


def _seed_mixed(store: InMemoryDocumentStore) -> None:
    base = {"customerId": "cust-1", "cafeUserId": "cafe-1"}
    store.seed(COLLECTION_ID, "legacy", {**base, "currentStamps": 23, "totalStamps": 23})
    store.seed(
        COLLECTION_ID,
        "legacy-redeemed",
        {**base, "currentStamps": 25, "totalStamps": 25, "totalRedeemed": 1},
    )
    store.seed(
        COLLECTION_ID,
        "untagged",
        {**base, "currentStamps": 4, "totalStamps": 14, "availableRewards": 1, "totalRedeemed": 0},
    )
    store.seed(
        COLLECTION_ID,
        "current",
        {
            **base,
            "currentStamps": 2,
            "totalStamps": 2,
            "availableRewards": 0,
            "totalRedeemed": 0,
            "schemaVersion": 2,
        },
    )


def _by_id(store: InMemoryDocumentStore) -> dict[str, dict]:
    return {document["$id"]: document for document in store.documents(COLLECTION_ID)}


@pytest.mark.asyncio
async def test_migration_rebuilds_legacy_counters(store) -> None:
    _seed_mixed(store)

    summary = await migrate_loyalty_cards(store, collection_id=COLLECTION_ID)

    assert summary.total_count == 4
    assert summary.migrated_count == 2
    assert summary.tagged_count == 1
    assert summary.skipped_count == 1
    assert summary.error_count == 0

    documents = _by_id(store)
    legacy = documents["legacy"]
    assert (legacy["currentStamps"], legacy["availableRewards"], legacy["totalRedeemed"]) == (3, 2, 0)
    assert legacy["schemaVersion"] == 2
    assert legacy["isPinned"] is False
    redeemed = documents["legacy-redeemed"]
    assert (redeemed["currentStamps"], redeemed["availableRewards"], redeemed["totalRedeemed"]) == (5, 1, 1)
    untagged = documents["untagged"]
    assert (untagged["currentStamps"], untagged["availableRewards"]) == (4, 1)
    assert untagged["schemaVersion"] == 2


@pytest.mark.asyncio
async def test_dry_run_reports_without_writing(store) -> None:
    _seed_mixed(store)

    summary = await migrate_loyalty_cards(store, collection_id=COLLECTION_ID, dry_run=True)

    assert summary.dry_run is True
    assert summary.migrated_count == 2
    assert store.writes == []
    assert "schemaVersion" not in _by_id(store)["legacy"]


@pytest.mark.asyncio
async def test_failures_are_counted_not_raised() -> None:
    store = RejectingStore({"legacy"})
    _seed_mixed(store)

    summary = await migrate_loyalty_cards(store, collection_id=COLLECTION_ID)

    assert summary.error_count == 1
    assert summary.failures == [("legacy", "Unknown attribute: schemaVersion")]
    assert summary.migrated_count == 1


@pytest.mark.asyncio
async def test_listing_failure_propagates() -> None:
    with pytest.raises(StoreError):
        await migrate_loyalty_cards(InMemoryDocumentStore(), collection_id=COLLECTION_ID)


@pytest.mark.asyncio
async def test_validation_flags_cards_until_migrated(store) -> None:
    _seed_mixed(store)

    before = await validate_migration(store, collection_id=COLLECTION_ID)
    await migrate_loyalty_cards(store, collection_id=COLLECTION_ID)
    after = await validate_migration(store, collection_id=COLLECTION_ID)

    assert sorted(before.invalid_card_ids) == ["legacy", "legacy-redeemed", "untagged"]
    assert before.valid_count == 1
    assert after.valid
    assert after.valid_count == 4


def test_plan_uses_current_stamps_when_total_missing() -> None:
    card = LoyaltyCard.model_validate({"$id": "x", "customerId": "c", "cafeUserId": "k", "currentStamps": 17})

    fields = plan_card_migration(card)

    assert fields["totalStamps"] == 17
    assert fields["currentStamps"] == 7
    assert fields["availableRewards"] == 1
