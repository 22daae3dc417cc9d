"""Upgrade loyalty cards written before the reward system existed."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from pydantic import ValidationError

from cafe_cards.core.settings import settings
from cafe_cards.domain.cards import CARD_SCHEMA_VERSION, LoyaltyCard
from cafe_cards.domain.rewards import STAMPS_PER_REWARD
from cafe_cards.services.store.client import DocumentStore, QueryFilter, StoreError


@dataclass(slots=True)
class MigrationSummary:
    dry_run: bool
    total_count: int = 0
    migrated_count: int = 0
    tagged_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "total": self.total_count,
            "migrated": self.migrated_count,
            "tagged": self.tagged_count,
            "skipped": self.skipped_count,
            "errors": self.error_count,
        }


@dataclass(slots=True)
class MigrationValidation:
    valid_count: int = 0
    invalid_card_ids: list[str] = field(default_factory=list)

    @property
    def invalid_count(self) -> int:
        return len(self.invalid_card_ids)

    @property
    def valid(self) -> bool:
        return not self.invalid_card_ids


def plan_card_migration(card: LoyaltyCard) -> dict[str, Any] | None:
    """Return the fields that bring ``card`` to the current schema, or ``None``.

    Legacy cards get their reward counters rebuilt from ``totalStamps``
    minus the rewards already redeemed. Cards that already track rewards
    only receive the schema tag.
    """

    if card.schema_version is not None and card.schema_version >= CARD_SCHEMA_VERSION:
        return None

    total_redeemed = card.total_redeemed or 0
    if card.available_rewards is None:
        total_stamps = card.total_stamps or card.current_stamps
        earned, progress = divmod(total_stamps, STAMPS_PER_REWARD)
        return {
            "currentStamps": progress,
            "totalStamps": total_stamps,
            "availableRewards": max(earned - total_redeemed, 0),
            "totalRedeemed": total_redeemed,
            "isPinned": card.is_pinned,
            "schemaVersion": CARD_SCHEMA_VERSION,
        }

    fields: dict[str, Any] = {"schemaVersion": CARD_SCHEMA_VERSION}
    if card.total_redeemed is None:
        fields["totalRedeemed"] = 0
    return fields


async def _load_cards(store: DocumentStore, collection_id: str, limit: int) -> list[dict[str, Any]]:
    return await store.list(collection_id, [QueryFilter.limit(limit)])


async def migrate_loyalty_cards(
    store: DocumentStore,
    *,
    collection_id: str | None = None,
    limit: int | None = None,
    dry_run: bool = False,
) -> MigrationSummary:
    """Bring every card in the collection up to the current schema.

    Listing failures propagate as :class:`StoreError`. Failures on
    individual cards are counted and logged, never raised.
    """

    collection = collection_id or settings.loyalty_cards_collection_id
    documents = await _load_cards(store, collection, limit or settings.store_list_limit)
    summary = MigrationSummary(dry_run=dry_run, total_count=len(documents))
    logger.info("Starting loyalty card migration", cards=len(documents), dry_run=dry_run)

    for document in documents:
        document_id = str(document.get("$id", ""))
        try:
            card = LoyaltyCard.model_validate(document)
        except ValidationError as exc:
            summary.error_count += 1
            summary.failures.append((document_id, "unreadable card document"))
            logger.error("Skipping unreadable card", document_id=document_id, error=str(exc))
            continue

        fields = plan_card_migration(card)
        if fields is None:
            summary.skipped_count += 1
            continue

        legacy = card.available_rewards is None
        if not dry_run:
            try:
                await store.update(collection, card.document_id, fields)
            except StoreError as exc:
                summary.error_count += 1
                summary.failures.append((card.document_id, exc.message))
                logger.error(
                    "Card migration failed",
                    document_id=card.document_id,
                    code=exc.code,
                    error=exc.message,
                )
                continue

        if legacy:
            summary.migrated_count += 1
            logger.info(
                "Migrated legacy card",
                document_id=card.document_id,
                total_stamps=fields["totalStamps"],
                available_rewards=fields["availableRewards"],
                current_stamps=fields["currentStamps"],
                dry_run=dry_run,
            )
        else:
            summary.tagged_count += 1

    logger.info("Loyalty card migration finished", **summary.as_dict())
    return summary


async def validate_migration(
    store: DocumentStore,
    *,
    collection_id: str | None = None,
    limit: int | None = None,
) -> MigrationValidation:
    """Check that every card carries well-formed reward counters."""

    collection = collection_id or settings.loyalty_cards_collection_id
    documents = await _load_cards(store, collection, limit or settings.store_list_limit)
    report = MigrationValidation()
    for document in documents:
        try:
            card = LoyaltyCard.model_validate(document)
        except ValidationError:
            report.invalid_card_ids.append(str(document.get("$id", "")))
            continue
        well_formed = (
            card.supports_rewards
            and card.schema_version is not None
            and card.total_redeemed is not None
            and 0 <= card.current_stamps < STAMPS_PER_REWARD
            and (card.available_rewards or 0) >= 0
        )
        if well_formed:
            report.valid_count += 1
        else:
            report.invalid_card_ids.append(card.document_id)

    if report.invalid_card_ids:
        logger.warning("Cards still need migration", invalid=report.invalid_count, card_ids=report.invalid_card_ids)
    return report


__all__ = [
    "MigrationSummary",
    "MigrationValidation",
    "migrate_loyalty_cards",
    "plan_card_migration",
    "validate_migration",
]
