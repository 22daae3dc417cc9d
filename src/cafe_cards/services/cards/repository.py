"""Loyalty card persistence and stamp/reward mutations against the document store."""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from loguru import logger

from cafe_cards.core.settings import Settings, settings
from cafe_cards.domain import rewards
from cafe_cards.domain.cards import CardDraft, CustomerIdentity, LoyaltyCard
from cafe_cards.domain.scan_history import ScanAction, append_scan_entry, format_timestamp, make_entry
from cafe_cards.services.cards.exceptions import (
    CardBusinessRuleError,
    CardNotFoundError,
    CardPermissionError,
    CardServiceError,
    CardTransportError,
    CardValidationError,
)
from cafe_cards.services.store.client import (
    STATUS_INVALID_DOCUMENT,
    AppwriteDocumentStore,
    DocumentStore,
    QueryFilter,
    StoreError,
    new_document_id,
    owner_permissions,
)

PINNED_CARDS_LIMIT = 100

MISSING_IDS_MESSAGE = "Customer ID and cafe user ID are required"
LEGACY_CARD_MESSAGE = "This card does not support the new reward system. Please contact support."
NO_REWARDS_MESSAGE = "Customer does not have any available rewards to redeem"
CARD_MISSING_MESSAGE = "Loyalty card not found for this customer at this cafe"


@dataclass(frozen=True, slots=True)
class _ErrorMessages:
    not_found: str
    permission: str
    invalid: str
    failure: str


_CREATE_MESSAGES = _ErrorMessages(
    not_found="The loyalty card collection is not available. Please contact support.",
    permission="You don't have permission to create loyalty cards.",
    invalid="Invalid data provided for the new loyalty card.",
    failure="Failed to create loyalty card. Please try again.",
)
_STAMP_MESSAGES = _ErrorMessages(
    not_found="The loyalty card was deleted or is no longer available. Please try creating a new card.",
    permission="You don't have permission to add stamps to this loyalty card.",
    invalid="Invalid data provided for loyalty card update.",
    failure="Failed to add stamp to loyalty card. Please try again.",
)
_REDEEM_MESSAGES = _ErrorMessages(
    not_found="The loyalty card was not found. Please try again.",
    permission="You don't have permission to redeem rewards for this card.",
    invalid="Invalid data provided for loyalty card update.",
    failure="Failed to redeem reward. Please try again.",
)
_PIN_MESSAGES = _ErrorMessages(
    not_found="Loyalty card not found. Please try again.",
    permission="You don't have permission to update this card.",
    invalid="Invalid data provided for loyalty card update.",
    failure="Failed to update card pin status. Please try again.",
)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CardRepository:
    """CRUD and reward bookkeeping for loyalty cards.

    Every mutation is a read-modify-write against the store. Mutations for
    the same ``(customer_id, cafe_user_id)`` pair are serialised through a
    per-pair lock, so callers sharing one repository never lose each
    other's updates. Writers in other processes are not coordinated.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection_id: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._collection = collection_id or settings.loyalty_cards_collection_id
        if not self._collection:
            raise ValueError("Loyalty cards collection id must be configured")
        self._clock = clock or _utcnow
        # Entries vanish once no caller holds or waits on the lock.
        self._locks: MutableMapping[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        *,
        store: DocumentStore | None = None,
    ) -> "CardRepository":
        config = config or settings
        return cls(
            store or AppwriteDocumentStore.from_settings(config),
            collection_id=config.loyalty_cards_collection_id,
        )

    @property
    def collection_id(self) -> str:
        return self._collection

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def find_by_customer_and_cafe(self, customer_id: str, cafe_user_id: str) -> LoyaltyCard | None:
        """Return the customer's card at the cafe, or ``None``.

        Missing collections and permission failures are reported as absence.
        """

        if not customer_id or not cafe_user_id:
            logger.warning(
                "Card lookup skipped, identifiers missing",
                customer_id=customer_id,
                cafe_user_id=cafe_user_id,
            )
            return None
        return await self._find_one(
            [QueryFilter.equal("customerId", customer_id), QueryFilter.equal("cafeUserId", cafe_user_id)],
            lookup="customer_and_cafe",
        )

    async def find_by_search_term(self, term: str, cafe_user_id: str) -> LoyaltyCard | None:
        """Resolve manually entered text to a card owned by the cafe.

        Tries the printed card id, the numeric customer number, the email
        address and finally the raw customer id.
        """

        term = (term or "").strip()
        if not term or not cafe_user_id:
            return None
        owner = QueryFilter.equal("cafeUserId", cafe_user_id)

        strategies: list[tuple[str, QueryFilter]] = [("card_id", QueryFilter.equal("cardId", term))]
        if term.isdigit():
            strategies.append(("customer_number", QueryFilter.equal("customerNumber", int(term))))
        if "@" in term:
            strategies.append(("email", QueryFilter.equal("customerEmail", term)))
        strategies.append(("customer_id", QueryFilter.equal("customerId", term)))

        for lookup, clause in strategies:
            try:
                card = await self._find_one([clause, owner], lookup=lookup)
            except CardTransportError as exc:
                # Older collections have no customerNumber attribute.
                if lookup == "customer_number" and isinstance(exc.__cause__, StoreError) and (
                    exc.__cause__.code == STATUS_INVALID_DOCUMENT
                ):
                    continue
                raise
            if card is not None:
                logger.info("Card resolved from search term", lookup=lookup, card_id=card.document_id)
                return card
        return None

    async def get(self, document_id: str) -> LoyaltyCard | None:
        if not document_id:
            return None
        try:
            document = await self._store.get(self._collection, document_id)
        except StoreError as exc:
            if exc.is_not_found or exc.is_permission_denied:
                logger.warning("Card fetch degraded to not-found", document_id=document_id, code=exc.code)
                return None
            raise CardTransportError("Failed to load the loyalty card. Please try again.") from exc
        return LoyaltyCard.model_validate(document)

    async def list_by_cafe(self, cafe_user_id: str) -> list[LoyaltyCard]:
        if not cafe_user_id:
            return []
        return await self._list([QueryFilter.equal("cafeUserId", cafe_user_id)], scope="cafe")

    async def list_by_customer(self, customer_id: str) -> list[LoyaltyCard]:
        if not customer_id:
            return []
        return await self._list([QueryFilter.equal("customerId", customer_id)], scope="customer")

    async def list_pinned(self, customer_id: str) -> list[LoyaltyCard]:
        if not customer_id:
            return []
        return await self._list(
            [
                QueryFilter.equal("customerId", customer_id),
                QueryFilter.equal("isPinned", True),
                QueryFilter.equal("isActive", True),
                QueryFilter.order_desc("lastStampDate"),
                QueryFilter.limit(PINNED_CARDS_LIMIT),
            ],
            scope="pinned",
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def create(self, draft: CardDraft, cafe_user_id: str) -> LoyaltyCard:
        if not draft.customer_id or not cafe_user_id:
            raise CardValidationError(MISSING_IDS_MESSAGE)
        return await self._create(draft, cafe_user_id)

    async def add_stamps(
        self,
        customer: CustomerIdentity | str,
        cafe_user_id: str,
        count: int = 1,
    ) -> LoyaltyCard:
        """Add ``count`` stamps, creating the card on the customer's first visit."""

        identity = CustomerIdentity.anonymous(customer) if isinstance(customer, str) else customer
        if not identity.customer_id or not cafe_user_id:
            raise CardValidationError(MISSING_IDS_MESSAGE)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise CardValidationError("Stamp count must be a positive whole number")

        async with self._lock_for(identity.customer_id, cafe_user_id):
            card = await self.find_by_customer_and_cafe(identity.customer_id, cafe_user_id)
            if card is None:
                seed = rewards.calculate_rewards(count)
                draft = CardDraft.for_identity(
                    identity,
                    current_stamps=seed.current_stamps,
                    total_stamps=count,
                    available_rewards=seed.available_rewards,
                    total_redeemed=0,
                )
                created = await self._create(draft, cafe_user_id, messages=_STAMP_MESSAGES)
                logger.info(
                    "Loyalty card created on first stamp",
                    card_id=created.document_id,
                    customer_id=identity.customer_id,
                    cafe_user_id=cafe_user_id,
                    stamps_added=count,
                )
                return created

            if not card.supports_rewards:
                raise CardValidationError(LEGACY_CARD_MESSAGE)

            accrual = rewards.accrue_stamps(
                current_stamps=card.current_stamps,
                total_stamps=card.total_stamps,
                available_rewards=card.available_rewards or 0,
                count=count,
            )
            now = self._clock()
            entry = make_entry(ScanAction.STAMP_ADDED, cafe_user_id, stamps_added=count, moment=now)
            fields = {
                "currentStamps": accrual.current_stamps,
                "totalStamps": accrual.total_stamps,
                "availableRewards": accrual.available_rewards,
                "totalRedeemed": card.total_redeemed or 0,
                "lastStampDate": format_timestamp(now),
                "scanHistory": append_scan_entry(card.scan_history_raw, entry),
            }
            updated = await self._update(card.document_id, fields, messages=_STAMP_MESSAGES)
            logger.info(
                "Stamps added",
                card_id=card.document_id,
                cafe_user_id=cafe_user_id,
                stamps_added=count,
                rewards_earned=accrual.rewards_earned,
                available_rewards=accrual.available_rewards,
            )
            return updated

    async def redeem_reward(self, customer_id: str, cafe_user_id: str) -> LoyaltyCard:
        """Consume one available reward; stamp counters are left untouched."""

        if not customer_id or not cafe_user_id:
            raise CardValidationError(MISSING_IDS_MESSAGE)

        async with self._lock_for(customer_id, cafe_user_id):
            card = await self.find_by_customer_and_cafe(customer_id, cafe_user_id)
            if card is None:
                raise CardNotFoundError(CARD_MISSING_MESSAGE)
            if not card.supports_rewards:
                raise CardValidationError(LEGACY_CARD_MESSAGE)
            if (card.available_rewards or 0) <= 0:
                raise CardBusinessRuleError(NO_REWARDS_MESSAGE)

            balance = rewards.redeem_reward(
                available_rewards=card.available_rewards or 0,
                total_redeemed=card.total_redeemed or 0,
            )
            now = self._clock()
            entry = make_entry(ScanAction.REWARD_REDEEMED, cafe_user_id, moment=now)
            fields = {
                "availableRewards": balance.available_rewards,
                "totalRedeemed": balance.total_redeemed,
                "lastStampDate": format_timestamp(now),
                "scanHistory": append_scan_entry(card.scan_history_raw, entry),
            }
            updated = await self._update(card.document_id, fields, messages=_REDEEM_MESSAGES)
            logger.info(
                "Reward redeemed",
                card_id=card.document_id,
                cafe_user_id=cafe_user_id,
                available_rewards=balance.available_rewards,
                total_redeemed=balance.total_redeemed,
            )
            return updated

    async def set_pinned(self, document_id: str, is_pinned: bool) -> LoyaltyCard:
        """Toggle the customer's pin. Also bumps ``lastStampDate``."""

        if not document_id:
            raise CardValidationError("Card document ID is required")
        fields = {"isPinned": bool(is_pinned), "lastStampDate": format_timestamp(self._clock())}
        updated = await self._update(document_id, fields, messages=_PIN_MESSAGES)
        logger.info("Card pin updated", card_id=document_id, is_pinned=bool(is_pinned))
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _lock_for(self, customer_id: str, cafe_user_id: str) -> asyncio.Lock:
        return self._locks.setdefault((customer_id, cafe_user_id), asyncio.Lock())

    async def _find_one(self, filters: Sequence[QueryFilter], *, lookup: str) -> LoyaltyCard | None:
        try:
            documents = await self._store.list(self._collection, filters)
        except StoreError as exc:
            if exc.is_not_found or exc.is_permission_denied:
                logger.warning("Card lookup degraded to not-found", lookup=lookup, code=exc.code, error=exc.message)
                return None
            raise CardTransportError("Failed to look up the loyalty card. Please try again.") from exc
        if not documents:
            return None
        return LoyaltyCard.model_validate(documents[0])

    async def _list(self, filters: Sequence[QueryFilter], *, scope: str) -> list[LoyaltyCard]:
        try:
            documents = await self._store.list(self._collection, filters)
        except StoreError as exc:
            if exc.is_not_found or exc.is_permission_denied:
                logger.warning("Card listing degraded to empty", scope=scope, code=exc.code, error=exc.message)
                return []
            raise CardTransportError("Failed to load loyalty cards. Please try again.") from exc
        return [LoyaltyCard.model_validate(document) for document in documents]

    async def _create(
        self,
        draft: CardDraft,
        cafe_user_id: str,
        *,
        messages: _ErrorMessages = _CREATE_MESSAGES,
    ) -> LoyaltyCard:
        fields = draft.to_fields(cafe_user_id, now=self._clock())
        try:
            document = await self._store.create(
                self._collection,
                new_document_id(),
                fields,
                owner_permissions(cafe_user_id),
            )
        except StoreError as exc:
            raise self._classify(exc, messages, operation="create") from exc
        return LoyaltyCard.model_validate(document)

    async def _update(
        self,
        document_id: str,
        fields: Mapping[str, Any],
        *,
        messages: _ErrorMessages,
    ) -> LoyaltyCard:
        try:
            document = await self._store.update(self._collection, document_id, fields)
        except StoreError as exc:
            raise self._classify(exc, messages, operation="update", document_id=document_id) from exc
        return LoyaltyCard.model_validate(document)

    @staticmethod
    def _classify(
        exc: StoreError,
        messages: _ErrorMessages,
        *,
        operation: str,
        document_id: str | None = None,
    ) -> CardServiceError:
        if exc.code == STATUS_INVALID_DOCUMENT:
            error: CardServiceError = CardValidationError(messages.invalid)
        elif exc.is_permission_denied:
            error = CardPermissionError(messages.permission)
        elif exc.is_not_found:
            error = CardNotFoundError(messages.not_found)
        else:
            error = CardTransportError(messages.failure)
        logger.error(
            "Card store write failed",
            operation=operation,
            document_id=document_id,
            code=exc.code,
            error=exc.message,
            classified_as=type(error).__name__,
        )
        return error


__all__ = ["CardRepository", "PINNED_CARDS_LIMIT"]
