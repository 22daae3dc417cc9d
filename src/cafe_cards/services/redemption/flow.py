"""Customer-side redemption: show the redemption QR and wait for a cafe to scan it."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

from cafe_cards.core.settings import settings
from cafe_cards.domain.cards import LoyaltyCard
from cafe_cards.domain.scan_payload import build_redemption_payload
from cafe_cards.services.cards.changes import RewardsRedeemedChange, detect_card_changes
from cafe_cards.services.cards.exceptions import CardBusinessRuleError, CardServiceError
from cafe_cards.services.cards.repository import NO_REWARDS_MESSAGE, CardRepository

RedemptionCallback = Callable[[RewardsRedeemedChange, LoyaltyCard], Awaitable[Any] | Any]


class RedemptionFlow:
    """Polls the customer's card while the redemption QR is displayed.

    There is no push channel from the store, so a drop in
    ``availableRewards`` between two reads is taken as confirmation that a
    cafe redeemed the reward. The flow then closes itself and fires
    ``on_redeemed``.
    """

    def __init__(
        self,
        repository: CardRepository,
        *,
        poll_interval_seconds: float | None = None,
        on_redeemed: RedemptionCallback | None = None,
        customer_name: str | None = None,
    ) -> None:
        self._repository = repository
        self.poll_interval_seconds = (
            poll_interval_seconds if poll_interval_seconds is not None else settings.redemption_poll_interval_seconds
        )
        self._on_redeemed = on_redeemed
        self._customer_name = customer_name
        self._baseline: LoyaltyCard | None = None
        self._confirmation: RewardsRedeemedChange | None = None
        self._redeemed = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.payload: str | None = None

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def confirmation(self) -> RewardsRedeemedChange | None:
        return self._confirmation

    async def open(self, card: LoyaltyCard) -> str:
        """Build the redemption QR for ``card`` and start watching it."""

        if card.display_balance().available_rewards <= 0:
            raise CardBusinessRuleError(NO_REWARDS_MESSAGE)
        if self.is_open:
            await self.close()

        self._baseline = card
        self._confirmation = None
        self._redeemed.clear()
        self._stop_event.clear()
        self.payload = build_redemption_payload(card, customer_name=self._customer_name)
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Redemption QR opened",
            card_id=card.document_id,
            available_rewards=card.available_rewards,
            poll_interval_seconds=self.poll_interval_seconds,
        )
        return self.payload

    async def close(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        if self._task is not asyncio.current_task():
            await self._task
        self._task = None
        logger.info("Redemption QR closed", redeemed=self._confirmation is not None)

    async def poll_once(self) -> RewardsRedeemedChange | None:
        """Re-read the card once; returns the redemption if one is observed."""

        baseline = self._baseline
        if baseline is None or self._confirmation is not None:
            return self._confirmation

        current = await self._repository.get(baseline.document_id)
        if current is None:
            return None

        for change in detect_card_changes(baseline, current):
            if isinstance(change, RewardsRedeemedChange):
                await self._complete(change, current)
                return change

        self._baseline = current
        return None

    async def wait_for_redemption(self, timeout: float | None = None) -> RewardsRedeemedChange | None:
        try:
            await asyncio.wait_for(self._redeemed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._confirmation

    async def _complete(self, change: RewardsRedeemedChange, card: LoyaltyCard) -> None:
        self._confirmation = change
        self._baseline = card
        self._redeemed.set()
        self._stop_event.set()
        logger.info(
            "Reward redemption observed",
            card_id=change.card_id,
            rewards_redeemed=change.rewards_redeemed,
            remaining_rewards=change.remaining_rewards,
        )
        if self._on_redeemed is None:
            return
        try:
            outcome = self._on_redeemed(change, card)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.exception("Redemption callback failed", card_id=change.card_id, error=str(exc))

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except CardServiceError as exc:
                logger.warning("Redemption poll failed", error=str(exc))
            except Exception as exc:
                logger.exception("Redemption poll iteration failed", error=str(exc))
            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                continue


__all__ = ["RedemptionCallback", "RedemptionFlow"]
