"""Staff-side scan handling: decode a scan, confirm it and commit it to the card."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Awaitable, Callable

from loguru import logger

from cafe_cards.core.settings import settings
from cafe_cards.domain.cards import DEFAULT_CUSTOMER_EMAIL, DEFAULT_CUSTOMER_NAME, LoyaltyCard
from cafe_cards.domain.scan_payload import ScanIntent, ScanKind, is_cafe_cards_payload, parse_scan_payload
from cafe_cards.observability.scanning import ScanObservabilityStore, get_scan_store
from cafe_cards.services.cards.exceptions import CardServiceError, CardTransportError
from cafe_cards.services.cards.repository import CardRepository
from cafe_cards.services.scanning.activity_log import ActivityStatus, ScanActivity, ScanActivityLog

ACCESS_DENIED_MESSAGE = "Access denied: Cafe user required"
PENDING_SYNC_NOTICE = "The scan was recorded locally but may need to be synced later."
TIMEOUT_MESSAGE = "Processing took too long and the scanner was reset. Check the card before scanning again."
COMMIT_CANCELLED_MESSAGE = "The scan was interrupted before it finished. Check the card before scanning again."


class ScanState(str, Enum):
    IDLE = "idle"
    PARSING = "parsing"
    STAMP_PENDING = "stamp_pending"
    REDEMPTION_PENDING = "redemption_pending"
    COMMITTING = "committing"
    SUCCESS = "success"
    FAILED = "failed"


class ScanOutcome(str, Enum):
    EMPTY = "empty"
    DUPLICATE = "duplicate"
    BUSY = "busy"
    ACCESS_DENIED = "access_denied"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    INVALID_QUANTITY = "invalid_quantity"
    NOTHING_PENDING = "nothing_pending"
    CANCELLED = "cancelled"
    STAMPS_ADDED = "stamps_added"
    REWARD_REDEEMED = "reward_redeemed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    DISCARDED = "discarded"


@dataclass(frozen=True, slots=True)
class ScanResult:
    outcome: ScanOutcome
    message: str
    intent: ScanIntent | None = None
    card: LoyaltyCard | None = None
    error: Exception | None = None
    pending_sync: bool = False

    @property
    def committed(self) -> bool:
        return self.outcome in (ScanOutcome.STAMPS_ADDED, ScanOutcome.REWARD_REDEEMED)


class InvalidScanTransitionError(RuntimeError):
    """Raised when the scanner is driven through a transition it does not allow."""

    def __init__(self, current: ScanState, requested: ScanState) -> None:
        super().__init__(f"Cannot move scanner from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class StampIssuanceFlow:
    """Single-operator scanner that turns customer QR codes into card mutations.

    Only one scan is processed at a time: anything submitted while the
    scanner is not idle is rejected as busy, and the same raw payload
    seen again within the dedupe window is dropped. Stamp scans stop at
    ``STAMP_PENDING`` until :meth:`confirm_stamps` supplies a quantity;
    redemption scans commit straight away. A commit that has not settled
    after ``commit_timeout_seconds`` resets the scanner, and its eventual
    result is discarded.
    """

    _ALLOWED_TRANSITIONS: dict[ScanState, set[ScanState]] = {
        ScanState.IDLE: {ScanState.PARSING},
        ScanState.PARSING: {ScanState.STAMP_PENDING, ScanState.REDEMPTION_PENDING, ScanState.IDLE},
        ScanState.STAMP_PENDING: {ScanState.COMMITTING, ScanState.IDLE},
        ScanState.REDEMPTION_PENDING: {ScanState.COMMITTING, ScanState.IDLE},
        ScanState.COMMITTING: {ScanState.SUCCESS, ScanState.FAILED, ScanState.IDLE},
        ScanState.SUCCESS: {ScanState.IDLE},
        ScanState.FAILED: {ScanState.IDLE},
    }

    def __init__(
        self,
        repository: CardRepository,
        cafe_user_id: str,
        *,
        is_cafe_user: bool = True,
        activity_log: ScanActivityLog | None = None,
        dedupe_window_seconds: float | None = None,
        commit_timeout_seconds: float | None = None,
        max_stamps_per_scan: int | None = None,
        telemetry: ScanObservabilityStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._cafe_user_id = cafe_user_id
        self._is_cafe_user = is_cafe_user and bool(cafe_user_id)
        self.activity_log = activity_log or ScanActivityLog()
        self._dedupe_window = (
            dedupe_window_seconds if dedupe_window_seconds is not None else settings.scan_dedupe_window_seconds
        )
        self._commit_timeout = (
            commit_timeout_seconds if commit_timeout_seconds is not None else settings.scan_commit_timeout_seconds
        )
        self._max_stamps = max_stamps_per_scan if max_stamps_per_scan is not None else settings.max_stamps_per_scan
        self._telemetry = telemetry or get_scan_store()
        self._clock = clock

        self._state = ScanState.IDLE
        self._pending: ScanIntent | None = None
        self._last_scan: tuple[str, float] | None = None
        self._commit_token = 0

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def pending_intent(self) -> ScanIntent | None:
        return self._pending

    @property
    def max_stamps_per_scan(self) -> int:
        return self._max_stamps

    @property
    def is_idle(self) -> bool:
        return self._state is ScanState.IDLE

    # ------------------------------------------------------------------
    # Operator entry points
    # ------------------------------------------------------------------
    async def submit_scan(self, raw: str) -> ScanResult:
        """Handle one decoded camera frame."""

        if not raw:
            return ScanResult(ScanOutcome.EMPTY, "Nothing was scanned")

        now = self._clock()
        if self._last_scan is not None:
            last_raw, seen_at = self._last_scan
            if raw == last_raw and now - seen_at < self._dedupe_window:
                self._telemetry.record_outcome("duplicate")
                logger.debug("Ignoring repeated scan", seconds_since_last=round(now - seen_at, 3))
                return ScanResult(ScanOutcome.DUPLICATE, "Duplicate scan ignored")

        if not self.is_idle:
            return self._busy()
        self._last_scan = (raw, now)

        if not self._is_cafe_user:
            return self._deny()

        self._transition(ScanState.PARSING)
        return await self._route(parse_scan_payload(raw))

    async def submit_manual_entry(self, text: str) -> ScanResult:
        """Handle a code typed by the operator.

        Text that is not a scan payload is first matched against the cafe's
        existing cards (card id, customer number, email or customer id).
        """

        text = (text or "").strip()
        if not text:
            return ScanResult(ScanOutcome.EMPTY, "Enter a card code to continue")
        if not self.is_idle:
            return self._busy()
        if not self._is_cafe_user:
            return self._deny()

        self._transition(ScanState.PARSING)
        if is_cafe_cards_payload(text):
            return await self._route(parse_scan_payload(text))

        try:
            card = await self._repository.find_by_search_term(text, self._cafe_user_id)
        except (CardServiceError, ValueError) as exc:
            logger.warning("Manual entry lookup failed, using the code as given", error=str(exc))
            card = None
        except asyncio.CancelledError:
            if self._state is ScanState.PARSING:
                self._state = ScanState.IDLE
            raise

        if card is None:
            return await self._route(parse_scan_payload(text))
        return await self._route(
            ScanIntent(
                kind=ScanKind.STAMP,
                customer_id=card.customer_id,
                customer_name=card.customer_name or DEFAULT_CUSTOMER_NAME,
                customer_email=card.customer_email or DEFAULT_CUSTOMER_EMAIL,
                card_id=card.card_id or card.customer_id,
                issue_date=card.issue_date,
                current_stamps=card.current_stamps,
                available_rewards=card.available_rewards,
            )
        )

    async def confirm_stamps(self, count: int) -> ScanResult:
        """Commit the pending stamp scan with the operator's chosen quantity."""

        intent = self._pending
        if self._state is not ScanState.STAMP_PENDING or intent is None:
            return ScanResult(ScanOutcome.NOTHING_PENDING, "No scan is waiting for stamps")
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= self._max_stamps:
            return ScanResult(
                ScanOutcome.INVALID_QUANTITY,
                f"Choose between 1 and {self._max_stamps} stamps",
                intent=intent,
            )

        operation = partial(self._repository.add_stamps, intent.identity, self._cafe_user_id, count)
        return await self._commit(operation, intent, stamps=count)

    def cancel_pending(self) -> ScanResult:
        """Dismiss the quantity prompt without touching the card."""

        if self._state is not ScanState.STAMP_PENDING:
            return ScanResult(ScanOutcome.NOTHING_PENDING, "No scan is waiting for stamps")
        intent = self._pending
        self._pending = None
        self._transition(ScanState.IDLE)
        self._telemetry.record_outcome("cancelled")
        return ScanResult(ScanOutcome.CANCELLED, "Scan cancelled", intent=intent)

    def reset(self) -> None:
        """Return to idle immediately; an in-flight commit's result will be dropped."""

        self._commit_token += 1
        self._pending = None
        self._last_scan = None
        self._state = ScanState.IDLE

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _transition(self, target: ScanState) -> None:
        if target not in self._ALLOWED_TRANSITIONS.get(self._state, set()):
            raise InvalidScanTransitionError(self._state, target)
        self._state = target

    def _busy(self) -> ScanResult:
        self._telemetry.record_outcome("busy")
        return ScanResult(ScanOutcome.BUSY, "Still processing the previous scan")

    def _deny(self) -> ScanResult:
        self._last_scan = None
        self._telemetry.record_outcome("access_denied")
        self.activity_log.record(ScanActivity(status=ActivityStatus.ERROR, message=ACCESS_DENIED_MESSAGE))
        logger.warning("Scan rejected for non-cafe account", cafe_user_id=self._cafe_user_id)
        return ScanResult(ScanOutcome.ACCESS_DENIED, ACCESS_DENIED_MESSAGE)

    async def _route(self, intent: ScanIntent) -> ScanResult:
        self._telemetry.record_accepted(intent.kind.value)
        self._pending = intent
        if intent.kind is ScanKind.REDEMPTION:
            self._transition(ScanState.REDEMPTION_PENDING)
            operation = partial(self._repository.redeem_reward, intent.customer_id, self._cafe_user_id)
            return await self._commit(operation, intent)

        self._transition(ScanState.STAMP_PENDING)
        logger.info(
            "Scan awaiting stamp quantity",
            customer_id=intent.customer_id,
            recognized=intent.recognized,
        )
        return ScanResult(
            ScanOutcome.AWAITING_CONFIRMATION,
            f"Select how many stamps to add for {intent.customer_name}",
            intent=intent,
        )

    async def _commit(
        self,
        operation: Callable[[], Awaitable[LoyaltyCard]],
        intent: ScanIntent,
        *,
        stamps: int | None = None,
    ) -> ScanResult:
        self._transition(ScanState.COMMITTING)
        self._commit_token += 1
        token = self._commit_token
        task = asyncio.ensure_future(operation())

        try:
            done, _ = await asyncio.wait({task}, timeout=self._commit_timeout)
        except asyncio.CancelledError:
            self._release(task, token, intent)
            raise
        if task not in done:
            return self._abandon(task, token, intent)
        if token != self._commit_token:
            self._discard_stale(token, task)
            return ScanResult(ScanOutcome.DISCARDED, "Scanner was reset before the scan finished", intent=intent)
        if task.cancelled():
            return self._fail(intent, CardTransportError(COMMIT_CANCELLED_MESSAGE), stamps=stamps)

        try:
            card = task.result()
        except CardServiceError as exc:
            return self._fail(intent, exc, stamps=stamps)
        except Exception as exc:
            logger.exception("Unexpected error while committing scan", customer_id=intent.customer_id)
            return self._fail(intent, exc, stamps=stamps)

        self._transition(ScanState.SUCCESS)
        if stamps is not None:
            self._telemetry.record_stamps(stamps)
            noun = "stamp" if stamps == 1 else "stamps"
            message = f"{stamps} {noun} added successfully for {intent.customer_name}!"
            outcome = ScanOutcome.STAMPS_ADDED
        else:
            self._telemetry.record_redemption()
            remaining = card.available_rewards or 0
            noun = "reward" if remaining == 1 else "rewards"
            message = (
                f"Reward redeemed for {card.customer_name or intent.customer_name}. "
                f"{remaining} {noun} remaining."
            )
            outcome = ScanOutcome.REWARD_REDEEMED

        self.activity_log.record(
            ScanActivity(
                status=ActivityStatus.SUCCESS,
                message=message,
                customer_name=card.customer_name or intent.customer_name,
                card_id=card.card_id or intent.card_id,
                stamps_added=stamps,
            )
        )
        self._pending = None
        self._transition(ScanState.IDLE)
        return ScanResult(outcome, message, intent=intent, card=card)

    def _fail(self, intent: ScanIntent, exc: Exception, *, stamps: int | None) -> ScanResult:
        self._transition(ScanState.FAILED)
        pending_sync = isinstance(exc, CardTransportError) or not isinstance(exc, CardServiceError)
        message = str(exc) or "Failed to process the scan"
        if pending_sync:
            message = f"{message} {PENDING_SYNC_NOTICE}"
        self._telemetry.record_outcome("failed")
        self.activity_log.record(
            ScanActivity(
                status=ActivityStatus.ERROR,
                message=message,
                customer_name=intent.customer_name,
                card_id=intent.card_id,
                stamps_added=stamps,
                pending_sync=pending_sync,
            )
        )
        logger.warning(
            "Scan commit failed",
            customer_id=intent.customer_id,
            kind=intent.kind.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        # Operators may rescan the same code straight away after a failure.
        self._last_scan = None
        self._pending = None
        self._transition(ScanState.IDLE)
        return ScanResult(ScanOutcome.FAILED, message, intent=intent, error=exc, pending_sync=pending_sync)

    def _abandon(self, task: asyncio.Future, token: int, intent: ScanIntent) -> ScanResult:
        self._commit_token += 1
        task.add_done_callback(partial(self._discard_stale, token))
        self._telemetry.record_outcome("timed_out")
        self.activity_log.record(
            ScanActivity(
                status=ActivityStatus.ERROR,
                message=TIMEOUT_MESSAGE,
                customer_name=intent.customer_name,
                card_id=intent.card_id,
                pending_sync=True,
            )
        )
        logger.error(
            "Scan commit timed out, scanner reset",
            customer_id=intent.customer_id,
            timeout_seconds=self._commit_timeout,
        )
        self._last_scan = None
        self._pending = None
        self._transition(ScanState.IDLE)
        return ScanResult(ScanOutcome.TIMED_OUT, TIMEOUT_MESSAGE, intent=intent, pending_sync=True)

    def _release(self, task: asyncio.Future, token: int, intent: ScanIntent) -> None:
        task.add_done_callback(partial(self._discard_stale, token))
        if token != self._commit_token:
            return
        self._commit_token += 1
        self.activity_log.record(
            ScanActivity(
                status=ActivityStatus.ERROR,
                message=COMMIT_CANCELLED_MESSAGE,
                customer_name=intent.customer_name,
                card_id=intent.card_id,
                pending_sync=True,
            )
        )
        logger.warning("Scan commit abandoned by caller, scanner reset", customer_id=intent.customer_id)
        self._last_scan = None
        self._pending = None
        self._state = ScanState.IDLE

    def _discard_stale(self, token: int, task: asyncio.Future) -> None:
        self._telemetry.record_outcome("stale_discarded")
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Discarded failure from abandoned scan", token=token, error=str(error))
            return
        card = task.result()
        logger.warning(
            "Discarded result from abandoned scan",
            token=token,
            card_id=getattr(card, "document_id", None),
        )


__all__ = [
    "ACCESS_DENIED_MESSAGE",
    "COMMIT_CANCELLED_MESSAGE",
    "InvalidScanTransitionError",
    "PENDING_SYNC_NOTICE",
    "ScanOutcome",
    "ScanResult",
    "ScanState",
    "StampIssuanceFlow",
]
