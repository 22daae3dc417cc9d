"""Stamp-to-reward arithmetic for loyalty cards."""

from __future__ import annotations

from dataclasses import dataclass

STAMPS_PER_REWARD = 10


@dataclass(frozen=True, slots=True)
class RewardBalance:
    """Progress toward the next reward plus rewards ready to redeem."""

    current_stamps: int
    available_rewards: int


@dataclass(frozen=True, slots=True)
class StampAccrual:
    """Card counters after a batch of stamps has been applied."""

    current_stamps: int
    total_stamps: int
    available_rewards: int
    rewards_earned: int


@dataclass(frozen=True, slots=True)
class RedemptionBalance:
    """Card counters after one reward has been consumed."""

    available_rewards: int
    total_redeemed: int


def calculate_rewards(total_stamps: int) -> RewardBalance:
    """Split a cumulative stamp count into progress and earned rewards.

    Only valid for cards that have never redeemed a reward; used to seed
    the counters of a freshly created card.
    """

    if total_stamps < 0:
        raise ValueError("total_stamps must be non-negative")
    available_rewards, current_stamps = divmod(total_stamps, STAMPS_PER_REWARD)
    return RewardBalance(current_stamps=current_stamps, available_rewards=available_rewards)


def accrue_stamps(
    *,
    current_stamps: int,
    total_stamps: int,
    available_rewards: int,
    count: int,
) -> StampAccrual:
    """Apply ``count`` stamps to existing counters using delta arithmetic."""

    if count < 1:
        raise ValueError("count must be at least 1")
    rewards_earned, new_current = divmod(current_stamps + count, STAMPS_PER_REWARD)
    return StampAccrual(
        current_stamps=new_current,
        total_stamps=total_stamps + count,
        available_rewards=available_rewards + rewards_earned,
        rewards_earned=rewards_earned,
    )


def redeem_reward(*, available_rewards: int, total_redeemed: int) -> RedemptionBalance:
    """Consume exactly one reward. Stamp counters are never touched."""

    if available_rewards <= 0:
        raise ValueError("no rewards available to redeem")
    return RedemptionBalance(
        available_rewards=available_rewards - 1,
        total_redeemed=total_redeemed + 1,
    )


__all__ = [
    "RedemptionBalance",
    "RewardBalance",
    "STAMPS_PER_REWARD",
    "StampAccrual",
    "accrue_stamps",
    "calculate_rewards",
    "redeem_reward",
]
