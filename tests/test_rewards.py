import pytest

from cafe_cards.domain.rewards import (
    STAMPS_PER_REWARD,
    accrue_stamps,
    calculate_rewards,
    redeem_reward,
)


@pytest.mark.parametrize(
    ("total", "current", "available"),
    [(0, 0, 0), (9, 9, 0), (10, 0, 1), (29, 9, 2), (30, 0, 3)],
)
def test_calculate_rewards_splits_total(total: int, current: int, available: int) -> None:
    balance = calculate_rewards(total)
    assert balance.current_stamps == current
    assert balance.available_rewards == available


def test_calculate_rewards_recombines_to_total() -> None:
    for total in range(0, 250):
        balance = calculate_rewards(total)
        assert 0 <= balance.current_stamps < STAMPS_PER_REWARD
        assert STAMPS_PER_REWARD * balance.available_rewards + balance.current_stamps == total


def test_calculate_rewards_rejects_negative_totals() -> None:
    with pytest.raises(ValueError):
        calculate_rewards(-1)


def test_single_stamp_completes_a_card() -> None:
    accrual = accrue_stamps(current_stamps=9, total_stamps=9, available_rewards=0, count=1)
    assert accrual.current_stamps == 0
    assert accrual.total_stamps == 10
    assert accrual.available_rewards == 1
    assert accrual.rewards_earned == 1


def test_batch_of_stamps_carries_remainder() -> None:
    accrual = accrue_stamps(current_stamps=8, total_stamps=48, available_rewards=0, count=5)
    assert accrual.current_stamps == 3
    assert accrual.total_stamps == 53
    assert accrual.available_rewards == 1
    assert accrual.rewards_earned == 1


def test_accrual_keeps_unredeemed_rewards() -> None:
    accrual = accrue_stamps(current_stamps=4, total_stamps=34, available_rewards=2, count=10)
    assert accrual.current_stamps == 4
    assert accrual.available_rewards == 3


def test_accrual_requires_at_least_one_stamp() -> None:
    with pytest.raises(ValueError):
        accrue_stamps(current_stamps=0, total_stamps=0, available_rewards=0, count=0)


def test_redeem_consumes_exactly_one_reward() -> None:
    balance = redeem_reward(available_rewards=2, total_redeemed=5)
    assert balance.available_rewards == 1
    assert balance.total_redeemed == 6


def test_redeem_refuses_empty_balance() -> None:
    with pytest.raises(ValueError):
        redeem_reward(available_rewards=0, total_redeemed=3)
