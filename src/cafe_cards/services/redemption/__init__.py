"""Customer redemption orchestration."""

from .flow import RedemptionCallback, RedemptionFlow  # noqa: F401
