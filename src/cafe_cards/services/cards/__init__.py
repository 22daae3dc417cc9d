"""Loyalty card persistence services."""

from .changes import CardChange, RewardsRedeemedChange, StampsAddedChange, detect_card_changes  # noqa: F401
from .exceptions import (  # noqa: F401
    CardBusinessRuleError,
    CardNotFoundError,
    CardPermissionError,
    CardServiceError,
    CardTransportError,
    CardValidationError,
)
from .migration import MigrationSummary, MigrationValidation, migrate_loyalty_cards, validate_migration  # noqa: F401
from .repository import CardRepository  # noqa: F401
