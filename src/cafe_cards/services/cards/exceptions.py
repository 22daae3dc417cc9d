"""Errors raised by the loyalty card repository.

Messages are written for the cafe operator and are shown verbatim.
"""


class CardServiceError(RuntimeError):
    """Base exception for loyalty card operations."""

    @property
    def user_message(self) -> str:
        return str(self)


class CardValidationError(CardServiceError):
    """Required identifiers are missing or a record predates the reward system."""


class CardNotFoundError(CardServiceError):
    """No card exists for the requested customer or document."""


class CardBusinessRuleError(CardServiceError):
    """The requested mutation violates a reward rule (e.g. nothing to redeem)."""


class CardPermissionError(CardServiceError):
    """The acting cafe account may not modify the card."""


class CardTransportError(CardServiceError):
    """The document store was unreachable or answered with an unexpected code."""
