"""Cafe loyalty card core: stamp issuance, reward redemption and card storage."""

__version__ = "0.1.0"
