"""Liquidity engine core: dependency-aware engine scheduling, data integrity and composite scoring."""

__version__ = "1.0.0"
