"""
Trade Governance Utility Functions

Pure numeric helpers shared by the router, health monitor and tier resolver.
"""

from typing import Optional


def pip_multiplier(pair: str) -> float:
    """
    Price-to-pip multiplier for a currency pair.

    Args:
        pair: Instrument, e.g. "USD_JPY" or "EUR/USD"

    Returns:
        100 for JPY-quoted pairs, otherwise 10000
    """
    return 100.0 if "JPY" in pair.upper() else 10000.0


def normalize_pair(pair: str) -> str:
    """"EUR/USD" -> "EUR_USD"."""
    return pair.strip().upper().replace("/", "_")


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def profit_factor(gross_profit: float, gross_loss: float, sentinel: float = 99.0) -> float:
    """
    Profit factor with explicit zero-loss handling.

    Args:
        gross_profit: Sum of winning pips (>= 0)
        gross_loss: Sum of losing pips as a positive number
        sentinel: Value returned when there is profit but no loss

    Returns:
        gross_profit / gross_loss, sentinel when gross_loss is zero and
        gross_profit positive, 0.0 when there is no profit
    """
    if gross_loss > 0:
        return gross_profit / gross_loss
    if gross_profit > 0:
        return sentinel
    return 0.0


def safe_ratio(numerator: float, denominator: float, default: Optional[float] = None) -> Optional[float]:
    """numerator / denominator, or default when the denominator is not positive."""
    if denominator <= 0:
        return default
    return numerator / denominator
