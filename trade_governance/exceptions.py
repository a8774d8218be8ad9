"""
Trade Governance Exceptions
============================

Domain-specific exceptions for explicit error handling.

All exceptions inherit from TradeGovernanceError for easy catching.

Ordinary gate, entry or safety-check failures never raise: they are
reported as structured reasons on the returned result. Exceptions are
reserved for programming errors and invalid configuration, which must
halt the calling pipeline rather than be silently tolerated.
"""


class TradeGovernanceError(Exception):
    """Base exception for all trade governance errors."""
    pass


class ConfigurationError(TradeGovernanceError):
    """Raised when configuration is invalid or inconsistent.

    Examples:
    - Config file exists but is not valid JSON
    - Rollback activation ratio above the recovery ratio
    - Tier thresholds that cannot be satisfied
    """
    pass


class RouterIntegrityError(ConfigurationError):
    """Raised when the router resolves a direction to the wrong engine.

    Examples:
    - A long proposal routed to SHORT_ENGINE
    - A short proposal routed to LONG_ENGINE

    Router config is externally mutable, so this is checked explicitly
    after every routing call instead of trusted by construction.
    """

    def __init__(self, direction: str, engine: str):
        self.direction = direction
        self.engine = engine
        super().__init__(
            f"Router integrity violation: direction '{direction}' resolved to '{engine}'"
        )


class InsufficientHistoryError(TradeGovernanceError):
    """Raised when an operation needs trade history that is not there.

    Examples:
    - Building a scorecard for an agent with zero closed trades
    - Requesting a rolling window larger than the history

    Resolver entry points skip empty agents rather than raising; this
    is for direct callers of the scorecard helpers.
    """
    pass
