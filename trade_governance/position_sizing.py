"""
Position Sizing
===============

Pure functions for the capital, session and final position multipliers.

Implements sizing with:
- 5-step capital ladder over a 0-100 survivorship score
- Hard 0.25x cap on short-direction capital
- Agent size multiplier feedback from the tier resolver
- Throttle haircut for throttled admissions
- Session priority multiplier (suppressed sessions size to zero)
- Final multiplier = clamp(capital x session x survivorship / 75, 0, 2.0)

Design:
- Conservative default: shorts never exceed a quarter of long sizing
- Each adjustment applied independently, cap applied last
- Fail-safe: always returns a finite, non-negative multiplier
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

from trade_governance.config import RouterConfig
from trade_governance.models import Direction, LiquiditySession, SessionPriority


# (inclusive lower bound on survivorship, multiplier), highest first; below the last bound -> 0
CAPITAL_STEPS: Sequence[Tuple[float, float]] = (
    (75.0, 1.2),
    (60.0, 1.0),
    (45.0, 0.7),
    (25.0, 0.4),
)

SESSION_PRIORITY_MULTIPLIER: Dict[SessionPriority, float] = {
    SessionPriority.HIGH: 1.15,
    SessionPriority.MEDIUM: 0.85,
    SessionPriority.LOW: 0.55,
    SessionPriority.SUPPRESSED: 0.0,
}
# Sessions missing from the priority table
UNRANKED_SESSION_MULTIPLIER = 0.5


def compute_capital_multiplier(
    survivorship_score: float,
    direction: Direction = Direction.LONG,
    config: Optional[RouterConfig] = None,
) -> float:
    """Map a survivorship score to a capital multiplier.

    Steps:
        < 25      0.0
        25 - 45   0.4
        45 - 60   0.7
        60 - 75   1.0
        >= 75     1.2

    Short trades are additionally capped at config.short_capital_cap (0.25).

    Args:
        survivorship_score: 0-100 edge persistence score (clamped)
        direction: Trade direction
        config: Router config (cap)

    Returns:
        Capital multiplier
    """
    config = config or RouterConfig()
    score = max(0.0, min(100.0, survivorship_score))

    multiplier = 0.0
    for bound, value in CAPITAL_STEPS:
        if score >= bound:
            multiplier = value
            break

    if Direction(direction) == Direction.SHORT:
        multiplier = min(multiplier, config.short_capital_cap)

    return multiplier


def apply_capital_adjustments(
    base_multiplier: float,
    direction: Direction,
    agent_size_multiplier: float = 1.0,
    throttled: bool = False,
    config: Optional[RouterConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> float:
    """Apply agent feedback and throttle haircut, then re-apply the short cap."""
    config = config or RouterConfig()

    multiplier = base_multiplier * max(0.0, agent_size_multiplier)
    if throttled:
        multiplier *= config.throttle_capital_factor

    if Direction(direction) == Direction.SHORT and multiplier > config.short_capital_cap:
        if logger:
            logger.warning(
                f"Short capital multiplier {multiplier:.3f} exceeds cap, "
                f"clamping to {config.short_capital_cap:.2f}"
            )
        multiplier = config.short_capital_cap

    return multiplier


def session_priority(
    direction: Direction,
    session: LiquiditySession,
    config: Optional[RouterConfig] = None,
) -> Optional[SessionPriority]:
    config = config or RouterConfig()
    table = config.short_session_priority if Direction(direction) == Direction.SHORT else config.long_session_priority
    return table.get(session)


def compute_session_multiplier(
    direction: Direction,
    session: LiquiditySession,
    config: Optional[RouterConfig] = None,
) -> float:
    """Session multiplier from the direction's priority table.

    high 1.15, medium 0.85, low 0.55, suppressed 0; unranked sessions 0.5.
    """
    priority = session_priority(direction, session, config)
    if priority is None:
        return UNRANKED_SESSION_MULTIPLIER
    return SESSION_PRIORITY_MULTIPLIER[priority]


def compute_final_position_multiplier(
    capital_multiplier: float,
    session_multiplier: float,
    survivorship_score: float,
    config: Optional[RouterConfig] = None,
) -> float:
    """clamp(capital x session x survivorship / reference, 0, max)."""
    config = config or RouterConfig()
    score = max(0.0, min(100.0, survivorship_score))
    raw = capital_multiplier * session_multiplier * (score / config.survivorship_reference)
    return max(0.0, min(config.max_final_multiplier, raw))
