"""
Directional Router
===================

Assigns each proposal to LONG_ENGINE, SHORT_ENGINE or BLOCKED and
authorizes the market regime for that direction.

Routing rules:
- long proposals resolve to LONG_ENGINE when the pair is long-authorized,
  otherwise BLOCKED
- short proposals resolve to SHORT_ENGINE only when the short engine is
  enabled, the pair is short-enabled and not restricted, and the agent is
  authorized; otherwise BLOCKED

Pair names are normalized ("EUR/USD" -> "EUR_USD") before lookup.

Router config is externally mutable, so the direction/engine pairing is
re-checked after every call by validate_router_integrity(). A mismatch is
a programming error: assert_router_integrity() raises RouterIntegrityError.
"""

import logging
from typing import Optional, Tuple

from trade_governance.config import RouterConfig
from trade_governance.exceptions import RouterIntegrityError
from trade_governance.models import (
    SHORT_TRADEABLE_REGIMES,
    Direction,
    ExecutionEngine,
    GovernanceContext,
    RouteDecision,
    ShortRegime,
    ShortRegimeClassification,
    VolatilityPhase,
)
from trade_governance.utils import normalize_pair


logger = logging.getLogger(__name__)


_FORBIDDEN_PAIRINGS = frozenset({
    (Direction.LONG, ExecutionEngine.SHORT_ENGINE),
    (Direction.SHORT, ExecutionEngine.LONG_ENGINE),
})


def route_trade(
    direction: Direction,
    pair: str,
    agent_id: Optional[str],
    config: Optional[RouterConfig] = None,
) -> RouteDecision:
    """Route a proposal to its execution engine.

    Args:
        direction: Proposal direction
        pair: Instrument (e.g. "EUR_USD")
        agent_id: Originating agent
        config: Router configuration (defaults if None)

    Returns:
        RouteDecision with engine and reason
    """
    config = config or RouterConfig()
    direction = Direction(direction)
    pair = normalize_pair(pair)

    if direction == Direction.LONG:
        if pair in config.long_authorized_pairs:
            return RouteDecision(direction=direction, engine=ExecutionEngine.LONG_ENGINE, reason="Long proposal")
        reason = f"{pair} not authorized for long trading"
        logger.info(f"Long {pair} from {agent_id} blocked: {reason}")
        return RouteDecision(direction=direction, engine=ExecutionEngine.BLOCKED, reason=reason)

    if not config.short_engine_enabled:
        reason = "Short engine disabled"
    elif pair in config.short_restricted_pairs:
        reason = f"{pair}: {config.short_restricted_pairs[pair]}"
    elif pair not in config.short_enabled_pairs:
        reason = f"{pair} not in short-enabled pairs"
    elif agent_id not in config.short_allowed_agents:
        reason = f"Agent {agent_id} not authorized for shorts"
    else:
        return RouteDecision(direction=direction, engine=ExecutionEngine.SHORT_ENGINE, reason="Short proposal")

    logger.info(f"Short {pair} from {agent_id} blocked: {reason}")
    return RouteDecision(direction=direction, engine=ExecutionEngine.BLOCKED, reason=reason)


def validate_router_integrity(direction: Direction, engine: ExecutionEngine) -> bool:
    """Return False when a direction resolved to the opposite engine."""
    return (Direction(direction), ExecutionEngine(engine)) not in _FORBIDDEN_PAIRINGS


def assert_router_integrity(decision: RouteDecision) -> RouteDecision:
    """Raise RouterIntegrityError unless the routing decision is consistent.

    Raises:
        RouterIntegrityError: long -> SHORT_ENGINE or short -> LONG_ENGINE
    """
    if not validate_router_integrity(decision.direction, decision.engine):
        logger.error(
            f"Router integrity violation: {decision.direction.value} -> {decision.engine.value}"
        )
        raise RouterIntegrityError(decision.direction.value, decision.engine.value)
    return decision


# ============================================================
# REGIME AUTHORIZATION
# ============================================================


def classify_short_regime(ctx: GovernanceContext) -> ShortRegimeClassification:
    """Place the context on the short regime ladder.

    Tradeable: shock-breakdown, risk-off-impulse, liquidity-vacuum,
    breakdown-continuation. Suppressed: orderly-uptrend, balanced-chop,
    mean-reversion-rich.
    """
    phase = ctx.volatility_phase
    shock = ctx.liquidity_shock_prob
    alignment = ctx.mtf_alignment_score

    if shock >= 65 and phase in (VolatilityPhase.IGNITION, VolatilityPhase.EXPANSION) and not ctx.htf_supports:
        regime, confidence = ShortRegime.SHOCK_BREAKDOWN, min(100.0, 50 + shock / 2)
    elif ctx.spread_stability_rank < 30 and shock >= 50:
        regime, confidence = ShortRegime.LIQUIDITY_VACUUM, min(100.0, 40 + shock / 2)
    elif (
        phase == VolatilityPhase.EXPANSION
        and not ctx.htf_supports
        and not ctx.mtf_confirms
        and alignment < 40
    ):
        regime, confidence = ShortRegime.RISK_OFF_IMPULSE, min(100.0, 55 + (40 - alignment))
    elif phase == VolatilityPhase.EXPANSION and not ctx.htf_supports and alignment < 50:
        regime, confidence = ShortRegime.BREAKDOWN_CONTINUATION, min(100.0, 50 + (50 - alignment))
    elif ctx.htf_supports and alignment >= 60:
        regime, confidence = ShortRegime.ORDERLY_UPTREND, alignment
    elif phase == VolatilityPhase.COMPRESSION:
        regime, confidence = ShortRegime.BALANCED_CHOP, ctx.phase_confidence
    else:
        regime, confidence = ShortRegime.MEAN_REVERSION_RICH, ctx.phase_confidence

    tradeable = regime in SHORT_TRADEABLE_REGIMES
    return ShortRegimeClassification(
        regime=regime,
        confidence=confidence,
        is_tradeable=tradeable,
        suppression_reason=None if tradeable else f"Short regime {regime.value} suppressed",
    )


def authorize_regime(direction: Direction, ctx: GovernanceContext) -> Tuple[bool, str]:
    """Decide whether the current regime admits trades in this direction.

    Longs need a non-exhausted market with HTF support or at least neutral
    alignment. Shorts need a tradeable rung of the short regime ladder.

    Returns:
        (authorized, reason)
    """
    if Direction(direction) == Direction.SHORT:
        regime = classify_short_regime(ctx)
        if regime.is_tradeable:
            return True, f"Short regime {regime.regime.value}"
        return False, regime.suppression_reason or "Short regime suppressed"

    if ctx.volatility_phase == VolatilityPhase.EXHAUSTION:
        return False, "Long regime suppressed in exhaustion"
    if not ctx.htf_supports and ctx.mtf_alignment_score < 50:
        return False, f"Long regime unsupported: alignment {ctx.mtf_alignment_score:.0f}% without HTF"
    return True, "Long regime supported"
