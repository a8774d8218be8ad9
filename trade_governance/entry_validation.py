"""
Entry Validation
=================

Direction-specific entry conditions evaluated over the context's
IndicatorSnapshot. Required checks gate entry; advisory checks are
reported for forensics only.

Long (continuation ladder):
    required  volatility phase in {ignition, expansion}
    required  indicator coalition confirmed
    required  compression -> ignition -> expansion transition
    required  momentum persistence (trend efficiency > 0.55 or ADX > 25)
    advisory  spread stability, session alignment

Short (breakdown ladder):
    required  Donchian lower-band breakdown
    required  ADX rising above 20
    required  bearish Supertrend
    required  post-break ignition candle
    advisory  volatility expansion, liquidity thinning
"""

from typing import List

from trade_governance.models import (
    Direction,
    EntryCheck,
    EntryValidation,
    GovernanceContext,
    LiquiditySession,
    VolatilityPhase,
)


LONG_ENTRY_PHASES = (VolatilityPhase.IGNITION, VolatilityPhase.EXPANSION)
ACTIVE_SESSIONS = (LiquiditySession.LONDON_OPEN, LiquiditySession.NY_OVERLAP)

MIN_TREND_EFFICIENCY = 0.55
MIN_LONG_ADX = 25.0
MIN_SHORT_ADX = 20.0
MIN_STABLE_SPREAD_RANK = 50.0


def validate_long_entry(ctx: GovernanceContext) -> EntryValidation:
    ind = ctx.indicators
    phase = ctx.volatility_phase

    checks: List[EntryCheck] = [
        EntryCheck(
            name="volatility_phase",
            passed=phase in LONG_ENTRY_PHASES,
            required=True,
            detail=f"Phase {phase.value}",
        ),
        EntryCheck(
            name="coalition_confirmation",
            passed=ind.coalition_confirmed,
            required=True,
            detail="Indicator coalition confirmed" if ind.coalition_confirmed else "No coalition",
        ),
        EntryCheck(
            name="phase_transition",
            passed=ind.phase_transition_valid,
            required=True,
            detail="Compression -> ignition -> expansion",
        ),
        EntryCheck(
            name="momentum_persistence",
            passed=ind.trend_efficiency > MIN_TREND_EFFICIENCY or ind.adx > MIN_LONG_ADX,
            required=True,
            detail=f"Trend efficiency {ind.trend_efficiency:.2f}, ADX {ind.adx:.1f}",
        ),
        EntryCheck(
            name="spread_stability",
            passed=ctx.spread_stability_rank > MIN_STABLE_SPREAD_RANK,
            required=False,
            detail=f"Spread stability {ctx.spread_stability_rank:.0f}%",
        ),
        EntryCheck(
            name="session_alignment",
            passed=ctx.current_session in ACTIVE_SESSIONS,
            required=False,
            detail=f"Session {ctx.current_session.value}",
        ),
    ]
    return EntryValidation(direction=Direction.LONG, checks=checks)


def validate_short_entry(ctx: GovernanceContext) -> EntryValidation:
    ind = ctx.indicators

    checks: List[EntryCheck] = [
        EntryCheck(
            name="donchian_breakdown",
            passed=ind.donchian_breakdown,
            required=True,
            detail="Close below Donchian lower band" if ind.donchian_breakdown else "No Donchian break",
        ),
        EntryCheck(
            name="adx_rising",
            passed=ind.adx_rising and ind.adx > MIN_SHORT_ADX,
            required=True,
            detail=f"ADX {ind.adx:.1f} {'rising' if ind.adx_rising else 'flat/falling'}",
        ),
        EntryCheck(
            name="supertrend_bearish",
            passed=ind.supertrend_bearish,
            required=True,
            detail="Supertrend bearish" if ind.supertrend_bearish else "Supertrend not bearish",
        ),
        EntryCheck(
            name="post_break_ignition",
            passed=ind.post_break_ignition,
            required=True,
            detail="Ignition candle after break",
        ),
        EntryCheck(
            name="volatility_expansion",
            passed=ctx.volatility_phase in (VolatilityPhase.IGNITION, VolatilityPhase.EXPANSION),
            required=False,
            detail=f"Phase {ctx.volatility_phase.value}",
        ),
        EntryCheck(
            name="liquidity_thinning",
            passed=ind.liquidity_thinning,
            required=False,
            detail="Bid-side liquidity thinning",
        ),
    ]
    return EntryValidation(direction=Direction.SHORT, checks=checks)


def validate_entry(direction: Direction, ctx: GovernanceContext) -> EntryValidation:
    """Run the entry checks for the given direction."""
    if Direction(direction) == Direction.SHORT:
        return validate_short_entry(ctx)
    return validate_long_entry(ctx)
