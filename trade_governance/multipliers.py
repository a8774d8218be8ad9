"""
Governance Multipliers
=======================

The four composite factors (alignment, session, sequencing, volatility)
plus the two forensic factors (exit efficiency, microstructure) used to
shape payoff ranges and grade exit latency.

Each factor is a pure function of the GovernanceContext with a bounded
range:

    alignment    0.55 - 1.35
    session      0.40 - 1.18
    sequencing   0.70 - 1.12
    volatility   0.41 - 1.35
"""

from typing import Dict

from trade_governance.models import (
    GovernanceContext,
    GovernanceMultipliers,
    LiquiditySession,
    SequencingCluster,
    VolatilityPhase,
)


PHASE_BASE: Dict[VolatilityPhase, float] = {
    VolatilityPhase.COMPRESSION: 0.55,
    VolatilityPhase.IGNITION: 1.35,
    VolatilityPhase.EXPANSION: 1.25,
    VolatilityPhase.EXHAUSTION: 0.65,
}

SESSION_BOOST: Dict[LiquiditySession, float] = {
    LiquiditySession.LONDON_OPEN: 1.18,
    LiquiditySession.NY_OVERLAP: 1.12,
    LiquiditySession.ASIAN: 0.78,
    LiquiditySession.LATE_NY: 0.68,
    LiquiditySession.ROLLOVER: 0.40,
}

SEQUENCING_FACTOR: Dict[SequencingCluster, float] = {
    SequencingCluster.PROFIT_MOMENTUM: 1.12,
    SequencingCluster.LOSS_CLUSTER: 0.70,
    SequencingCluster.MIXED: 0.85,
    SequencingCluster.NEUTRAL: 1.0,
}

PHASE_EXIT: Dict[VolatilityPhase, float] = {
    VolatilityPhase.COMPRESSION: 0.72,
    VolatilityPhase.IGNITION: 1.20,
    VolatilityPhase.EXPANSION: 1.15,
    VolatilityPhase.EXHAUSTION: 0.78,
}


def alignment_multiplier(ctx: GovernanceContext) -> float:
    """Multi-timeframe alignment factor.

    Full alignment (HTF + MTF + clean LTF) earns the top band; missing HTF
    support is penalized hardest.
    """
    s = ctx.mtf_alignment_score / 100
    if ctx.htf_supports and ctx.mtf_confirms and ctx.ltf_clean:
        return 1.18 + s * 0.17
    if ctx.htf_supports and ctx.mtf_confirms:
        return 0.98 + s * 0.12
    if ctx.htf_supports:
        return 0.82 + s * 0.08
    return 0.55 + s * 0.10


def session_multiplier(ctx: GovernanceContext) -> float:
    return SESSION_BOOST[ctx.current_session]


def sequencing_multiplier(ctx: GovernanceContext) -> float:
    return SEQUENCING_FACTOR[ctx.sequencing_cluster]


def volatility_multiplier(ctx: GovernanceContext) -> float:
    """Phase base factor scaled by phase confidence (75%-100% of base)."""
    base = PHASE_BASE[ctx.volatility_phase]
    return base * (0.75 + (ctx.phase_confidence / 100) * 0.25)


def exit_efficiency_multiplier(ctx: GovernanceContext) -> float:
    return PHASE_EXIT[ctx.volatility_phase] * (0.88 + (ctx.spread_stability_rank / 100) * 0.22)


def microstructure_multiplier(ctx: GovernanceContext) -> float:
    spread_factor = ctx.spread_stability_rank / 100
    friction_factor = min(ctx.friction_ratio / 6, 1.0)
    base = spread_factor * 0.55 + friction_factor * 0.45
    if ctx.liquidity_shock_prob > 55:
        shock_penalty = 0.78
    elif ctx.liquidity_shock_prob > 35:
        shock_penalty = 0.90
    else:
        shock_penalty = 1.0
    return (0.60 + base * 0.55) * shock_penalty


def compute_multipliers(ctx: GovernanceContext) -> GovernanceMultipliers:
    """Compute the four composite factors and their product.

    Args:
        ctx: Governance context

    Returns:
        GovernanceMultipliers with composite = alignment * session * sequencing * volatility
    """
    alignment = alignment_multiplier(ctx)
    session = session_multiplier(ctx)
    sequencing = sequencing_multiplier(ctx)
    volatility = volatility_multiplier(ctx)

    return GovernanceMultipliers(
        alignment=alignment,
        session=session,
        sequencing=sequencing,
        volatility=volatility,
        composite=alignment * session * sequencing * volatility,
    )
