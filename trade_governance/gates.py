"""
Admission Gate Evaluator
=========================

Scores a single trade proposal against independent risk gates and
produces an approved / throttled / rejected decision.

Gates:
- G1_FRICTION: friction ratio below 3x
- G2_NO_HTF_SUPPORT: weak MTF alignment without HTF support
- G3_EDGE_DECAY: edge decaying faster than 20%
- G4_SPREAD_INSTABILITY: spread stability rank below 30
- G5_COMPRESSION_LOW_SESSION: compression during a low-activity session
- G6_OVERTRADING: anti-overtrading governor active
- G7_LOSS_CLUSTER: loss cluster with weak alignment
- G8_HIGH_SHOCK: liquidity shock above 70% outside ignition
- G9_PRICE_DATA_UNAVAILABLE (hard)
- G10_ANALYSIS_UNAVAILABLE (hard)

Decision rule:
- any hard gate -> rejected immediately
- 0 gates -> approved, 1 gate -> throttled, 2+ gates -> rejected

G8 is suppressed during ignition: shock probability is structurally high
at breakout and that is the phase the engine wants to trade.

Gate failures never raise. The evaluator is a pure function of its inputs.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from trade_governance.config import GateConfig
from trade_governance.models import (
    GateEntry,
    GateResult,
    GovernanceContext,
    GovernanceDecision,
    GovernanceStats,
    LiquiditySession,
    SequencingCluster,
    TradeProposal,
    UnitValidationResult,
    VolatilityPhase,
)
from trade_governance.multipliers import (
    compute_multipliers,
    exit_efficiency_multiplier,
    microstructure_multiplier,
)


logger = logging.getLogger(__name__)


SESSION_LABELS: Dict[LiquiditySession, str] = {
    LiquiditySession.ASIAN: "Asian",
    LiquiditySession.LONDON_OPEN: "London",
    LiquiditySession.NY_OVERLAP: "NY Overlap",
    LiquiditySession.LATE_NY: "Late NY",
    LiquiditySession.ROLLOVER: "Rollover",
}

PHASE_LABELS: Dict[VolatilityPhase, str] = {
    VolatilityPhase.COMPRESSION: "Compression",
    VolatilityPhase.IGNITION: "Ignition",
    VolatilityPhase.EXPANSION: "Expansion",
    VolatilityPhase.EXHAUSTION: "Exhaustion",
}

# Holding windows in minutes
DURATION_MINUTES: Dict[VolatilityPhase, Tuple[int, int]] = {
    VolatilityPhase.COMPRESSION: (8, 45),
    VolatilityPhase.IGNITION: (1, 15),
    VolatilityPhase.EXPANSION: (2, 25),
    VolatilityPhase.EXHAUSTION: (1, 12),
}


# ============================================================
# GATE DEFINITIONS
# ============================================================


@dataclass(frozen=True)
class Gate:
    """A named predicate over the governance context."""

    id: str
    fires: Callable[[GovernanceContext, GateConfig], bool]
    message: Callable[[GovernanceContext, GateConfig], str]
    hard: bool = False


HARD_GATES: Tuple[Gate, ...] = (
    Gate(
        id="G9_PRICE_DATA_UNAVAILABLE",
        fires=lambda c, cfg: not c.price_data_available,
        message=lambda c, cfg: "Price data unavailable",
        hard=True,
    ),
    Gate(
        id="G10_ANALYSIS_UNAVAILABLE",
        fires=lambda c, cfg: not c.analysis_available,
        message=lambda c, cfg: "Analysis unavailable",
        hard=True,
    ),
)

SOFT_GATES: Tuple[Gate, ...] = (
    Gate(
        id="G1_FRICTION",
        fires=lambda c, cfg: c.friction_ratio < cfg.min_friction_ratio,
        message=lambda c, cfg: f"Friction ratio {c.friction_ratio:.1f}x < {cfg.min_friction_ratio:g}x threshold",
    ),
    Gate(
        id="G2_NO_HTF_SUPPORT",
        fires=lambda c, cfg: not c.htf_supports and c.mtf_alignment_score < cfg.min_alignment_without_htf,
        message=lambda c, cfg: f"MTF alignment {c.mtf_alignment_score:.0f}% without HTF support",
    ),
    Gate(
        id="G3_EDGE_DECAY",
        fires=lambda c, cfg: c.edge_decaying and c.edge_decay_rate > cfg.max_edge_decay_rate,
        message=lambda c, cfg: f"Edge decaying {c.edge_decay_rate:.0f}%",
    ),
    Gate(
        id="G4_SPREAD_INSTABILITY",
        fires=lambda c, cfg: c.spread_stability_rank < cfg.min_spread_stability,
        message=lambda c, cfg: f"Spread instability {c.spread_stability_rank:.0f}%",
    ),
    Gate(
        id="G5_COMPRESSION_LOW_SESSION",
        fires=lambda c, cfg: (
            c.session_aggressiveness < cfg.min_session_aggressiveness
            and c.volatility_phase == VolatilityPhase.COMPRESSION
        ),
        message=lambda c, cfg: "Compression + low-activity session",
    ),
    Gate(
        id="G6_OVERTRADING",
        fires=lambda c, cfg: c.overtrading_throttled,
        message=lambda c, cfg: "Anti-overtrading governor active",
    ),
    Gate(
        id="G7_LOSS_CLUSTER",
        fires=lambda c, cfg: (
            c.sequencing_cluster == SequencingCluster.LOSS_CLUSTER
            and c.mtf_alignment_score < cfg.min_loss_cluster_alignment
        ),
        message=lambda c, cfg: f"Loss cluster + weak alignment {c.mtf_alignment_score:.0f}%",
    ),
    Gate(
        id="G8_HIGH_SHOCK",
        fires=lambda c, cfg: (
            c.liquidity_shock_prob > cfg.max_liquidity_shock
            and c.volatility_phase != VolatilityPhase.IGNITION
        ),
        message=lambda c, cfg: f"High shock risk {c.liquidity_shock_prob:.0f}% outside ignition",
    ),
)


def _fire(gates: Sequence[Gate], ctx: GovernanceContext, config: GateConfig) -> List[GateEntry]:
    return [
        GateEntry(id=g.id, message=g.message(ctx, config), hard=g.hard)
        for g in gates
        if g.fires(ctx, config)
    ]


def evaluate_gates(ctx: GovernanceContext, config: Optional[GateConfig] = None) -> List[GateEntry]:
    """Return the triggered gates in evaluation order.

    Hard gates short-circuit: when any fires, only the hard gates are
    returned.
    """
    config = config or GateConfig()

    hard = _fire(HARD_GATES, ctx, config)
    if hard:
        return hard

    triggered = _fire(SOFT_GATES, ctx, config)

    if config.enforce_unit_consistency:
        units = validate_unit_consistency(ctx, config)
        if units.gate is not None:
            triggered.append(units.gate)

    return triggered


def decide(gates: Sequence[GateEntry]) -> GovernanceDecision:
    """Map triggered gates to a decision."""
    if any(g.hard for g in gates):
        return GovernanceDecision.REJECTED
    if len(gates) == 0:
        return GovernanceDecision.APPROVED
    if len(gates) == 1:
        return GovernanceDecision.THROTTLED
    return GovernanceDecision.REJECTED


# ============================================================
# UNIT CONSISTENCY (G11)
# ============================================================


def validate_unit_consistency(
    ctx: GovernanceContext,
    config: Optional[GateConfig] = None,
) -> UnitValidationResult:
    """Check that the raw microstructure values share one unit system.

    Catches feeds that mix pips and price units: a non-positive ATR,
    a negative spread, an implausible friction ratio, or a total friction
    that is not spread + slippage.

    Args:
        ctx: Governance context
        config: Gate configuration (friction bounds and tolerance)

    Returns:
        UnitValidationResult with a G11_INFRA_UNIT_MISMATCH gate when invalid
    """
    config = config or GateConfig()
    issues: List[str] = []

    if ctx.atr_value <= 0:
        issues.append(f"ATR must be positive, got {ctx.atr_value}")

    if ctx.current_spread < 0:
        issues.append(f"Spread must be non-negative, got {ctx.current_spread}")

    low, high = config.friction_ratio_bounds
    if not low <= ctx.friction_ratio <= high:
        issues.append(f"Friction ratio {ctx.friction_ratio:.2f} outside [{low:g}, {high:g}]")

    expected = ctx.current_spread + ctx.slippage_estimate
    if abs(ctx.total_friction - expected) > config.friction_tolerance:
        issues.append(
            f"Total friction {ctx.total_friction} != spread + slippage {expected}"
        )

    if not issues:
        return UnitValidationResult(valid=True)

    gate = GateEntry(id="G11_INFRA_UNIT_MISMATCH", message="; ".join(issues))
    return UnitValidationResult(valid=False, issues=issues, gate=gate)


# ============================================================
# MAIN EVALUATION
# ============================================================


def _alignment_label(ctx: GovernanceContext) -> str:
    if ctx.htf_supports and ctx.mtf_confirms and ctx.ltf_clean:
        return "Full Alignment"
    if ctx.htf_supports and ctx.mtf_confirms:
        return "HTF+MTF Aligned"
    if ctx.htf_supports:
        return "HTF Only"
    return "Misaligned"


def _exit_latency_grade(score: float) -> str:
    if score > 1.2:
        return "A"
    if score > 1.0:
        return "B"
    if score > 0.85:
        return "C"
    return "D"


def _confidence_boost(composite: float) -> float:
    if composite > 1.1:
        return 18.0
    if composite > 0.9:
        return 8.0
    if composite > 0.7:
        return -3.0
    return -12.0


def evaluate_trade_proposal(
    proposal: TradeProposal,
    ctx: GovernanceContext,
    config: Optional[GateConfig] = None,
) -> GateResult:
    """Evaluate a trade proposal through the admission gates.

    Args:
        proposal: Candidate trade
        ctx: Governance context at proposal time
        config: Gate thresholds (defaults if None)

    Returns:
        GateResult with decision, triggered gates, multipliers and forensics

    Example:
        >>> result = evaluate_trade_proposal(proposal, ctx)
        >>> result.decision
        <GovernanceDecision.APPROVED: 'approved'>
    """
    config = config or GateConfig()

    multipliers = compute_multipliers(ctx)
    composite = multipliers.composite
    exit_efficiency = exit_efficiency_multiplier(ctx)
    microstructure = microstructure_multiplier(ctx)

    gates = evaluate_gates(ctx, config)
    decision = decide(gates)

    adjusted_win_probability = max(
        config.win_probability_floor,
        min(config.win_probability_ceiling, proposal.base_win_probability * composite),
    )

    # Payoff shaping: better exits widen winners, better microstructure shrinks losers
    win_boost = exit_efficiency * (ctx.spread_stability_rank / 100)
    loss_reduction = microstructure * multipliers.session
    win_low, win_high = proposal.base_win_range
    loss_low, loss_high = proposal.base_loss_range
    adjusted_win_range = (
        win_low * (0.85 + win_boost * 0.35),
        win_high * (0.88 + win_boost * 0.30),
    )
    adjusted_loss_range = (
        loss_low * (0.50 + loss_reduction * 0.40),
        loss_high * (0.75 + loss_reduction * 0.20),
    )

    governance_score = max(0.0, min(100.0,
        composite * 60
        + (25 if not gates else 0)
        + (5 if ctx.is_major_pair else 0)
    ))

    approved = decision == GovernanceDecision.APPROVED
    if approved:
        capture_ratio = min(0.95, 0.45 + composite * 0.35 + (ctx.spread_stability_rank / 100) * 0.1)
        p = adjusted_win_probability
        expected_expectancy = (
            p * (sum(adjusted_win_range) / 2)
            + (1 - p) * (sum(adjusted_loss_range) / 2)
        )
    else:
        capture_ratio = 0.0
        expected_expectancy = 0.0

    trade_mode = (
        "continuation"
        if ctx.volatility_phase == VolatilityPhase.EXPANSION and ctx.htf_supports and ctx.mtf_confirms
        else "scalp"
    )

    if decision != GovernanceDecision.APPROVED:
        logger.info(
            f"{proposal.pair} {proposal.direction.value} {decision.value}: "
            f"{', '.join(g.id for g in gates)}"
        )

    return GateResult(
        decision=decision,
        gates=gates,
        multipliers=multipliers,
        adjusted_win_probability=adjusted_win_probability,
        adjusted_win_range=adjusted_win_range,
        adjusted_loss_range=adjusted_loss_range,
        adjusted_duration_minutes=DURATION_MINUTES[ctx.volatility_phase],
        governance_score=governance_score,
        confidence_boost=_confidence_boost(composite),
        capture_ratio=capture_ratio,
        expected_expectancy=expected_expectancy,
        friction_cost=(1 - ctx.spread_stability_rank / 100) * 0.15,
        exit_latency_grade=_exit_latency_grade(exit_efficiency * multipliers.session),
        trade_mode=trade_mode,
        exit_efficiency=exit_efficiency,
        microstructure=microstructure,
        alignment_label=_alignment_label(ctx),
        volatility_label=PHASE_LABELS[ctx.volatility_phase],
        session_label=SESSION_LABELS[ctx.current_session],
    )


# ============================================================
# AGGREGATE STATS
# ============================================================


def compute_governance_stats(results: Sequence[GateResult], top_n: int = 5) -> GovernanceStats:
    """Aggregate a batch of gate results.

    Args:
        results: Gate results to aggregate
        top_n: Number of most frequent gate IDs to report

    Returns:
        GovernanceStats (averages over approved results where noted)
    """
    n = len(results)
    approved = [r for r in results if r.decision == GovernanceDecision.APPROVED]
    rejected = [r for r in results if r.decision == GovernanceDecision.REJECTED]
    throttled = [r for r in results if r.decision == GovernanceDecision.THROTTLED]

    def _avg(values: List[float], empty: float = 0.0) -> float:
        return sum(values) / len(values) if values else empty

    counts = Counter(g.id for r in results for g in r.gates)

    return GovernanceStats(
        total_proposed=n,
        total_approved=len(approved),
        total_rejected=len(rejected),
        total_throttled=len(throttled),
        rejection_rate=len(rejected) / n if n else 0.0,
        avg_composite_multiplier=_avg([r.multipliers.composite for r in results], empty=1.0),
        avg_governance_score=_avg([r.governance_score for r in results]),
        avg_capture_ratio=_avg([r.capture_ratio for r in approved]),
        avg_expectancy=_avg([r.expected_expectancy for r in approved]),
        approved_win_rate=_avg([r.adjusted_win_probability for r in approved]),
        top_rejection_reasons=counts.most_common(top_n),
    )
