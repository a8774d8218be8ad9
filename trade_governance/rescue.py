"""
Tier-B Rescue Pipeline
======================

Surgical constraints for agents whose raw history is dragged down by a
few destructive segments.

Pipeline:
1. Diagnose: find segments (session, regime, direction, pair) with
   expectancy < -0.3 over at least 50 trades
2. Rules: block the destructive direction, non-mild sessions, up to five
   pairs (JPY crosses first) and low-composite trades, ranked by pips
   lifted per trade removed
3. Apply every rule and rescore the surviving trades
4. Shadow validation of the retuned history
5. Deployment: reduced-live only when validation passes and the retuned
   PF >= 1.2 with expectancy > 0.3, otherwise shadow
6. Portfolio integration: overlap of profitable pairs with the tier-A
   roster; a rescue that only duplicates tier-A exposure stays in shadow

Design:
- Pure functions over TradeRecord lists; the resolver owns caching
- Rules carry their own lift estimates so callers can display them
"""

import logging
from typing import List, Literal, Optional, Sequence, Set

from pydantic import BaseModel, Field

from trade_governance.config import ShadowValidationConfig, TierConfig
from trade_governance.exceptions import InsufficientHistoryError
from trade_governance.models import ConstraintType, DeploymentState, TradeRecord
from trade_governance.scorecard import (
    AgentScorecard,
    build_agent_scorecard,
    calc_pips,
    compute_breakdown,
)


DESTRUCTIVE_EXPECTANCY = -0.3
DESTRUCTIVE_MIN_TRADES = 50
CRITICAL_NET_PIPS = -500.0
MODERATE_NET_PIPS = -200.0
MAX_PAIR_BLOCKS = 5

LOW_COMPOSITE_THRESHOLD = 0.72
RAISED_COMPOSITE_THRESHOLD = 0.80
LOW_COMPOSITE_MIN_TRADES = 50
LOW_COMPOSITE_MAX_NET = -100.0

MIN_SESSION_TRADES = 20

REDUCED_LIVE_MIN_PROFIT_FACTOR = 1.2
REDUCED_LIVE_MIN_EXPECTANCY = 0.3

Dimension = Literal["session", "regime", "direction", "pair"]
Severity = Literal["critical", "moderate", "mild"]


class DestructiveSegment(BaseModel):
    dimension: Dimension
    key: str
    trades: int
    expectancy: float
    net_pips: float
    severity: Severity
    is_jpy: bool = False

    model_config = {"frozen": True}


class RescueRule(BaseModel):
    """A constraint proposed by the rescue pipeline.

    Attributes:
        trades_removed: Trades the rule filters out of the history
        pips_lift: Loss removed, in pips (>= 0)
        expected_expectancy_lift: pips_lift spread over the surviving trades
        lift_per_trade_lost: pips_lift / trades_removed, the ranking key
    """

    type: ConstraintType
    value: str
    label: str
    trades_removed: int
    pips_lift: float
    expected_expectancy_lift: float
    lift_per_trade_lost: float
    confidence: Literal["high", "medium"]

    model_config = {"frozen": True}


class ShadowValidationReport(BaseModel):
    """Promotion check for a retuned history."""

    total_trades: int
    expectancy_ratio: float
    drawdown_ratio: float
    profitable_sessions: int
    rolling_expectancies: List[float] = Field(default_factory=list)
    fail_reasons: List[str] = Field(default_factory=list)

    @property
    def meets_promotion(self) -> bool:
        return not self.fail_reasons

    model_config = {"frozen": True}


class PortfolioIntegrationCheck(BaseModel):
    """How a retuned agent fits next to the tier-A roster.

    Attributes:
        env_signature_match: More than five distinct session/regime/pair/direction environments
        correlation_with_tier_a: Highest Jaccard overlap of profitable pairs with any tier-A agent
        diversification_benefit: 1 - correlation_with_tier_a, floored at 0
        marginal_risk: Retuned max drawdown scaled into [0, 1]
    """

    agent_id: str
    env_signature_match: bool
    correlation_with_tier_a: float
    diversification_benefit: float
    marginal_risk: float
    eligible: bool
    reason: str

    model_config = {"frozen": True}


class RescueResult(BaseModel):
    agent_id: str
    original: AgentScorecard
    destructive_segments: List[DestructiveSegment] = Field(default_factory=list)
    rules: List[RescueRule] = Field(default_factory=list)
    retuned: AgentScorecard
    trades_removed: int
    shadow_validation: ShadowValidationReport
    portfolio: PortfolioIntegrationCheck
    deployment_state: DeploymentState
    deployment_reason: str
    rescued: bool

    model_config = {"frozen": True}


# ============================================================
# STEP 1: DIAGNOSE
# ============================================================


def _severity(net_pips: float) -> Severity:
    if net_pips < CRITICAL_NET_PIPS:
        return "critical"
    if net_pips < MODERATE_NET_PIPS:
        return "moderate"
    return "mild"


def diagnose_agent(scorecard: AgentScorecard) -> List[DestructiveSegment]:
    """Destructive segments of a scorecard, worst net pips first."""
    dimensions = (
        ("session", scorecard.session_breakdown),
        ("regime", scorecard.regime_breakdown),
        ("direction", scorecard.direction_breakdown),
        ("pair", scorecard.pair_breakdown),
    )

    segments = []
    for dimension, rows in dimensions:
        for row in rows:
            if row.expectancy < DESTRUCTIVE_EXPECTANCY and row.trades >= DESTRUCTIVE_MIN_TRADES:
                segments.append(
                    DestructiveSegment(
                        dimension=dimension,
                        key=row.key,
                        trades=row.trades,
                        expectancy=row.expectancy,
                        net_pips=row.net_pips,
                        severity=_severity(row.net_pips),
                        is_jpy=dimension == "pair" and "JPY" in row.key.upper(),
                    )
                )

    segments.sort(key=lambda s: s.net_pips)
    return segments


# ============================================================
# STEP 2: RULES
# ============================================================


def _rule(
    rule_type: ConstraintType,
    value: str,
    label: str,
    trades_removed: int,
    pips_lift: float,
    total_trades: int,
    confidence: str,
) -> RescueRule:
    remaining = total_trades - trades_removed
    return RescueRule(
        type=rule_type,
        value=value,
        label=label,
        trades_removed=trades_removed,
        pips_lift=pips_lift,
        expected_expectancy_lift=pips_lift / remaining if remaining > 0 else 0.0,
        lift_per_trade_lost=pips_lift / trades_removed if trades_removed > 0 else 0.0,
        confidence=confidence,
    )


def generate_rescue_rules(
    segments: Sequence[DestructiveSegment],
    trades: Sequence[TradeRecord],
) -> List[RescueRule]:
    """Turn destructive segments into constraints, most efficient first."""
    total = len(trades)
    rules: List[RescueRule] = []

    for seg in segments:
        if seg.dimension == "direction":
            rules.append(_rule(
                ConstraintType.BLOCK_DIRECTION, seg.key, f"Block {seg.key.upper()} direction",
                seg.trades, abs(seg.net_pips), total,
                "high" if seg.severity == "critical" else "medium",
            ))

    for seg in segments:
        if seg.dimension == "session" and seg.severity != "mild":
            rules.append(_rule(
                ConstraintType.BLOCK_SESSION, seg.key, f"Block {seg.key} session",
                seg.trades, abs(seg.net_pips), total,
                "high" if seg.severity == "critical" else "medium",
            ))

    pairs = sorted(
        (s for s in segments if s.dimension == "pair"),
        key=lambda s: (not s.is_jpy, s.net_pips),
    )
    for seg in pairs[:MAX_PAIR_BLOCKS]:
        rules.append(_rule(
            ConstraintType.BLOCK_PAIR, seg.key, f"Block {seg.key}{' (JPY cross)' if seg.is_jpy else ''}",
            seg.trades, abs(seg.net_pips), total,
            "high" if seg.is_jpy or seg.severity == "critical" else "medium",
        ))

    # Missing composite counts as 0
    low = [t for t in trades if (t.governance_composite or 0.0) < LOW_COMPOSITE_THRESHOLD]
    if len(low) >= LOW_COMPOSITE_MIN_TRADES:
        low_net = sum(calc_pips(t) for t in low)
        if low_net < LOW_COMPOSITE_MAX_NET:
            rules.append(_rule(
                ConstraintType.RAISE_THRESHOLD, f"{RAISED_COMPOSITE_THRESHOLD:.2f}",
                f"Raise min composite threshold to {RAISED_COMPOSITE_THRESHOLD:.2f}",
                len(low), abs(low_net), total, "medium",
            ))

    rules.sort(key=lambda r: r.lift_per_trade_lost, reverse=True)
    return rules


# ============================================================
# STEP 3: APPLY
# ============================================================


def _allowed(trade: TradeRecord, rule: RescueRule) -> bool:
    if rule.type == ConstraintType.BLOCK_DIRECTION:
        return trade.direction.value != rule.value
    if rule.type == ConstraintType.BLOCK_SESSION:
        return (trade.session_label or "unknown") != rule.value
    if rule.type == ConstraintType.BLOCK_PAIR:
        return trade.currency_pair != rule.value
    return (trade.governance_composite or 0.0) >= float(rule.value)


def apply_rules(trades: Sequence[TradeRecord], rules: Sequence[RescueRule]) -> List[TradeRecord]:
    """Trades that survive every rule."""
    return [t for t in trades if all(_allowed(t, r) for r in rules)]


# ============================================================
# STEP 4: SHADOW VALIDATION
# ============================================================


def validate_shadow(
    original: AgentScorecard,
    retuned: AgentScorecard,
    retuned_trades: Sequence[TradeRecord],
    config: Optional[ShadowValidationConfig] = None,
) -> ShadowValidationReport:
    """Check a retuned history against the promotion requirements.

    Requirements: enough trades, expectancy ratio vs the original,
    drawdown ratio vs the original, enough profitable sessions (each with
    at least 20 trades), and the last two rolling windows both positive.
    """
    config = config or ShadowValidationConfig()

    if original.expectancy != 0:
        expectancy_ratio = retuned.expectancy / abs(original.expectancy)
    else:
        expectancy_ratio = 99.0 if retuned.expectancy > 0 else 0.0

    if original.max_drawdown > 0:
        drawdown_ratio = retuned.max_drawdown / original.max_drawdown
    else:
        drawdown_ratio = 0.0 if retuned.max_drawdown == 0 else 1.0

    profitable_sessions = sum(
        1 for s in compute_breakdown(retuned_trades, lambda t: t.session_label or "unknown")
        if s.trades >= MIN_SESSION_TRADES and s.expectancy > 0
    )

    ordered = sorted(retuned_trades, key=lambda t: t.opened_at or t.closed_at)
    window = config.rolling_window
    rolling = [
        sum(calc_pips(t) for t in ordered[i:i + window]) / window
        for i in range(0, len(ordered) - window + 1, window)
    ]

    fail_reasons = []
    if retuned.total_trades < config.min_trades:
        fail_reasons.append(f"Insufficient trades: {retuned.total_trades} < {config.min_trades}")
    if expectancy_ratio < config.min_expectancy_ratio:
        fail_reasons.append(f"Expectancy ratio {expectancy_ratio:.2f} < {config.min_expectancy_ratio}x")
    if drawdown_ratio > config.max_drawdown_ratio:
        fail_reasons.append(f"DD ratio {drawdown_ratio:.2f} > {config.max_drawdown_ratio:.2f}x")
    if profitable_sessions < config.min_profitable_sessions:
        fail_reasons.append(
            f"Only {profitable_sessions} sessions profitable (need >= {config.min_profitable_sessions})"
        )
    if len(rolling) >= 2 and any(e <= 0 for e in rolling[-2:]):
        fail_reasons.append("Recent rolling window shows negative expectancy")

    return ShadowValidationReport(
        total_trades=retuned.total_trades,
        expectancy_ratio=round(expectancy_ratio, 2),
        drawdown_ratio=round(drawdown_ratio, 2),
        profitable_sessions=profitable_sessions,
        rolling_expectancies=rolling,
        fail_reasons=fail_reasons,
    )


# ============================================================
# STEP 6: PORTFOLIO INTEGRATION
# ============================================================


def _profitable_pairs(scorecard: AgentScorecard) -> Set[str]:
    return {p.key for p in scorecard.pair_breakdown if p.expectancy > 0}


def check_portfolio_integration(
    agent_id: str,
    retuned: AgentScorecard,
    retuned_trades: Sequence[TradeRecord],
    tier_a_scorecards: Sequence[AgentScorecard] = (),
    config: Optional[TierConfig] = None,
) -> PortfolioIntegrationCheck:
    """Score a retuned agent against the current tier-A roster.

    Correlation is the highest Jaccard overlap between the agent's
    profitable pairs and those of any tier-A agent. The agent is eligible
    when that overlap is below portfolio_max_correlation, the
    diversification benefit exceeds the marginal drawdown risk and the
    retuned PF reaches rescue_min_profit_factor.
    """
    config = config or TierConfig()

    env_keys = {
        (t.session_label or "unknown", t.regime_label or "unknown", t.currency_pair, t.direction.value)
        for t in retuned_trades
    }

    pairs = _profitable_pairs(retuned)
    correlation = 0.0
    for tier_a in tier_a_scorecards:
        other = _profitable_pairs(tier_a)
        union = pairs | other
        if union:
            correlation = max(correlation, len(pairs & other) / len(union))
    correlation = round(correlation, 2)

    benefit = max(0.0, 1.0 - correlation)
    risk = min(1.0, retuned.max_drawdown / config.portfolio_drawdown_scale) if retuned.max_drawdown > 0 else 0.0

    if correlation >= config.portfolio_max_correlation:
        eligible = False
        reason = (
            f"Correlation with Tier A too high ({correlation * 100:.0f}% >= "
            f"{config.portfolio_max_correlation * 100:.0f}%)"
        )
    elif benefit <= risk:
        eligible = False
        reason = f"Marginal risk ({risk * 100:.0f}%) exceeds diversification benefit"
    elif retuned.profit_factor < config.rescue_min_profit_factor:
        eligible = False
        reason = f"Retuned PF {retuned.profit_factor:.2f} < {config.rescue_min_profit_factor}"
    else:
        eligible = True
        reason = f"Low Tier A correlation ({correlation * 100:.0f}%), diversification benefit exceeds risk"

    return PortfolioIntegrationCheck(
        agent_id=agent_id,
        env_signature_match=len(env_keys) > 5,
        correlation_with_tier_a=correlation,
        diversification_benefit=round(benefit, 2),
        marginal_risk=round(risk, 2),
        eligible=eligible,
        reason=reason,
    )


# ============================================================
# PIPELINE
# ============================================================


def run_rescue_pipeline(
    agent_id: str,
    trades: Sequence[TradeRecord],
    tier_config: Optional[TierConfig] = None,
    shadow_config: Optional[ShadowValidationConfig] = None,
    logger: Optional[logging.Logger] = None,
    tier_a_scorecards: Sequence[AgentScorecard] = (),
) -> RescueResult:
    """Diagnose, constrain, rescore and validate one agent.

    Args:
        agent_id: Agent identifier
        trades: The agent's closed trades
        tier_config: Tier thresholds
        shadow_config: Shadow validation requirements
        logger: Optional logger
        tier_a_scorecards: Current tier-A roster for the portfolio integration check

    Returns:
        RescueResult

    Raises:
        InsufficientHistoryError: If trades is empty
    """
    tier_config = tier_config or TierConfig()
    if not trades:
        raise InsufficientHistoryError(f"Cannot rescue agent {agent_id} without trade history")

    original = build_agent_scorecard(agent_id, trades, tier_config)
    segments = diagnose_agent(original)
    rules = generate_rescue_rules(segments, trades)

    kept = apply_rules(trades, rules)
    retuned = build_agent_scorecard(agent_id, kept, tier_config, allow_empty=True)
    validation = validate_shadow(original, retuned, kept, shadow_config)

    if not validation.meets_promotion:
        deployment_state = DeploymentState.SHADOW
        deployment_reason = f"Shadow validation failed: {validation.fail_reasons[0]}"
    elif retuned.profit_factor >= REDUCED_LIVE_MIN_PROFIT_FACTOR and retuned.expectancy > REDUCED_LIVE_MIN_EXPECTANCY:
        deployment_state = DeploymentState.REDUCED_LIVE
        deployment_reason = (
            f"Promoted to reduced-live: PF {retuned.profit_factor:.2f}, "
            f"expectancy {retuned.expectancy:+.2f}p/t"
        )
    else:
        deployment_state = DeploymentState.SHADOW
        deployment_reason = (
            f"Retuned metrics insufficient for promotion: PF {retuned.profit_factor:.2f}, "
            f"expectancy {retuned.expectancy:.2f}p/t"
        )

    portfolio = check_portfolio_integration(agent_id, retuned, kept, tier_a_scorecards, tier_config)
    if (
        tier_config.enforce_portfolio_integration
        and not portfolio.eligible
        and deployment_state == DeploymentState.REDUCED_LIVE
    ):
        deployment_state = DeploymentState.SHADOW
        deployment_reason = f"Portfolio integration failed: {portfolio.reason}"

    rule_values = {r.value for r in rules}
    unaddressed_critical = any(s.severity == "critical" and s.key not in rule_values for s in segments)
    rescued = (
        retuned.profit_factor >= tier_config.rescue_min_profit_factor
        and retuned.expectancy > 0
        and validation.meets_promotion
        and not unaddressed_critical
        and (portfolio.eligible or not tier_config.enforce_portfolio_integration)
    )

    if logger:
        logger.info(
            f"Rescue {agent_id}: {len(rules)} rules, removed {len(trades) - len(kept)}/{len(trades)} trades, "
            f"PF {original.profit_factor:.2f} -> {retuned.profit_factor:.2f}, "
            f"{'rescued' if rescued else 'in progress'} ({deployment_state.value})"
        )

    return RescueResult(
        agent_id=agent_id,
        original=original,
        destructive_segments=segments,
        rules=rules,
        retuned=retuned,
        trades_removed=len(trades) - len(kept),
        shadow_validation=validation,
        portfolio=portfolio,
        deployment_state=deployment_state,
        deployment_reason=deployment_reason,
        rescued=rescued,
    )
