"""
Tier Resolver
=============

Single source of truth for each agent's effective tier, constraints and
live size. Consumers read AgentEffectiveState; nobody re-derives tiers
from raw profit factor or expectancy.

Two entry points share one output shape:
- resolve_agent_states_from_stats: pre-aggregated per-agent stats, cheap
- resolve_agent_states: full closed-trade history, runs the rescue pipeline

Effective tiers:
- A: live at reduced size; normal size only after the deployment ladder
  unlocks it
- B-Rescued: short-destructive B agent whose long-only book is healthy
  (reduced live size, LONG-ONLY constraint)
- B-Promotable: B agent already meeting promotion thresholds
- B-Shadow: B agent still validating, zero live size
- B-Legacy: a B state restored without resolution (flagged as a mismatch)
- C / D: restricted / disabled (agents with no closed trades are D)

Design:
- AgentStateStore is injected, never a module global
- One store write per resolution pass; reads are lock-protected copies
- No implicit invalidation: callers clear() or re-resolve explicitly
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from trade_governance.config import EngineConfig, TierConfig
from trade_governance.deployment import deployment_state_for_tier, size_multiplier_for_state
from trade_governance.models import (
    ActiveConstraint,
    AgentBadge,
    AgentEffectiveState,
    AgentMetrics,
    AgentStats,
    AgentTier,
    BadgeType,
    ConstraintType,
    DeploymentState,
    Direction,
    EffectiveTier,
    RescueStatus,
    TradeRecord,
)
from trade_governance.rescue import RescueResult, run_rescue_pipeline
from trade_governance.scorecard import AgentScorecard, build_agent_scorecard, classify_tier
from trade_governance.utils import profit_factor


# Long-only PF fallback denominator when no long losses are known
LONG_LOSS_FLOOR = 0.01

BADGE_TOOLTIPS: Dict[BadgeType, str] = {
    BadgeType.RESCUED: "Agent rescued via constraints. Metrics reflect post-rescue performance.",
    BadgeType.LONG_ONLY: "Short trades blocked: historical shorts destructive",
    BadgeType.SESSION_FILTERED: "Destructive session blocked",
    BadgeType.JPY_BLOCKED: "JPY cross blocked: destructive history",
    BadgeType.PAIR_BLOCKED: "Destructive pair blocked",
    BadgeType.COMPOSITE_RAISED: "Minimum governance composite raised",
    BadgeType.PROMOTABLE: "Meets promotion criteria. Ready for Tier-A promotion test.",
    BadgeType.SHADOW: "Shadow-only execution (no live trades)",
    BadgeType.REDUCED: "Live at reduced size",
    BadgeType.DISABLED: "Agent disabled: no live or shadow execution",
    BadgeType.TIER_A: "Tier A: passes expectancy, PF, session coverage and OOS checks",
    BadgeType.LEGACY: "Historical state, not yet re-resolved",
}


def make_badge(badge_type: BadgeType, label: Optional[str] = None, tooltip: Optional[str] = None) -> AgentBadge:
    return AgentBadge(
        type=badge_type,
        label=label or badge_type.value,
        tooltip=tooltip or BADGE_TOOLTIPS[badge_type],
    )


def badge_for_constraint(constraint: ActiveConstraint) -> Optional[AgentBadge]:
    """Display badge for an active constraint, None when it has no badge."""
    if constraint.type == ConstraintType.BLOCK_DIRECTION:
        if constraint.value == Direction.SHORT.value:
            return make_badge(BadgeType.LONG_ONLY)
        return None
    if constraint.type == ConstraintType.BLOCK_SESSION:
        return make_badge(BadgeType.SESSION_FILTERED, f"NO {constraint.value.upper()}", constraint.label)
    if constraint.type == ConstraintType.BLOCK_PAIR:
        if "JPY" in constraint.value.upper():
            return make_badge(BadgeType.JPY_BLOCKED, tooltip=constraint.label)
        return make_badge(BadgeType.PAIR_BLOCKED, f"NO {constraint.value}", constraint.label)
    return make_badge(BadgeType.COMPOSITE_RAISED, f"MIN {constraint.value}", constraint.label)


# ============================================================
# STATE STORE
# ============================================================


class AgentStateStore:
    """Lock-protected cache of resolved agent states, keyed by agent ID.

    Written once per resolution pass and read many times in between.
    Separate instances are fully isolated.
    """

    def __init__(self):
        self._states: Dict[str, AgentEffectiveState] = {}
        self._rescues: Dict[str, RescueResult] = {}
        self._resolved_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def get(self, agent_id: str) -> Optional[AgentEffectiveState]:
        with self._lock:
            return self._states.get(agent_id)

    def all(self) -> List[AgentEffectiveState]:
        with self._lock:
            return list(self._states.values())

    def rescue_result(self, agent_id: str) -> Optional[RescueResult]:
        with self._lock:
            return self._rescues.get(agent_id)

    def set(self, state: AgentEffectiveState) -> None:
        with self._lock:
            self._states[state.agent_id] = state

    def update(
        self,
        states: Iterable[AgentEffectiveState],
        rescues: Optional[Dict[str, RescueResult]] = None,
    ) -> None:
        """Write a whole resolution pass in one critical section."""
        states = list(states)
        with self._lock:
            for state in states:
                self._states[state.agent_id] = state
            if rescues:
                self._rescues.update(rescues)
            self._resolved_at = datetime.now(timezone.utc)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
            self._rescues.clear()
            self._resolved_at = None

    @property
    def resolved_at(self) -> Optional[datetime]:
        with self._lock:
            return self._resolved_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._states


# ============================================================
# SHARED HELPERS
# ============================================================


def stability_score(metrics: AgentMetrics) -> int:
    """Display-only ranking score, 0-100.

    win rate 30 (full at 60%), expectancy 30 (full at 0.5 pips),
    profit factor 20 (full at 1.5), sample size 20 (full at 500 trades).
    """
    wr = min(1.0, metrics.win_rate / 0.6) * 30
    exp = min(1.0, metrics.expectancy / 0.5) * 30 if metrics.expectancy > 0 else 0.0
    pf = min(1.0, (metrics.profit_factor - 1.0) / 0.5) * 20 if metrics.profit_factor >= 1.0 else 0.0
    size = min(1.0, metrics.trades / 500) * 20
    return max(0, min(100, int(round(wr + exp + pf + size))))


def _finalize_state(
    agent_id: str,
    raw_tier: AgentTier,
    effective_tier: EffectiveTier,
    rescue_status: RescueStatus,
    constraints: List[ActiveConstraint],
    badges: List[AgentBadge],
    raw_metrics: AgentMetrics,
    effective_metrics: AgentMetrics,
    config: EngineConfig,
) -> AgentEffectiveState:
    deployment_state = deployment_state_for_tier(effective_tier)
    size = size_multiplier_for_state(deployment_state, config.deployment)
    if effective_tier == EffectiveTier.A:
        badges = [make_badge(BadgeType.TIER_A), *badges]
    if deployment_state == DeploymentState.SHADOW:
        badges = [*badges, make_badge(BadgeType.SHADOW)]
    elif deployment_state == DeploymentState.REDUCED_LIVE:
        badges = [*badges, make_badge(BadgeType.REDUCED, f"REDUCED {size:.2f}x")]
    elif deployment_state == DeploymentState.DISABLED:
        badges = [*badges, make_badge(BadgeType.DISABLED)]
    if effective_tier == EffectiveTier.B_LEGACY:
        badges = [*badges, make_badge(BadgeType.LEGACY)]

    return AgentEffectiveState(
        agent_id=agent_id,
        raw_tier=raw_tier,
        effective_tier=effective_tier,
        constraints=constraints,
        rescue_status=rescue_status,
        size_multiplier=size,
        deployment_state=deployment_state,
        raw_metrics=raw_metrics,
        effective_metrics=effective_metrics,
        stability_score=stability_score(effective_metrics),
        badges=badges,
        needs_shadow_validation=deployment_state == DeploymentState.SHADOW,
    )


def _non_b_tier(raw_tier: AgentTier) -> EffectiveTier:
    return EffectiveTier(raw_tier.value)


# ============================================================
# LIGHTWEIGHT PATH
# ============================================================


def _stats_metrics(trades: int, wins: int, net: float, pf: float) -> AgentMetrics:
    return AgentMetrics(
        trades=trades,
        win_rate=wins / trades if trades > 0 else 0.0,
        expectancy=net / trades if trades > 0 else 0.0,
        profit_factor=pf,
        net_pips=net,
    )


def _empty_state(agent_id: str, config: EngineConfig) -> AgentEffectiveState:
    metrics = _stats_metrics(0, 0, 0.0, 0.0)
    return _finalize_state(
        agent_id, AgentTier.D, EffectiveTier.D, RescueStatus.NONE,
        [], [], metrics, metrics, config,
    )


def is_short_destructive(stats: AgentStats, config: Optional[TierConfig] = None) -> bool:
    config = config or TierConfig()
    return (
        stats.short_net_pips < config.short_destructive_net_pips
        and stats.short_count > config.short_destructive_min_trades
    )


def long_only_profit_factor(stats: AgentStats, config: Optional[TierConfig] = None) -> float:
    """Long-side PF from long gross fields, approximated from long net when they are absent."""
    config = config or TierConfig()
    if stats.long_gross_profit is not None and stats.long_gross_loss is not None:
        return profit_factor(stats.long_gross_profit, stats.long_gross_loss, config.profit_factor_sentinel)
    gross_profit = max(0.0, stats.long_net_pips)
    gross_loss = max(0.0, -stats.long_net_pips) or LONG_LOSS_FLOOR
    return gross_profit / gross_loss


def classify_stats_tier(stats: AgentStats, config: Optional[TierConfig] = None) -> AgentTier:
    """Raw tier from aggregates, with proxies for session coverage and OOS."""
    config = config or TierConfig()
    metrics = _stats_metrics(
        stats.total_trades,
        stats.win_count,
        stats.net_pips,
        profit_factor(stats.gross_profit, stats.gross_loss, config.profit_factor_sentinel),
    )
    if metrics.expectancy > 0:
        coverage = 4
    elif metrics.expectancy > -0.5:
        coverage = 2
    else:
        coverage = 1
    oos_holds = metrics.expectancy > 0 and metrics.profit_factor >= config.oos_min_profit_factor
    return classify_tier(metrics.expectancy, metrics.profit_factor, metrics.net_pips, coverage, oos_holds, config)


def resolve_agent_state_from_stats(stats: AgentStats, config: Optional[EngineConfig] = None) -> AgentEffectiveState:
    """Resolve one agent from aggregates."""
    config = config or EngineConfig()
    if stats.total_trades == 0:
        return _empty_state(stats.agent_id, config)
    tier_cfg = config.tiers

    raw_tier = classify_stats_tier(stats, tier_cfg)
    raw_metrics = _stats_metrics(
        stats.total_trades,
        stats.win_count,
        stats.net_pips,
        profit_factor(stats.gross_profit, stats.gross_loss, tier_cfg.profit_factor_sentinel),
    )

    constraints: List[ActiveConstraint] = []
    badges: List[AgentBadge] = []
    effective_metrics = raw_metrics
    rescue_status = RescueStatus.NONE

    if raw_tier != AgentTier.B:
        return _finalize_state(
            stats.agent_id, raw_tier, _non_b_tier(raw_tier), rescue_status,
            constraints, badges, raw_metrics, effective_metrics, config,
        )

    destructive = is_short_destructive(stats, tier_cfg)
    long_only = destructive or (stats.short_count == 0 and stats.long_count > tier_cfg.short_destructive_min_trades)
    if long_only:
        constraints.append(
            ActiveConstraint(type=ConstraintType.BLOCK_DIRECTION, value=Direction.SHORT.value, label="Block SHORT direction")
        )
        badges.append(badge_for_constraint(constraints[-1]))

    if destructive:
        effective_metrics = _stats_metrics(
            stats.long_count, stats.long_wins, stats.long_net_pips, long_only_profit_factor(stats, tier_cfg)
        )
        if effective_metrics.expectancy > 0 and effective_metrics.profit_factor >= tier_cfg.rescue_min_profit_factor:
            effective_tier, rescue_status = EffectiveTier.B_RESCUED, RescueStatus.STABILIZED
            badges.append(make_badge(BadgeType.RESCUED))
        else:
            effective_tier, rescue_status = EffectiveTier.B_SHADOW, RescueStatus.IN_PROGRESS
    elif raw_metrics.expectancy > 0 and raw_metrics.profit_factor >= tier_cfg.promotion_min_profit_factor:
        effective_tier, rescue_status = EffectiveTier.B_PROMOTABLE, RescueStatus.PROMOTABLE
        badges.append(make_badge(BadgeType.PROMOTABLE))
    else:
        effective_tier, rescue_status = EffectiveTier.B_SHADOW, RescueStatus.IN_PROGRESS

    return _finalize_state(
        stats.agent_id, raw_tier, effective_tier, rescue_status,
        constraints, badges, raw_metrics, effective_metrics, config,
    )


def resolve_agent_states_from_stats(
    stats: Sequence[AgentStats],
    config: Optional[EngineConfig] = None,
    store: Optional[AgentStateStore] = None,
    logger: Optional[logging.Logger] = None,
) -> List[AgentEffectiveState]:
    """Resolve every agent from pre-aggregated stats.

    Args:
        stats: One AgentStats per agent
        config: Engine configuration
        store: State store to write the pass into, if any
        logger: Optional logger

    Returns:
        Resolved states, in input order (agents with no trades as tier D)
    """
    config = config or EngineConfig()
    states = []
    for s in stats:
        if s.total_trades == 0 and logger:
            logger.info(f"Agent {s.agent_id} has no closed trades, resolving as tier D")
        states.append(resolve_agent_state_from_stats(s, config))

    if store is not None:
        store.update(states)
    if logger:
        logger.info(f"Resolved {len(states)} agent states from stats: {_tier_summary(states)}")
    return states


# ============================================================
# HEAVY PATH
# ============================================================


def _rescue_constraints(result: RescueResult) -> Tuple[List[ActiveConstraint], List[AgentBadge]]:
    constraints = [ActiveConstraint(type=r.type, value=r.value, label=r.label) for r in result.rules]
    badges = [b for b in (badge_for_constraint(c) for c in constraints) if b is not None]
    return constraints, badges


def _resolve_rescued(
    agent_id: str,
    trades: Sequence[TradeRecord],
    raw_metrics: AgentMetrics,
    config: EngineConfig,
    logger: Optional[logging.Logger],
    tier_a_scorecards: Sequence[AgentScorecard] = (),
) -> Tuple[AgentEffectiveState, RescueResult]:
    tier_cfg = config.tiers
    result = run_rescue_pipeline(agent_id, trades, tier_cfg, config.shadow, logger, tier_a_scorecards)
    constraints, badges = _rescue_constraints(result)

    retuned = result.retuned
    effective_metrics = retuned.to_metrics()

    if result.rescued:
        promotable = (
            result.shadow_validation.meets_promotion
            and retuned.profit_factor >= tier_cfg.heavy_promotion_min_profit_factor
            and retuned.expectancy > tier_cfg.heavy_promotion_min_expectancy
        )
        if promotable:
            effective_tier, status = EffectiveTier.B_PROMOTABLE, RescueStatus.PROMOTABLE
            badges.append(make_badge(BadgeType.PROMOTABLE))
        else:
            effective_tier, status = EffectiveTier.B_RESCUED, RescueStatus.STABILIZED
            badges.append(make_badge(BadgeType.RESCUED))
    else:
        effective_tier, status = EffectiveTier.B_SHADOW, RescueStatus.IN_PROGRESS

    state = _finalize_state(
        agent_id, AgentTier.B, effective_tier, status,
        constraints, badges, raw_metrics, effective_metrics, config,
    )
    return state, result


def resolve_agent_states(
    trades: Iterable[TradeRecord],
    config: Optional[EngineConfig] = None,
    store: Optional[AgentStateStore] = None,
    logger: Optional[logging.Logger] = None,
) -> List[AgentEffectiveState]:
    """Resolve every agent from full closed-trade history.

    Raw tiers come from the agent scorecards. Every B agent runs through
    the rescue pipeline, checked against the tier-A scorecards of the same
    pass; its rules become active constraints and the retuned scorecard
    becomes its effective metrics.

    Args:
        trades: Closed trades for any number of agents
        config: Engine configuration
        store: State store to write the pass (and rescue results) into
        logger: Optional logger

    Returns:
        Resolved states, ordered by agent ID
    """
    config = config or EngineConfig()

    by_agent: Dict[str, List[TradeRecord]] = defaultdict(list)
    for trade in trades:
        by_agent[trade.agent_id].append(trade)
    states: List[AgentEffectiveState] = []
    rescues: Dict[str, RescueResult] = {}
    scorecards = {
        agent_id: build_agent_scorecard(agent_id, by_agent[agent_id], config.tiers)
        for agent_id in sorted(by_agent)
    }
    tier_a = [card for card in scorecards.values() if card.tier == AgentTier.A]

    for agent_id, scorecard in scorecards.items():
        raw_metrics = scorecard.to_metrics()

        if scorecard.tier == AgentTier.B:
            state, rescue = _resolve_rescued(agent_id, by_agent[agent_id], raw_metrics, config, logger, tier_a)
            rescues[agent_id] = rescue
        else:
            state = _finalize_state(
                agent_id, scorecard.tier, _non_b_tier(scorecard.tier), RescueStatus.NONE,
                [], [], raw_metrics, raw_metrics, config,
            )
        states.append(state)

    if store is not None:
        store.update(states, rescues)
    if logger:
        logger.info(f"Resolved {len(states)} agent states from trades: {_tier_summary(states)}")
    return states


# ============================================================
# CONSISTENCY
# ============================================================


def has_legacy_state_mismatch(store: AgentStateStore) -> bool:
    """True when any cached raw-B agent still carries the unresolved B-Legacy tier."""
    return any(
        s.raw_tier == AgentTier.B and s.effective_tier == EffectiveTier.B_LEGACY
        for s in store.all()
    )


def _tier_summary(states: Sequence[AgentEffectiveState]) -> str:
    counts: Dict[str, int] = defaultdict(int)
    for s in states:
        counts[s.effective_tier.value] += 1
    return ", ".join(f"{tier}={n}" for tier, n in sorted(counts.items())) or "none"
