"""
Directional Execution Router
=============================

Turns a gate outcome into a per-direction ExecutionDecision.

A decision is permitted only when every stage passes:
1. Admission gate not rejected
2. Pair authorization (routing + agent constraints)
3. Regime authorization
4. Entry validation (all required checks)
5. Session not suppressed (priority table, short session windows, agent blocks)
6. Safety checks (spread threshold, liquidity confirmation, slippage tolerance)
7. Non-zero capital after survivorship, agent feedback and throttle

Any failure appends a block reason and zeroes the final multiplier.
Router integrity is asserted before anything else; a mismatch raises.
"""

import logging
from typing import List, Optional

from trade_governance.config import RouterConfig
from trade_governance.entry_validation import validate_entry
from trade_governance.models import (
    AgentEffectiveState,
    Direction,
    ExecutionDecision,
    ExecutionEngine,
    GateResult,
    GovernanceContext,
    GovernanceDecision,
    RouteDecision,
    SafetyCheck,
    SessionPriority,
    TradeProposal,
)
from trade_governance.position_sizing import (
    apply_capital_adjustments,
    compute_capital_multiplier,
    compute_final_position_multiplier,
    compute_session_multiplier,
    session_priority,
)
from trade_governance.router import assert_router_integrity, authorize_regime, route_trade
from trade_governance.stop_geometry import compute_stop_geometry
from trade_governance.utils import pip_multiplier


def run_safety_checks(
    pair: str,
    ctx: GovernanceContext,
    config: Optional[RouterConfig] = None,
) -> List[SafetyCheck]:
    """Spread threshold, liquidity confirmation and slippage tolerance."""
    config = config or RouterConfig()
    mult = pip_multiplier(pair)
    spread_pips = ctx.current_spread * mult
    slippage_pips = ctx.slippage_estimate * mult

    return [
        SafetyCheck(
            name="spread_threshold",
            passed=0.0 <= spread_pips <= config.max_spread_pips,
            detail=f"Spread {spread_pips:.2f} pips (max {config.max_spread_pips:g})",
        ),
        SafetyCheck(
            name="liquidity_confirmation",
            passed=ctx.price_data_available and ctx.liquidity_shock_prob <= config.max_liquidity_shock,
            detail=f"Shock probability {ctx.liquidity_shock_prob:.0f}% (max {config.max_liquidity_shock:g}%)",
        ),
        SafetyCheck(
            name="slippage_tolerance",
            passed=slippage_pips <= config.max_slippage_pips,
            detail=f"Slippage {slippage_pips:.2f} pips (max {config.max_slippage_pips:g})",
        ),
    ]


def _session_block_reason(
    proposal: TradeProposal,
    ctx: GovernanceContext,
    config: RouterConfig,
    agent_state: Optional[AgentEffectiveState],
) -> Optional[str]:
    session = ctx.current_session
    direction = proposal.direction
    if session_priority(direction, session, config) == SessionPriority.SUPPRESSED:
        return f"Session {session.value} suppressed for {direction.value} trades"
    if direction == Direction.SHORT:
        allowed = config.short_allowed_sessions.get(proposal.pair, [])
        if session not in allowed:
            return f"Session {session.value} not allowed for {proposal.pair} shorts"

    if agent_state is not None and session.value in agent_state.blocked_sessions:
        return f"Session {session.value} blocked for agent {agent_state.agent_id}"
    return None


def _agent_block_reasons(proposal: TradeProposal, agent_state: Optional[AgentEffectiveState]) -> List[str]:
    if agent_state is None:
        return []
    reasons = []
    if proposal.direction.value in agent_state.blocked_directions:
        reasons.append(f"Direction {proposal.direction.value} blocked for agent {agent_state.agent_id}")
    if proposal.pair in agent_state.blocked_pairs:
        reasons.append(f"Pair {proposal.pair} blocked for agent {agent_state.agent_id}")
    return reasons


def build_execution_decision(
    proposal: TradeProposal,
    ctx: GovernanceContext,
    gate_result: GateResult,
    survivorship_score: float,
    config: Optional[RouterConfig] = None,
    agent_state: Optional[AgentEffectiveState] = None,
    route: Optional[RouteDecision] = None,
    logger: Optional[logging.Logger] = None,
) -> ExecutionDecision:
    """Build the execution verdict for one proposal.

    Args:
        proposal: Candidate trade
        ctx: Governance context
        gate_result: Output of evaluate_trade_proposal for this proposal
        survivorship_score: 0-100 edge persistence score
        config: Router configuration
        agent_state: Resolved tier state for the proposing agent, if any
        route: Precomputed routing decision (computed when None)
        logger: Optional logger

    Returns:
        ExecutionDecision

    Raises:
        RouterIntegrityError: If the routing decision pairs the direction
            with the opposite engine
    """
    config = config or RouterConfig()
    direction = proposal.direction

    if route is None:
        route = route_trade(direction, proposal.pair, proposal.agent_id, config)
    if route.direction != direction:
        raise ValueError(f"Route direction {route.direction.value} does not match proposal {direction.value}")
    assert_router_integrity(route)

    block_reasons: List[str] = []

    # 1. Admission
    if gate_result.decision == GovernanceDecision.REJECTED:
        block_reasons.append(f"Gate rejected: {', '.join(gate_result.gate_ids)}")

    # 2. Pair authorization
    if route.engine == ExecutionEngine.BLOCKED:
        block_reasons.append(route.reason)
    elif direction == Direction.SHORT and config.short_shadow_only:
        block_reasons.append("Short engine in shadow-only mode")
    block_reasons.extend(_agent_block_reasons(proposal, agent_state))

    # 3. Regime authorization
    regime_authorized, regime_reason = authorize_regime(direction, ctx)
    if not regime_authorized:
        block_reasons.append(regime_reason)

    # 4. Entry validation
    entry_validation = validate_entry(direction, ctx)
    if not entry_validation.passed:
        failed = ", ".join(c.name for c in entry_validation.failed_required)
        block_reasons.append(f"Entry validation failed: {failed}")

    # 5. Session
    session_reason = _session_block_reason(proposal, ctx, config, agent_state)
    if session_reason:
        block_reasons.append(session_reason)

    # 6. Safety checks
    safety_checks = run_safety_checks(proposal.pair, ctx, config)
    for check in safety_checks:
        if not check.passed:
            block_reasons.append(f"Safety check failed: {check.name} ({check.detail})")

    # 7. Sizing
    base_capital = compute_capital_multiplier(survivorship_score, direction, config)
    if base_capital <= 0:
        block_reasons.append(f"Survivorship {survivorship_score:.0f} below capital floor")

    agent_size = agent_state.size_multiplier if agent_state is not None else 1.0
    capital = apply_capital_adjustments(
        base_capital,
        direction,
        agent_size_multiplier=agent_size,
        throttled=gate_result.decision == GovernanceDecision.THROTTLED,
        config=config,
        logger=logger,
    )
    if base_capital > 0 and capital <= 0:
        block_reasons.append(
            f"Agent {agent_state.agent_id} has zero live size ({agent_state.effective_tier.value})"
            if agent_state is not None else "Capital multiplier is zero"
        )

    session_mult = compute_session_multiplier(direction, ctx.current_session, config)
    stop_geometry = compute_stop_geometry(direction, ctx, config)

    final = 0.0
    if not block_reasons:
        final = compute_final_position_multiplier(capital, session_mult, survivorship_score, config)
        if final <= 0:
            block_reasons.append("Final position multiplier is zero")
            final = 0.0

    permitted = not block_reasons

    if logger:
        if permitted:
            logger.info(
                f"{proposal.pair} {direction.value} permitted via {route.engine.value}: "
                f"final multiplier {final:.3f}"
            )
        else:
            logger.info(f"{proposal.pair} {direction.value} blocked: {'; '.join(block_reasons)}")

    return ExecutionDecision(
        direction=direction,
        pair=proposal.pair,
        engine=route.engine,
        permitted=permitted,
        block_reasons=block_reasons,
        regime_authorized=regime_authorized,
        entry_validation=entry_validation,
        stop_geometry=stop_geometry,
        capital_multiplier=capital,
        session_multiplier=session_mult,
        safety_checks=safety_checks,
        final_position_multiplier=final,
    )
