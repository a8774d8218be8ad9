"""
Trade Governance Orchestration
==============================

Main entry point for a single proposal.

run_governance_cycle() runs the pre-trade pipeline:
1. Evaluate admission gates
2. Route the proposal to an engine
3. Assert router integrity
4. Look up the proposing agent's resolved tier state
5. Build the execution decision (authorization, stops, sizing)

Design:
- Single entry point per proposal
- Deterministic given the same inputs and store contents
- Gate failures come back as data; only integrity and configuration
  errors raise
"""

import logging
from typing import Optional

from pydantic import BaseModel

from trade_governance.config import EngineConfig
from trade_governance.execution import build_execution_decision
from trade_governance.gates import evaluate_trade_proposal
from trade_governance.models import (
    AgentEffectiveState,
    ExecutionDecision,
    GateResult,
    GovernanceContext,
    RouteDecision,
    TradeProposal,
)
from trade_governance.router import assert_router_integrity, route_trade
from trade_governance.tiers import AgentStateStore


class GovernanceCycleResult(BaseModel):
    """Everything decided for one proposal."""

    proposal: TradeProposal
    gate_result: GateResult
    route: RouteDecision
    agent_state: Optional[AgentEffectiveState] = None
    execution: ExecutionDecision

    @property
    def permitted(self) -> bool:
        return self.execution.permitted

    @property
    def final_position_multiplier(self) -> float:
        return self.execution.final_position_multiplier

    model_config = {"frozen": True}


def run_governance_cycle(
    proposal: TradeProposal,
    ctx: GovernanceContext,
    survivorship_score: float,
    config: Optional[EngineConfig] = None,
    store: Optional[AgentStateStore] = None,
    logger: Optional[logging.Logger] = None,
) -> GovernanceCycleResult:
    """Run gates, routing and execution sizing for one proposal.

    Args:
        proposal: Candidate trade
        ctx: Governance context for the proposal's pair
        survivorship_score: 0-100 edge persistence score for the setup
        config: Engine configuration (defaults when None)
        store: Resolved agent states; agent feedback is skipped when None
            or when the agent has no cached state
        logger: Optional logger

    Returns:
        GovernanceCycleResult

    Raises:
        RouterIntegrityError: If routing pairs the direction with the
            opposite engine

    Example:
        >>> result = run_governance_cycle(proposal, ctx, survivorship_score=70)
        >>> if result.permitted:
        ...     size = base_units * result.final_position_multiplier
    """
    config = config or EngineConfig()

    if logger:
        logger.info(
            f"Governance cycle: {proposal.pair} {proposal.direction.value} "
            f"(agent {proposal.agent_id or 'unknown'})"
        )

    gate_result = evaluate_trade_proposal(proposal, ctx, config.gates)

    route = route_trade(proposal.direction, proposal.pair, proposal.agent_id, config.router)
    assert_router_integrity(route)

    agent_state = None
    if store is not None and proposal.agent_id:
        agent_state = store.get(proposal.agent_id)
        if agent_state is None and logger:
            logger.debug(f"No resolved state for agent {proposal.agent_id}, sizing without tier feedback")

    execution = build_execution_decision(
        proposal,
        ctx,
        gate_result,
        survivorship_score,
        config=config.router,
        agent_state=agent_state,
        route=route,
        logger=logger,
    )

    if logger:
        logger.info(
            f"Governance cycle complete: gate={gate_result.decision.value}, "
            f"engine={route.engine.value}, permitted={execution.permitted}, "
            f"multiplier={execution.final_position_multiplier:.3f}"
        )

    return GovernanceCycleResult(
        proposal=proposal,
        gate_result=gate_result,
        route=route,
        agent_state=agent_state,
        execution=execution,
    )
