"""
Agent Deployment Ladder
=======================

Per-agent execution permission: shadow -> reduced-live -> normal-live,
plus disabled. Controls agent-level sizing only; never touches gate
multipliers.

Unlock criteria (per rung):
- shadow -> reduced-live: 150 shadow trades, expectancy ratio >= 1.3,
  drawdown ratio <= 0.70, 3 profitable sessions, 7 days without drift
- reduced-live -> normal-live: 300 / 1.2 / 0.60 / 4 / 14

Size multipliers: reduced-live 0.35, normal-live 1.0, shadow and
disabled 0.

Deployment records are owned and persisted by the caller; every
function here returns a new record instead of mutating one.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from trade_governance.config import DeploymentConfig
from trade_governance.models import DeploymentState, EffectiveTier


class StateChange(BaseModel):
    state: DeploymentState
    at: datetime
    reason: str

    model_config = {"frozen": True}


class DeploymentRecord(BaseModel):
    """Deployment progress for one agent.

    Attributes:
        expectancy_ratio: shadow_expectancy / baseline_expectancy, only
            recomputed while the baseline is positive
        drawdown_ratio: Shadow drawdown relative to the baseline drawdown
        days_without_drift: Consecutive days with no edge drift alarm
    """

    agent_id: str
    state: DeploymentState = DeploymentState.SHADOW
    shadow_trades: int = Field(default=0, ge=0)
    shadow_expectancy: float = 0.0
    baseline_expectancy: float = 0.0
    expectancy_ratio: float = 0.0
    drawdown_ratio: float = 1.0
    profitable_sessions: int = Field(default=0, ge=0)
    days_without_drift: int = Field(default=0, ge=0)
    history: List[StateChange] = Field(default_factory=list)

    model_config = {"frozen": True}


class UnlockCheck(BaseModel):
    can_unlock: bool
    next_state: Optional[DeploymentState] = None
    met_criteria: List[str] = Field(default_factory=list)
    unmet_criteria: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class ExecutionPermission(BaseModel):
    can_execute: bool
    size_multiplier: float = Field(ge=0.0)
    reason: str

    model_config = {"frozen": True}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_deployment_record(agent_id: str, state: DeploymentState = DeploymentState.SHADOW, reason: str = "initial") -> DeploymentRecord:
    return DeploymentRecord(
        agent_id=agent_id,
        state=state,
        history=[StateChange(state=state, at=_utcnow(), reason=reason)],
    )


def transition(
    record: DeploymentRecord,
    new_state: DeploymentState,
    reason: str,
    logger: Optional[logging.Logger] = None,
) -> DeploymentRecord:
    """Move a record to new_state, appending to its history."""
    if logger:
        logger.info(f"Deployment {record.agent_id}: {record.state.value} -> {new_state.value} ({reason})")
    return record.model_copy(update={
        "state": new_state,
        "history": [*record.history, StateChange(state=new_state, at=_utcnow(), reason=reason)],
    })


def update_deployment_metrics(
    record: DeploymentRecord,
    shadow_trades: Optional[int] = None,
    shadow_expectancy: Optional[float] = None,
    baseline_expectancy: Optional[float] = None,
    drawdown_ratio: Optional[float] = None,
    profitable_sessions: Optional[int] = None,
    days_without_drift: Optional[int] = None,
) -> DeploymentRecord:
    """Merge new shadow metrics; expectancy_ratio only moves while the baseline is positive."""
    updates = {
        name: value
        for name, value in (
            ("shadow_trades", shadow_trades),
            ("shadow_expectancy", shadow_expectancy),
            ("baseline_expectancy", baseline_expectancy),
            ("drawdown_ratio", drawdown_ratio),
            ("profitable_sessions", profitable_sessions),
            ("days_without_drift", days_without_drift),
        )
        if value is not None
    }
    merged = record.model_copy(update=updates)
    if merged.baseline_expectancy > 0:
        merged = merged.model_copy(
            update={"expectancy_ratio": merged.shadow_expectancy / merged.baseline_expectancy}
        )
    return merged


def _criterion(
    met: List[str],
    unmet: List[str],
    label: str,
    ok: bool,
    value: str,
    op_ok: str,
    op_fail: str,
    bound: str,
) -> None:
    if ok:
        met.append(f"{label}: {value} {op_ok} {bound}")
    else:
        unmet.append(f"{label}: {value} {op_fail} {bound}")


def check_unlock(record: DeploymentRecord, config: Optional[DeploymentConfig] = None) -> UnlockCheck:
    """Whether the agent may climb to the next rung.

    Args:
        record: Current deployment record
        config: Unlock criteria

    Returns:
        UnlockCheck listing met and unmet criteria
    """
    config = config or DeploymentConfig()

    if record.state == DeploymentState.DISABLED:
        return UnlockCheck(can_unlock=False, unmet_criteria=["Agent is disabled"])
    if record.state == DeploymentState.NORMAL_LIVE:
        return UnlockCheck(can_unlock=False, met_criteria=["Already at normal-live"])

    if record.state == DeploymentState.SHADOW:
        criteria, next_state = config.shadow_to_reduced, DeploymentState.REDUCED_LIVE
    else:
        criteria, next_state = config.reduced_to_normal, DeploymentState.NORMAL_LIVE

    met: List[str] = []
    unmet: List[str] = []
    _criterion(met, unmet, "Shadow trades", record.shadow_trades >= criteria.min_trades,
               str(record.shadow_trades), ">=", "<", str(criteria.min_trades))
    _criterion(met, unmet, "Expectancy ratio", record.expectancy_ratio >= criteria.min_expectancy_ratio,
               f"{record.expectancy_ratio:.2f}", ">=", "<", f"{criteria.min_expectancy_ratio}")
    _criterion(met, unmet, "DD ratio", record.drawdown_ratio <= criteria.max_drawdown_ratio,
               f"{record.drawdown_ratio:.2f}", "<=", ">", f"{criteria.max_drawdown_ratio}")
    _criterion(met, unmet, "Sessions profitable", record.profitable_sessions >= criteria.min_profitable_sessions,
               str(record.profitable_sessions), ">=", "<", str(criteria.min_profitable_sessions))
    _criterion(met, unmet, "Days without drift", record.days_without_drift >= criteria.min_days,
               str(record.days_without_drift), ">=", "<", str(criteria.min_days))

    return UnlockCheck(
        can_unlock=not unmet,
        next_state=next_state,
        met_criteria=met,
        unmet_criteria=unmet,
    )


def try_unlock(
    record: DeploymentRecord,
    config: Optional[DeploymentConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> Tuple[DeploymentRecord, UnlockCheck]:
    """Promote the record one rung when every criterion is met."""
    check = check_unlock(record, config)
    if check.can_unlock and check.next_state is not None:
        record = transition(record, check.next_state, "Unlock criteria met", logger)
    return record, check


def size_multiplier_for_state(state: DeploymentState, config: Optional[DeploymentConfig] = None) -> float:
    config = config or DeploymentConfig()
    if state == DeploymentState.REDUCED_LIVE:
        return config.reduced_size_multiplier
    if state == DeploymentState.NORMAL_LIVE:
        return config.normal_size_multiplier
    return 0.0


def execution_permission(
    agent_id: str,
    state: DeploymentState,
    config: Optional[DeploymentConfig] = None,
) -> ExecutionPermission:
    config = config or DeploymentConfig()
    size = size_multiplier_for_state(state, config)

    if state == DeploymentState.DISABLED:
        reason = f"Agent {agent_id} disabled"
    elif state == DeploymentState.SHADOW:
        reason = f"Agent {agent_id} in shadow-only mode"
    elif state == DeploymentState.REDUCED_LIVE:
        reason = f"Agent {agent_id} at reduced size ({size:g}x)"
    else:
        reason = f"Agent {agent_id} at normal size"

    return ExecutionPermission(can_execute=size > 0, size_multiplier=size, reason=reason)


# Effective tier -> deployment rung. Normal-live is reached only through try_unlock.
_TIER_DEPLOYMENT = {
    EffectiveTier.A: DeploymentState.REDUCED_LIVE,
    EffectiveTier.B_RESCUED: DeploymentState.REDUCED_LIVE,
    EffectiveTier.B_PROMOTABLE: DeploymentState.REDUCED_LIVE,
    EffectiveTier.B_SHADOW: DeploymentState.SHADOW,
    EffectiveTier.B_LEGACY: DeploymentState.SHADOW,
    EffectiveTier.C: DeploymentState.SHADOW,
    EffectiveTier.D: DeploymentState.DISABLED,
}


def deployment_state_for_tier(tier: EffectiveTier) -> DeploymentState:
    return _TIER_DEPLOYMENT[EffectiveTier(tier)]
