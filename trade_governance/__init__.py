"""
Trade Governance & Risk Adaptation Engine
=========================================

Deterministic pre-trade and post-entry governance for FX proposals.

This package provides pure, auditable functions for:
- Admitting or rejecting trade proposals through named gates
- Routing long and short proposals to their engines and sizing them
- Re-scoring the health of open positions
- Resolving per-agent tiers, rescue constraints and live size
- Hysteretic ensemble rollback

Design Principles:
- Pure functions: explicit inputs and outputs, no hidden I/O
- Strong typing: Pydantic models with runtime validation
- Deterministic: same inputs always produce the same decision
- Gate failures are data; only integrity and config errors raise
- Mutable state (agent store, rollback flag) is injected by the caller

Entry Points:
    run_governance_cycle() - gates + routing + execution for one proposal
    compute_trade_health() - health of one open position
    resolve_agent_states() / resolve_agent_states_from_stats() - tier resolution
    RollbackMonitor - ensemble rollback hysteresis

Key Modules:
    gates - Admission gate evaluator
    router / execution - Directional execution router
    health - Post-entry health monitor
    tiers / rescue / scorecard / deployment / shadow - Tier resolver
    rollback - Ensemble rollback
    config - Configuration models and loader
    exceptions - Domain-specific exceptions
"""

from trade_governance.config import (
    DeploymentConfig,
    EngineConfig,
    GateConfig,
    HealthConfig,
    RollbackConfig,
    RouterConfig,
    ShadowValidationConfig,
    ShortShadowConfig,
    ShortStopConfig,
    TierConfig,
    load_engine_config,
)
from trade_governance.deployment import (
    DeploymentRecord,
    UnlockCheck,
    check_unlock,
    deployment_state_for_tier,
    execution_permission,
)
from trade_governance.engine import GovernanceCycleResult, run_governance_cycle
from trade_governance.exceptions import (
    ConfigurationError,
    InsufficientHistoryError,
    RouterIntegrityError,
    TradeGovernanceError,
)
from trade_governance.execution import build_execution_decision
from trade_governance.gates import (
    compute_governance_stats,
    evaluate_trade_proposal,
    validate_unit_consistency,
)
from trade_governance.health import compute_trade_health
from trade_governance.models import (
    AgentEffectiveState,
    AgentStats,
    Direction,
    EffectiveTier,
    ExecutionDecision,
    GateResult,
    GovernanceContext,
    GovernanceDecision,
    HealthBand,
    LiquiditySession,
    TradeHealthInput,
    TradeHealthResult,
    TradeProposal,
    TradeRecord,
    VolatilityPhase,
)
from trade_governance.rescue import check_portfolio_integration, run_rescue_pipeline
from trade_governance.rollback import RollbackMonitor
from trade_governance.router import classify_short_regime, route_trade, validate_router_integrity
from trade_governance.scorecard import build_agent_scorecard
from trade_governance.shadow import compute_snapback_survival, evaluate_short_shadow
from trade_governance.tiers import (
    AgentStateStore,
    has_legacy_state_mismatch,
    resolve_agent_states,
    resolve_agent_states_from_stats,
)

__version__ = "1.0.0"
__all__ = [
    # Main entry points
    "run_governance_cycle",
    "GovernanceCycleResult",
    "compute_trade_health",
    "resolve_agent_states",
    "resolve_agent_states_from_stats",
    "RollbackMonitor",
    # Admission
    "evaluate_trade_proposal",
    "compute_governance_stats",
    "validate_unit_consistency",
    # Execution router
    "route_trade",
    "validate_router_integrity",
    "classify_short_regime",
    "build_execution_decision",
    # Tier resolver
    "AgentStateStore",
    "has_legacy_state_mismatch",
    "build_agent_scorecard",
    "run_rescue_pipeline",
    "check_portfolio_integration",
    "evaluate_short_shadow",
    "compute_snapback_survival",
    "DeploymentRecord",
    "UnlockCheck",
    "check_unlock",
    "deployment_state_for_tier",
    "execution_permission",
    # Models
    "TradeProposal",
    "GovernanceContext",
    "GateResult",
    "ExecutionDecision",
    "TradeHealthInput",
    "TradeHealthResult",
    "TradeRecord",
    "AgentStats",
    "AgentEffectiveState",
    "Direction",
    "EffectiveTier",
    "GovernanceDecision",
    "HealthBand",
    "LiquiditySession",
    "VolatilityPhase",
    # Configuration
    "EngineConfig",
    "GateConfig",
    "RouterConfig",
    "ShortStopConfig",
    "HealthConfig",
    "TierConfig",
    "RollbackConfig",
    "ShadowValidationConfig",
    "ShortShadowConfig",
    "DeploymentConfig",
    "load_engine_config",
    # Exceptions
    "TradeGovernanceError",
    "ConfigurationError",
    "RouterIntegrityError",
    "InsufficientHistoryError",
]
