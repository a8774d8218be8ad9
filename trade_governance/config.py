"""
Trade Governance Configuration
===============================

Frozen pydantic configuration models, one per component, aggregated into
EngineConfig. Every threshold the engine uses lives here so operators can
tune it without touching decision code.

Configuration can be loaded from a JSON file:

    config = load_engine_config("governance.json")

When no path is given, TRADE_GOVERNANCE_CONFIG (read from the process
environment or a .env file) names the file. A missing file yields the
defaults; a malformed one raises ConfigurationError.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from trade_governance.exceptions import ConfigurationError
from trade_governance.models import LiquiditySession, SessionPriority
from trade_governance.utils import normalize_pair


CONFIG_ENV_VAR = "TRADE_GOVERNANCE_CONFIG"

_FROZEN = ConfigDict(frozen=True, extra="forbid")


class GateConfig(BaseModel):
    """Admission gate thresholds."""

    model_config = _FROZEN

    min_friction_ratio: float = Field(default=3.0, gt=0.0, description="G1 fires below this friction ratio")
    min_alignment_without_htf: float = Field(default=35.0, ge=0.0, le=100.0)
    max_edge_decay_rate: float = Field(default=20.0, ge=0.0)
    min_spread_stability: float = Field(default=30.0, ge=0.0, le=100.0)
    min_session_aggressiveness: float = Field(default=30.0, ge=0.0, le=100.0)
    min_loss_cluster_alignment: float = Field(default=55.0, ge=0.0, le=100.0)
    max_liquidity_shock: float = Field(default=70.0, ge=0.0, le=100.0)

    win_probability_floor: float = Field(default=0.30, ge=0.30, le=0.88)
    win_probability_ceiling: float = Field(default=0.88, ge=0.30, le=0.88)

    enforce_unit_consistency: bool = Field(
        default=False,
        description="Add G11_INFRA_UNIT_MISMATCH as a soft gate when units disagree",
    )
    friction_ratio_bounds: Tuple[float, float] = (0.5, 50.0)
    friction_tolerance: float = Field(default=1e-6, gt=0.0)

    @model_validator(mode="after")
    def validate_probability_band(self) -> "GateConfig":
        if self.win_probability_floor >= self.win_probability_ceiling:
            raise ValueError("win_probability_floor must be below win_probability_ceiling")
        return self


class ShortStopConfig(BaseModel):
    """Short stop geometry.

    Phase A: no shrink for no_shrink_candles, so the post-break snapback
    cannot stop the trade out. Phase B: trail only once MFE reaches
    trail_activation_mfe_multiple of the initial risk.
    """

    model_config = _FROZEN

    initial_stop_atr_multiplier: float = Field(default=1.5, gt=0.0)
    initial_stop_spread_multiplier: float = Field(default=3.0, gt=0.0)
    swing_high_buffer_pips: float = Field(default=2.0, ge=0.0)
    min_spread_multiple: float = Field(default=2.0, gt=0.0)
    no_shrink_candle_count: int = Field(default=5, ge=0)
    trail_activation_mfe_multiple: float = Field(default=1.2, gt=0.0)
    trail_structure_bars: int = Field(default=3, ge=1)
    trail_buffer_pips: float = Field(default=1.5, ge=0.0)


def _default_short_sessions() -> Dict[str, List[LiquiditySession]]:
    active = [LiquiditySession.LONDON_OPEN, LiquiditySession.NY_OVERLAP]
    return {pair: list(active) for pair in ("USD_JPY", "GBP_USD", "EUR_USD", "EUR_JPY", "GBP_JPY")}


def _default_session_priority() -> Dict[LiquiditySession, SessionPriority]:
    # Same ladder for both directions; rollover is never traded
    return {
        LiquiditySession.LONDON_OPEN: SessionPriority.HIGH,
        LiquiditySession.NY_OVERLAP: SessionPriority.HIGH,
        LiquiditySession.ASIAN: SessionPriority.MEDIUM,
        LiquiditySession.LATE_NY: SessionPriority.LOW,
        LiquiditySession.ROLLOVER: SessionPriority.SUPPRESSED,
    }


class RouterConfig(BaseModel):
    """Directional routing, authorization and sizing settings.

    The short engine ships disabled and shadow-only; it must be enabled
    explicitly per deployment.
    """

    model_config = _FROZEN

    long_authorized_pairs: List[str] = Field(
        default_factory=lambda: ["USD_CAD", "USD_JPY", "EUR_USD", "NZD_USD"]
    )

    short_engine_enabled: bool = False
    short_shadow_only: bool = True
    short_enabled_pairs: List[str] = Field(
        default_factory=lambda: ["USD_JPY", "GBP_USD", "EUR_USD", "EUR_JPY", "GBP_JPY"]
    )
    short_restricted_pairs: Dict[str, str] = Field(
        default_factory=lambda: {"USD_CAD": "Restricted during carry dominance"},
        description="Pair -> reason; shorts on these pairs are blocked even when enabled",
    )
    short_allowed_sessions: Dict[str, List[LiquiditySession]] = Field(default_factory=_default_short_sessions)
    short_allowed_agents: List[str] = Field(
        default_factory=lambda: ["forex-macro", "range-navigator", "volatility-architect"]
    )

    # Session priority -> session multiplier; suppressed sessions block the trade
    long_session_priority: Dict[LiquiditySession, SessionPriority] = Field(default_factory=_default_session_priority)
    short_session_priority: Dict[LiquiditySession, SessionPriority] = Field(default_factory=_default_session_priority)

    # Safety checks
    max_spread_pips: float = Field(default=3.0, gt=0.0)
    max_slippage_pips: float = Field(default=1.0, gt=0.0)
    max_liquidity_shock: float = Field(default=70.0, ge=0.0, le=100.0)

    # Stop geometry
    long_stop_r_range: Tuple[float, float] = (1.0, 1.5)
    short_stop_r_range: Tuple[float, float] = (1.35, 1.5)
    min_stop_distance: float = Field(default=1e-5, gt=0.0)
    short_stop: ShortStopConfig = Field(default_factory=ShortStopConfig)

    # Sizing
    short_capital_cap: float = Field(default=0.25, ge=0.0, le=0.25)
    throttle_capital_factor: float = Field(default=0.5, ge=0.0, le=1.0)
    survivorship_reference: float = Field(default=75.0, gt=0.0)
    max_final_multiplier: float = Field(default=2.0, gt=0.0, le=2.0)

    @field_validator("long_stop_r_range", "short_stop_r_range")
    @classmethod
    def validate_range(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        if not 0.0 < v[0] <= v[1]:
            raise ValueError(f"stop range must be positive and ordered, got {v}")
        return v

    @field_validator("long_authorized_pairs", "short_enabled_pairs")
    @classmethod
    def normalize_pairs(cls, v: List[str]) -> List[str]:
        return [normalize_pair(p) for p in v]

    @field_validator("short_restricted_pairs", "short_allowed_sessions")
    @classmethod
    def normalize_pair_keys(cls, v: dict) -> dict:
        return {normalize_pair(p): value for p, value in v.items()}


class HealthConfig(BaseModel):
    """Post-entry health monitor settings."""

    model_config = _FROZEN

    weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "progress": 0.34,
            "persistence_delta": 0.18,
            "acceleration_delta": 0.14,
            "regime_stability": 0.22,
            "drift_penalty": 0.12,
        }
    )
    validation_window: int = Field(default=3, ge=1)
    low_volatility_window: int = Field(default=4, ge=1)
    low_volatility_threshold: float = Field(default=30.0, ge=0.0, le=100.0)
    progress_fail_mfe_r: float = Field(default=0.25, ge=0.0)
    progress_target_mfe_r: float = Field(default=0.60, gt=0.0)
    min_r_pips: float = Field(default=0.1, gt=0.0)

    healthy_threshold: float = 70.0
    caution_threshold: float = 45.0
    sick_threshold: float = 30.0

    consider_exit_ue_r: float = -0.35
    caution_tighten_factor: float = Field(default=0.80, gt=0.0, le=1.0)
    sick_tighten_factor: float = Field(default=0.60, gt=0.0, le=1.0)
    critical_tighten_factor: float = Field(default=0.50, gt=0.0, le=1.0)

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        expected = {"progress", "persistence_delta", "acceleration_delta", "regime_stability", "drift_penalty"}
        if set(v) != expected:
            raise ValueError(f"weights must have exactly {sorted(expected)}")
        if abs(sum(v.values()) - 1.0) > 1e-9:
            raise ValueError(f"weights must sum to 1.0, got {sum(v.values())}")
        return v


class TierConfig(BaseModel):
    """Tier classification, rescue and promotion thresholds.

    The short-destructive pattern (short net below short_destructive_net_pips
    over more than short_destructive_min_trades short trades) has no
    documented derivation and is kept here so it can be reviewed and tuned.
    """

    model_config = _FROZEN

    tier_a_min_profit_factor: float = 1.10
    tier_a_min_session_coverage: int = 3
    oos_min_profit_factor: float = 1.05
    tier_b_min_net_pips: float = -1000.0
    tier_b_min_profit_factor: float = 0.90
    tier_c_min_net_pips: float = -1500.0

    short_destructive_net_pips: float = -500.0
    short_destructive_min_trades: int = Field(default=50, ge=0)

    rescue_min_profit_factor: float = 1.2
    promotion_min_profit_factor: float = 1.1
    heavy_promotion_min_profit_factor: float = 1.3
    heavy_promotion_min_expectancy: float = 0.4

    portfolio_max_correlation: float = Field(default=0.6, ge=0.0, le=1.0)
    portfolio_drawdown_scale: float = Field(default=500.0, gt=0.0)
    enforce_portfolio_integration: bool = True

    profit_factor_sentinel: float = Field(default=99.0, gt=0.0)


class RollbackConfig(BaseModel):
    """Hysteresis band for ensemble rollback."""

    model_config = _FROZEN

    activation_ratio: float = Field(default=0.80, gt=0.0)
    recovery_ratio: float = Field(default=1.05, gt=0.0)

    @model_validator(mode="after")
    def validate_band(self) -> "RollbackConfig":
        if self.activation_ratio >= self.recovery_ratio:
            raise ValueError("activation_ratio must be below recovery_ratio")
        return self


class ShadowValidationConfig(BaseModel):
    """Rescue shadow validation requirements."""

    model_config = _FROZEN

    min_trades: int = Field(default=150, ge=1)
    min_expectancy_ratio: float = 1.3
    max_drawdown_ratio: float = 0.70
    min_profitable_sessions: int = 3
    rolling_window: int = Field(default=50, ge=1)


class ShortShadowConfig(BaseModel):
    """Short engine shadow promotion gates."""

    model_config = _FROZEN

    min_trades: int = Field(default=30, ge=1)
    min_profit_factor: float = 1.2
    drawdown_tolerance: float = 1.1
    friction_tolerance: float = 1.05
    min_execution_quality: float = 70.0
    profit_factor_epsilon: float = Field(default=0.001, gt=0.0)


class DeploymentCriteria(BaseModel):
    """Requirements to climb one rung of the deployment ladder."""

    model_config = _FROZEN

    min_trades: int
    min_expectancy_ratio: float
    max_drawdown_ratio: float
    min_profitable_sessions: int
    min_days: int


class DeploymentConfig(BaseModel):
    model_config = _FROZEN

    shadow_to_reduced: DeploymentCriteria = Field(
        default_factory=lambda: DeploymentCriteria(
            min_trades=150, min_expectancy_ratio=1.3, max_drawdown_ratio=0.70,
            min_profitable_sessions=3, min_days=7,
        )
    )
    reduced_to_normal: DeploymentCriteria = Field(
        default_factory=lambda: DeploymentCriteria(
            min_trades=300, min_expectancy_ratio=1.2, max_drawdown_ratio=0.60,
            min_profitable_sessions=4, min_days=14,
        )
    )
    reduced_size_multiplier: float = Field(default=0.35, ge=0.0, le=1.0)
    normal_size_multiplier: float = Field(default=1.0, ge=0.0)


class EngineConfig(BaseModel):
    """Top-level configuration for the whole pipeline."""

    model_config = _FROZEN

    version: str = "1.0.0"
    gates: GateConfig = Field(default_factory=GateConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    tiers: TierConfig = Field(default_factory=TierConfig)
    rollback: RollbackConfig = Field(default_factory=RollbackConfig)
    shadow: ShadowValidationConfig = Field(default_factory=ShadowValidationConfig)
    short_shadow: ShortShadowConfig = Field(default_factory=ShortShadowConfig)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)


def load_engine_config(
    path: Optional[Union[str, Path]] = None,
    logger: Optional[logging.Logger] = None,
) -> EngineConfig:
    """Load EngineConfig from a JSON file.

    Args:
        path: Config file path. Falls back to $TRADE_GOVERNANCE_CONFIG.
        logger: Optional logger

    Returns:
        Validated EngineConfig (defaults when no file is configured or found)

    Raises:
        ConfigurationError: If the file is not valid JSON or fails validation
    """
    if path is None:
        load_dotenv()
        path = os.getenv(CONFIG_ENV_VAR)

    if not path:
        if logger:
            logger.info("No governance config configured, using defaults")
        return EngineConfig()

    config_path = Path(path)
    if not config_path.exists():
        if logger:
            logger.warning(f"Governance config {config_path} not found, using defaults")
        return EngineConfig()

    try:
        with open(config_path, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e

    try:
        config = EngineConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid governance config in {config_path}: {e}") from e

    if logger:
        logger.info(f"Loaded governance config v{config.version} from {config_path}")

    return config
