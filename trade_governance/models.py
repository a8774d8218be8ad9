"""
Trade Governance Data Models
=============================

Pydantic models for the trade governance pipeline.

Design decisions:
1. Pydantic over dataclasses: runtime validation + JSON serialization
2. Immutability: inputs and results are frozen so a decision can be
   replayed from what was logged
3. Closed schemas: GovernanceContext forbids unknown fields and gives
   every optional signal an explicit default
4. str-valued enums for every decision union (decision, band, tier)
5. Invariants that must hold on every result are checked at construction

Flow:
    TradeProposal + GovernanceContext -> GateResult -> ExecutionDecision
    TradeHealthInput -> TradeHealthResult
    TradeRecord / AgentStats -> AgentEffectiveState
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from trade_governance.utils import normalize_pair


# ============================================================
# ENUMS
# ============================================================


class Direction(str, Enum):
    """Trade direction."""
    LONG = "long"
    SHORT = "short"


class VolatilityPhase(str, Enum):
    """Volatility cycle phase supplied by the indicator feed."""
    COMPRESSION = "compression"
    IGNITION = "ignition"
    EXPANSION = "expansion"
    EXHAUSTION = "exhaustion"


class LiquiditySession(str, Enum):
    """FX liquidity session."""
    ASIAN = "asian"
    LONDON_OPEN = "london-open"
    NY_OVERLAP = "ny-overlap"
    LATE_NY = "late-ny"
    ROLLOVER = "rollover"


class SequencingCluster(str, Enum):
    """Label for the agent's recent win/loss sequence."""
    PROFIT_MOMENTUM = "profit-momentum"
    LOSS_CLUSTER = "loss-cluster"
    MIXED = "mixed"
    NEUTRAL = "neutral"


class GovernanceDecision(str, Enum):
    """Admission decision."""
    APPROVED = "approved"
    THROTTLED = "throttled"
    REJECTED = "rejected"


class ExecutionEngine(str, Enum):
    """Engine a proposal is routed to."""
    LONG_ENGINE = "LONG_ENGINE"
    SHORT_ENGINE = "SHORT_ENGINE"
    BLOCKED = "BLOCKED"


class SessionPriority(str, Enum):
    """Per-direction execution priority of a liquidity session."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SUPPRESSED = "suppressed"


class ShortRegime(str, Enum):
    """Short-side regime ladder. The first four are tradeable."""
    SHOCK_BREAKDOWN = "shock-breakdown"
    RISK_OFF_IMPULSE = "risk-off-impulse"
    LIQUIDITY_VACUUM = "liquidity-vacuum"
    BREAKDOWN_CONTINUATION = "breakdown-continuation"
    ORDERLY_UPTREND = "orderly-uptrend"
    BALANCED_CHOP = "balanced-chop"
    MEAN_REVERSION_RICH = "mean-reversion-rich"


SHORT_TRADEABLE_REGIMES = frozenset({
    ShortRegime.SHOCK_BREAKDOWN,
    ShortRegime.RISK_OFF_IMPULSE,
    ShortRegime.LIQUIDITY_VACUUM,
    ShortRegime.BREAKDOWN_CONTINUATION,
})


class HealthBand(str, Enum):
    """Open-position health band."""
    HEALTHY = "healthy"
    CAUTION = "caution"
    SICK = "sick"
    CRITICAL = "critical"


class GovernanceActionType(str, Enum):
    """Trailing-stop recommendation for an open position."""
    MAINTAIN = "maintain"
    TIGHTEN_LIGHT = "tighten-light"
    TIGHTEN_HEAVY = "tighten-heavy"
    TIGHTEN_AGGRESSIVE = "tighten-aggressive"
    CONSIDER_EXIT = "consider-exit"


class AgentTier(str, Enum):
    """Raw tier computed from unconstrained history."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class EffectiveTier(str, Enum):
    """Tier after rescue / promotion logic."""
    A = "A"
    B_RESCUED = "B-Rescued"
    B_SHADOW = "B-Shadow"
    B_PROMOTABLE = "B-Promotable"
    B_LEGACY = "B-Legacy"
    C = "C"
    D = "D"


class RescueStatus(str, Enum):
    NONE = "none"
    IN_PROGRESS = "in_progress"
    STABILIZED = "stabilized"
    PROMOTABLE = "promotable"


class DeploymentState(str, Enum):
    """Deployment ladder rung."""
    SHADOW = "shadow"
    REDUCED_LIVE = "reduced-live"
    NORMAL_LIVE = "normal-live"
    DISABLED = "disabled"


class ConstraintType(str, Enum):
    BLOCK_DIRECTION = "block_direction"
    BLOCK_PAIR = "block_pair"
    BLOCK_SESSION = "block_session"
    RAISE_THRESHOLD = "raise_threshold"


class BadgeType(str, Enum):
    RESCUED = "RESCUED"
    LONG_ONLY = "LONG-ONLY"
    SESSION_FILTERED = "SESSION-FILTERED"
    JPY_BLOCKED = "JPY-BLOCKED"
    PAIR_BLOCKED = "PAIR-BLOCKED"
    COMPOSITE_RAISED = "COMPOSITE-RAISED"
    PROMOTABLE = "PROMOTABLE"
    SHADOW = "SHADOW"
    REDUCED = "REDUCED"
    DISABLED = "DISABLED"
    TIER_A = "TIER-A"
    LEGACY = "LEGACY"


# ============================================================
# ADMISSION INPUTS
# ============================================================


class TradeProposal(BaseModel):
    """A candidate trade, created per signal and consumed once.

    Attributes:
        pair: Instrument in OANDA notation (e.g. "EUR_USD"; "EUR/USD" is normalized)
        direction: long or short
        base_win_probability: Pre-governance win probability, [0.0, 1.0]
        base_win_range: (low, high) payoff of a winning trade, in pips
        base_loss_range: (low, high) payoff of a losing trade, in pips (negative)
        index: Sequence number of the proposal within its batch
        agent_id: Agent that generated the signal, if known
    """

    pair: str
    direction: Direction
    base_win_probability: float
    base_win_range: Tuple[float, float]
    base_loss_range: Tuple[float, float]
    index: int = 0
    agent_id: Optional[str] = None

    @field_validator("pair")
    @classmethod
    def validate_pair(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("pair must be non-empty")
        return normalize_pair(v)

    @field_validator("base_win_probability")
    @classmethod
    def validate_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"base_win_probability must be in [0.0, 1.0], got {v}")
        return v

    model_config = {"frozen": True}


class IndicatorSnapshot(BaseModel):
    """Pre-computed entry-confirmation signals.

    The engine never computes indicators; these flags arrive from the
    indicator feed alongside the rest of the GovernanceContext.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    coalition_confirmed: bool = False
    phase_transition_valid: bool = False
    trend_efficiency: float = 0.0
    adx: float = Field(default=0.0, ge=0.0)
    adx_rising: bool = False
    donchian_breakdown: bool = False
    supertrend_bearish: bool = False
    post_break_ignition: bool = False
    liquidity_thinning: bool = False
    atr5: Optional[float] = None
    recent_swing_high: Optional[float] = None


class GovernanceContext(BaseModel):
    """Snapshot of market and operational signals at proposal time.

    Every field the engine reads is declared here with an explicit default.
    Unknown fields are rejected so a renamed upstream field fails loudly
    instead of silently falling back to a default. Data availability flags
    default to False: a context that does not assert fresh data is rejected.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: Literal[1] = 1

    # Multi-timeframe alignment
    mtf_alignment_score: float = Field(default=50.0, ge=0.0, le=100.0)
    htf_supports: bool = False
    mtf_confirms: bool = False
    ltf_clean: bool = False

    # Volatility / liquidity
    volatility_phase: VolatilityPhase = VolatilityPhase.COMPRESSION
    phase_confidence: float = Field(default=50.0, ge=0.0, le=100.0)
    liquidity_shock_prob: float = Field(default=0.0, ge=0.0, le=100.0)
    spread_stability_rank: float = Field(default=50.0, ge=0.0, le=100.0)
    friction_ratio: float = Field(default=0.0, ge=0.0)

    # Pair / session
    pair_expectancy: float = Field(default=50.0, ge=0.0, le=100.0)
    pair_favored: bool = False
    is_major_pair: bool = False
    current_session: LiquiditySession = LiquiditySession.ASIAN
    session_aggressiveness: float = Field(default=50.0, ge=0.0, le=100.0)

    # Edge / sequencing
    edge_decaying: bool = False
    edge_decay_rate: float = Field(default=0.0, ge=0.0)
    overtrading_throttled: bool = False
    sequencing_cluster: SequencingCluster = SequencingCluster.NEUTRAL

    # Raw microstructure (price units)
    current_spread: float = 0.0
    bid: float = Field(default=0.0, ge=0.0)
    ask: float = Field(default=0.0, ge=0.0)
    slippage_estimate: float = Field(default=0.0, ge=0.0)
    total_friction: float = 0.0
    atr_value: float = 0.0
    atr_avg: float = 0.0

    # Data availability
    price_data_available: bool = False
    analysis_available: bool = False

    indicators: IndicatorSnapshot = Field(default_factory=IndicatorSnapshot)


# ============================================================
# ADMISSION RESULT
# ============================================================


class GateEntry(BaseModel):
    """A triggered gate with its human-readable reason."""

    id: str
    message: str
    hard: bool = False

    model_config = {"frozen": True}


class GovernanceMultipliers(BaseModel):
    """Composite multiplier broken into its four named factors."""

    alignment: float
    session: float
    sequencing: float
    volatility: float
    composite: float

    model_config = {"frozen": True}


class GateResult(BaseModel):
    """Output of the Admission Gate Evaluator.

    Invariants:
        - adjusted_win_probability in [0.30, 0.88]
        - governance_score in [0, 100]
        - rejected results carry capture_ratio == expected_expectancy == 0
    """

    decision: GovernanceDecision
    gates: List[GateEntry] = Field(default_factory=list)
    multipliers: GovernanceMultipliers
    adjusted_win_probability: float
    adjusted_win_range: Tuple[float, float]
    adjusted_loss_range: Tuple[float, float]
    adjusted_duration_minutes: Tuple[int, int]
    governance_score: float
    confidence_boost: float

    # Forensics
    capture_ratio: float = 0.0
    expected_expectancy: float = 0.0
    friction_cost: float = 0.0
    exit_latency_grade: Literal["A", "B", "C", "D"] = "D"
    trade_mode: Literal["scalp", "continuation"] = "scalp"
    exit_efficiency: float = 1.0
    microstructure: float = 1.0

    # Display labels
    alignment_label: str = ""
    volatility_label: str = ""
    session_label: str = ""

    @field_validator("adjusted_win_probability")
    @classmethod
    def validate_win_probability(cls, v: float) -> float:
        if not 0.30 <= v <= 0.88:
            raise ValueError(f"adjusted_win_probability must be in [0.30, 0.88], got {v}")
        return v

    @field_validator("governance_score")
    @classmethod
    def validate_governance_score(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError(f"governance_score must be in [0, 100], got {v}")
        return v

    @model_validator(mode="after")
    def validate_rejected_forensics(self) -> "GateResult":
        if self.decision == GovernanceDecision.REJECTED:
            if self.capture_ratio != 0.0 or self.expected_expectancy != 0.0:
                raise ValueError("rejected results must carry zero capture_ratio and expected_expectancy")
        return self

    @property
    def gate_ids(self) -> List[str]:
        return [g.id for g in self.gates]

    @property
    def rejection_reasons(self) -> List[str]:
        return [g.message for g in self.gates]

    model_config = {"frozen": True}


class GovernanceStats(BaseModel):
    """Aggregate view over a batch of GateResults."""

    total_proposed: int
    total_approved: int
    total_rejected: int
    total_throttled: int
    rejection_rate: float
    avg_composite_multiplier: float
    avg_governance_score: float
    avg_capture_ratio: float
    avg_expectancy: float
    approved_win_rate: float
    top_rejection_reasons: List[Tuple[str, int]] = Field(default_factory=list)

    model_config = {"frozen": True}


class UnitValidationResult(BaseModel):
    """Result of the infrastructure unit-consistency check."""

    valid: bool
    issues: List[str] = Field(default_factory=list)
    gate: Optional[GateEntry] = None

    model_config = {"frozen": True}


# ============================================================
# EXECUTION ROUTER
# ============================================================


class RouteDecision(BaseModel):
    """Engine assignment for one proposal."""

    direction: Direction
    engine: ExecutionEngine
    reason: str

    model_config = {"frozen": True}


class ShortRegimeClassification(BaseModel):
    regime: ShortRegime
    confidence: float = Field(ge=0.0, le=100.0)
    is_tradeable: bool
    suppression_reason: Optional[str] = None

    model_config = {"frozen": True}


class EntryCheck(BaseModel):
    """One named entry condition.

    Advisory checks (required=False) are reported but never block entry.
    """

    name: str
    passed: bool
    required: bool
    detail: str = ""

    model_config = {"frozen": True}


class EntryValidation(BaseModel):
    """Entry validation for one direction; passes when every required check does."""

    direction: Direction
    checks: List[EntryCheck] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks if c.required)

    @property
    def failed_required(self) -> List[EntryCheck]:
        return [c for c in self.checks if c.required and not c.passed]

    model_config = {"frozen": True}


class StopGeometry(BaseModel):
    """Initial stop placement for a new position.

    Attributes:
        initial_stop_r: Stop width in risk multiples
        stop_distance: Stop distance from entry in price units (> 0)
        trailing_enabled: Whether trailing may start immediately
        volatility_adaptive: Whether the width was derived from live ATR
        no_shrink_candles: Candles during which the stop may not tighten
        trail_activation_mfe_r: MFE (in R) required before trailing starts
    """

    direction: Direction
    initial_stop_r: float
    stop_distance: float = Field(gt=0.0)
    trailing_enabled: bool
    volatility_adaptive: bool
    no_shrink_candles: int = 0
    trail_activation_mfe_r: float = 0.0

    model_config = {"frozen": True}


class SafetyCheck(BaseModel):
    name: str
    passed: bool
    detail: str = ""

    model_config = {"frozen": True}


class ExecutionDecision(BaseModel):
    """Final per-direction execution verdict.

    Invariants:
        - permitted implies final_position_multiplier > 0 and no block reasons
        - short capital_multiplier never exceeds 0.25
        - final_position_multiplier in [0, 2.0]
    """

    direction: Direction
    pair: str
    engine: ExecutionEngine
    permitted: bool
    block_reasons: List[str] = Field(default_factory=list)
    regime_authorized: bool
    entry_validation: EntryValidation
    stop_geometry: Optional[StopGeometry] = None
    capital_multiplier: float = Field(ge=0.0)
    session_multiplier: float = Field(ge=0.0)
    safety_checks: List[SafetyCheck] = Field(default_factory=list)
    final_position_multiplier: float = Field(ge=0.0, le=2.0)

    @model_validator(mode="after")
    def validate_permitted(self) -> "ExecutionDecision":
        if self.permitted and (self.final_position_multiplier <= 0.0 or self.block_reasons):
            raise ValueError("permitted decisions need a positive multiplier and no block reasons")
        if self.direction == Direction.SHORT and self.capital_multiplier > 0.25:
            raise ValueError(f"short capital_multiplier capped at 0.25, got {self.capital_multiplier}")
        return self

    model_config = {"frozen": True}


# ============================================================
# POST-ENTRY HEALTH
# ============================================================


class TradeHealthInput(BaseModel):
    """Open-position snapshot for one health re-evaluation tick.

    Attributes:
        mfe_price: Best price reached since entry (defaults to entry)
        bars_since_entry: Completed candles since fill
        volatility_score: 0-100, below 30 counts as low volatility
        persistence_*/acceleration_*: Momentum readings now vs at entry
        prev_time_to_mfe_bars: Carried over from the previous tick
    """

    pair: str
    direction: Direction
    entry_price: float = Field(gt=0.0)
    initial_stop_price: float = Field(gt=0.0)
    current_price: float = Field(gt=0.0)
    mfe_price: Optional[float] = None
    bars_since_entry: int = Field(default=0, ge=0)
    volatility_score: float = Field(default=50.0, ge=0.0, le=100.0)
    persistence_now: float = 50.0
    persistence_at_entry: float = 50.0
    acceleration_now: float = 50.0
    acceleration_at_entry: float = 50.0
    regime_confirmed: bool = False
    regime_early_warning: bool = False
    regime_diverging: bool = False
    prev_time_to_mfe_bars: Optional[int] = None

    model_config = {"frozen": True}


class HealthComponents(BaseModel):
    """Component scores, each 0-100."""

    progress: float
    persistence_delta: float
    acceleration_delta: float
    regime_stability: float
    drift_penalty: float

    model_config = {"frozen": True}


class GovernanceAction(BaseModel):
    type: GovernanceActionType
    trailing_tighten_factor: float = Field(gt=0.0, le=1.0)
    block_adds: bool
    reason: str

    model_config = {"frozen": True}


class TradeHealthResult(BaseModel):
    """Health of one open position at one tick."""

    r_pips: float
    mfe_r: float
    ue_r: float
    components: HealthComponents
    trade_health_score: int = Field(ge=0, le=100)
    health_band: HealthBand
    progress_fail: bool
    validation_window: int
    time_to_mfe_bars: Optional[int] = None
    governance_action: GovernanceAction

    model_config = {"frozen": True}


# ============================================================
# TIER RESOLVER
# ============================================================


class TradeRecord(BaseModel):
    """A closed trade as supplied by the trade history store."""

    agent_id: str
    currency_pair: str
    direction: Direction
    entry_price: float = Field(gt=0.0)
    exit_price: float = Field(gt=0.0)
    closed_at: datetime
    opened_at: Optional[datetime] = None
    session_label: str = "unknown"
    regime_label: str = "unknown"
    spread_at_entry: Optional[float] = None
    governance_composite: Optional[float] = None

    model_config = {"frozen": True}


class AgentStats(BaseModel):
    """Pre-aggregated per-agent stats for the lightweight resolver path.

    long_gross_profit / long_gross_loss are optional; when absent the
    long-only profit factor is approximated from long_net_pips.
    """

    agent_id: str
    total_trades: int = Field(ge=0)
    win_count: int = Field(ge=0)
    net_pips: float
    gross_profit: float = Field(ge=0.0)
    gross_loss: float = Field(ge=0.0)
    long_count: int = Field(default=0, ge=0)
    long_wins: int = Field(default=0, ge=0)
    long_net_pips: float = 0.0
    long_gross_profit: Optional[float] = Field(default=None, ge=0.0)
    long_gross_loss: Optional[float] = Field(default=None, ge=0.0)
    short_count: int = Field(default=0, ge=0)
    short_wins: int = Field(default=0, ge=0)
    short_net_pips: float = 0.0

    @model_validator(mode="after")
    def validate_counts(self) -> "AgentStats":
        if self.win_count > self.total_trades:
            raise ValueError("win_count cannot exceed total_trades")
        if self.long_wins > self.long_count or self.short_wins > self.short_count:
            raise ValueError("directional wins cannot exceed directional counts")
        return self

    model_config = {"frozen": True}


class AgentMetrics(BaseModel):
    trades: int
    win_rate: float
    expectancy: float
    profit_factor: float
    net_pips: float

    model_config = {"frozen": True}


class ActiveConstraint(BaseModel):
    """A restriction the router enforces for an agent."""

    type: ConstraintType
    value: str
    label: str

    model_config = {"frozen": True}


class AgentBadge(BaseModel):
    type: BadgeType
    label: str
    tooltip: str

    model_config = {"frozen": True}


class AgentEffectiveState(BaseModel):
    """Per-agent tier resolution, shared by both resolver paths."""

    agent_id: str
    raw_tier: AgentTier
    effective_tier: EffectiveTier
    constraints: List[ActiveConstraint] = Field(default_factory=list)
    rescue_status: RescueStatus = RescueStatus.NONE
    size_multiplier: float = Field(ge=0.0)
    deployment_state: DeploymentState
    raw_metrics: AgentMetrics
    effective_metrics: AgentMetrics
    stability_score: int = Field(ge=0, le=100)
    badges: List[AgentBadge] = Field(default_factory=list)
    needs_shadow_validation: bool = False

    @property
    def badge_types(self) -> List[BadgeType]:
        return [b.type for b in self.badges]

    @property
    def blocked_directions(self) -> List[str]:
        return [c.value for c in self.constraints if c.type == ConstraintType.BLOCK_DIRECTION]

    @property
    def blocked_pairs(self) -> List[str]:
        return [c.value for c in self.constraints if c.type == ConstraintType.BLOCK_PAIR]

    @property
    def blocked_sessions(self) -> List[str]:
        return [c.value for c in self.constraints if c.type == ConstraintType.BLOCK_SESSION]

    model_config = {"frozen": True}


class RollbackState(BaseModel):
    """Outcome of one rollback evaluation."""

    active: bool
    current: float
    baseline: float
    ratio: Optional[float] = None
    transitioned: bool = False
    reason: str

    model_config = {"frozen": True}
