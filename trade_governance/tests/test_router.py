"""
Directional Execution Router Tests

Routing, integrity, regime authorization, entry validation, stop
geometry, sizing and the assembled execution decision.
"""

import itertools

import pytest

from trade_governance import build_execution_decision, evaluate_trade_proposal, route_trade, validate_router_integrity
from trade_governance.config import RouterConfig, ShortStopConfig
from trade_governance.entry_validation import validate_entry
from trade_governance.exceptions import RouterIntegrityError
from trade_governance.models import (
    Direction,
    ExecutionEngine,
    IndicatorSnapshot,
    LiquiditySession,
    RouteDecision,
    SessionPriority,
    ShortRegime,
    VolatilityPhase,
)
from trade_governance.position_sizing import (
    apply_capital_adjustments,
    compute_capital_multiplier,
    compute_final_position_multiplier,
    compute_session_multiplier,
    session_priority,
)
from trade_governance.router import assert_router_integrity, authorize_regime, classify_short_regime
from trade_governance.stop_geometry import (
    compute_short_initial_stop,
    compute_short_trailing_stop,
    compute_stop_geometry,
    evaluate_short_stop_phase,
)


class TestRouting:
    """Engine assignment."""

    def test_authorized_long_routes_to_long_engine(self):
        """Test that longs on authorized pairs route to LONG_ENGINE under any config."""
        for config in (RouterConfig(), RouterConfig(short_engine_enabled=True)):
            for pair in ("USD_CAD", "USD_JPY", "EUR_USD", "NZD_USD"):
                decision = route_trade(Direction.LONG, pair, "anyone", config)
                assert decision.engine == ExecutionEngine.LONG_ENGINE

    def test_long_pair_not_authorized(self):
        decision = route_trade(Direction.LONG, "AUD_NZD", "forex-macro")

        assert decision.engine == ExecutionEngine.BLOCKED
        assert decision.reason == "AUD_NZD not authorized for long trading"

    def test_pair_names_normalized(self):
        """Test that slash notation routes like OANDA notation."""
        decision = route_trade(Direction.LONG, "eur/usd", "forex-macro")
        config = RouterConfig(long_authorized_pairs=["GBP/USD"])

        assert decision.engine == ExecutionEngine.LONG_ENGINE
        assert route_trade(Direction.LONG, "GBP_USD", "forex-macro", config).engine == ExecutionEngine.LONG_ENGINE

    def test_short_restricted_pair(self, shorts_router_config):
        """Test that a restricted pair blocks shorts even when short-enabled."""
        config = shorts_router_config.model_copy(update={"short_enabled_pairs": ["USD_CAD", "EUR_USD"]})
        decision = route_trade(Direction.SHORT, "USD_CAD", "forex-macro", config)

        assert decision.engine == ExecutionEngine.BLOCKED
        assert decision.reason == "USD_CAD: Restricted during carry dominance"

    def test_short_blocked_by_default(self):
        """Test that the short engine ships disabled."""
        decision = route_trade(Direction.SHORT, "EUR_USD", "forex-macro")

        assert decision.engine == ExecutionEngine.BLOCKED
        assert decision.reason == "Short engine disabled"

    def test_short_pair_not_enabled(self, shorts_router_config):
        decision = route_trade(Direction.SHORT, "AUD_NZD", "forex-macro", shorts_router_config)

        assert decision.engine == ExecutionEngine.BLOCKED
        assert decision.reason == "AUD_NZD not in short-enabled pairs"

    def test_short_agent_not_authorized(self, shorts_router_config):
        decision = route_trade(Direction.SHORT, "EUR_USD", "momentum-bot", shorts_router_config)

        assert decision.engine == ExecutionEngine.BLOCKED
        assert decision.reason == "Agent momentum-bot not authorized for shorts"

    def test_short_routed_when_authorized(self, shorts_router_config):
        decision = route_trade(Direction.SHORT, "USD_JPY", "range-navigator", shorts_router_config)
        assert decision.engine == ExecutionEngine.SHORT_ENGINE


class TestRouterIntegrity:
    """Direction / engine pairing."""

    def test_no_input_produces_forbidden_pairing(self):
        """Test every routing input against the integrity check."""
        configs = [
            RouterConfig(),
            RouterConfig(short_engine_enabled=True),
            RouterConfig(short_engine_enabled=True, short_shadow_only=False, short_enabled_pairs=["AUD_USD"]),
        ]
        pairs = ["EUR_USD", "USD_JPY", "AUD_USD", "XAU_USD"]
        agents = ["forex-macro", "volatility-architect", "unknown", None]

        for direction, config, pair, agent in itertools.product(Direction, configs, pairs, agents):
            decision = route_trade(direction, pair, agent, config)
            assert validate_router_integrity(decision.direction, decision.engine)
            assert_router_integrity(decision)

    @pytest.mark.parametrize("direction,engine", [
        (Direction.LONG, ExecutionEngine.SHORT_ENGINE),
        (Direction.SHORT, ExecutionEngine.LONG_ENGINE),
    ])
    def test_forbidden_pairings_raise(self, direction, engine):
        """Test that a mismatched decision raises RouterIntegrityError."""
        assert not validate_router_integrity(direction, engine)
        with pytest.raises(RouterIntegrityError) as exc_info:
            assert_router_integrity(RouteDecision(direction=direction, engine=engine, reason="forged"))
        assert exc_info.value.direction == direction.value

    def test_blocked_is_consistent(self):
        assert validate_router_integrity(Direction.SHORT, ExecutionEngine.BLOCKED)
        assert validate_router_integrity(Direction.LONG, ExecutionEngine.BLOCKED)


class TestRegimeAuthorization:
    """Short regime ladder and long authorization."""

    def test_orderly_uptrend_suppresses_shorts(self, nominal_context):
        """Test that a supported uptrend is not a short regime."""
        regime = classify_short_regime(nominal_context)

        assert regime.regime == ShortRegime.ORDERLY_UPTREND
        assert not regime.is_tradeable
        assert regime.suppression_reason

    @pytest.mark.parametrize("overrides,expected", [
        ({"liquidity_shock_prob": 70.0, "volatility_phase": VolatilityPhase.IGNITION, "htf_supports": False},
         ShortRegime.SHOCK_BREAKDOWN),
        ({"spread_stability_rank": 20.0, "liquidity_shock_prob": 55.0}, ShortRegime.LIQUIDITY_VACUUM),
        ({"htf_supports": False, "mtf_confirms": False, "mtf_alignment_score": 30.0}, ShortRegime.RISK_OFF_IMPULSE),
        ({"htf_supports": False, "mtf_alignment_score": 45.0}, ShortRegime.BREAKDOWN_CONTINUATION),
        ({"htf_supports": False, "mtf_alignment_score": 55.0, "volatility_phase": VolatilityPhase.COMPRESSION},
         ShortRegime.BALANCED_CHOP),
    ])
    def test_regime_ladder(self, context_factory, overrides, expected):
        assert classify_short_regime(context_factory(**overrides)).regime == expected

    def test_long_suppressed_in_exhaustion(self, context_factory):
        authorized, reason = authorize_regime(Direction.LONG, context_factory(volatility_phase=VolatilityPhase.EXHAUSTION))

        assert not authorized
        assert "exhaustion" in reason

    def test_long_needs_support(self, context_factory):
        """Test that longs without HTF support need at least 50% alignment."""
        weak = context_factory(htf_supports=False, mtf_alignment_score=40.0)
        neutral = context_factory(htf_supports=False, mtf_alignment_score=55.0)

        assert not authorize_regime(Direction.LONG, weak)[0]
        assert authorize_regime(Direction.LONG, neutral)[0]

    def test_short_authorized_in_breakdown(self, short_context_factory):
        authorized, reason = authorize_regime(Direction.SHORT, short_context_factory())

        assert authorized
        assert reason == "Short regime breakdown-continuation"


class TestEntryValidation:
    """Required and advisory entry checks."""

    def test_long_entry_confirmed(self, nominal_context):
        assert validate_entry(Direction.LONG, nominal_context).passed

    def test_long_entry_needs_active_phase(self, context_factory):
        result = validate_entry(Direction.LONG, context_factory(volatility_phase=VolatilityPhase.COMPRESSION))

        assert not result.passed
        assert [c.name for c in result.failed_required] == ["volatility_phase"]

    def test_advisory_checks_never_block(self, context_factory):
        """Test that a failed advisory check leaves the entry valid."""
        result = validate_entry(Direction.LONG, context_factory(spread_stability_rank=40.0))
        spread = next(c for c in result.checks if c.name == "spread_stability")

        assert not spread.passed
        assert not spread.required
        assert result.passed

    @pytest.mark.parametrize("rank,passed", [(50.0, False), (51.0, True)])
    def test_spread_stability_needs_rank_above_50(self, context_factory, rank, passed):
        result = validate_entry(Direction.LONG, context_factory(spread_stability_rank=rank))
        spread = next(c for c in result.checks if c.name == "spread_stability")

        assert spread.passed == passed

    def test_short_entry_confirmed(self, short_context_factory):
        assert validate_entry(Direction.SHORT, short_context_factory()).passed

    def test_short_entry_needs_rising_adx(self, short_context_factory):
        ctx = short_context_factory(indicators=IndicatorSnapshot(
            adx=26.0, adx_rising=False, donchian_breakdown=True,
            supertrend_bearish=True, post_break_ignition=True,
        ))
        result = validate_entry(Direction.SHORT, ctx)

        assert not result.passed
        assert [c.name for c in result.failed_required] == ["adx_rising"]


class TestStopGeometry:
    """Initial stop placement and the short stop lifecycle."""

    def test_long_stop_interpolates_with_spread_stability(self, nominal_context):
        geometry = compute_stop_geometry(Direction.LONG, nominal_context)

        assert geometry.initial_stop_r == pytest.approx(1.15)
        assert geometry.stop_distance == pytest.approx(1.15 * 0.0010)
        assert geometry.trailing_enabled
        assert geometry.volatility_adaptive

    def test_long_stop_without_atr_uses_spread(self, context_factory):
        geometry = compute_stop_geometry(Direction.LONG, context_factory(atr_value=0.0))

        assert not geometry.volatility_adaptive
        assert geometry.stop_distance == pytest.approx(0.00024)

    @pytest.mark.parametrize("atr", [0.00002, 0.00005, 0.0001])
    def test_long_stop_floored_at_twice_spread_with_live_atr(self, context_factory, atr):
        """Test that a thin live ATR never puts the long stop inside 2x spread."""
        geometry = compute_stop_geometry(Direction.LONG, context_factory(atr_value=atr))

        assert geometry.volatility_adaptive
        assert geometry.stop_distance == pytest.approx(0.00024)

    def test_short_stop_wider_than_long(self, short_context_factory):
        ctx = short_context_factory()
        long_geo = compute_stop_geometry(Direction.LONG, ctx)
        short_geo = compute_stop_geometry(Direction.SHORT, ctx)

        assert short_geo.initial_stop_r > long_geo.initial_stop_r
        assert not short_geo.trailing_enabled
        assert short_geo.no_shrink_candles == 4

    @pytest.mark.parametrize("spread", [0.0, 0.00005, 0.0003, 0.002])
    @pytest.mark.parametrize("atr5", [0.0, 0.0002, 0.0015])
    @pytest.mark.parametrize("swing_offset", [-0.001, 0.0, 0.0004])
    def test_short_stop_at_least_twice_spread(self, spread, atr5, swing_offset):
        """Test short stop distance >= 2x spread for any spread, ATR or swing."""
        entry = 1.1000
        level = compute_short_initial_stop(atr5, spread, entry + swing_offset, entry)

        assert level.initial_stop_distance >= 2 * spread
        assert level.initial_stop_distance > 0

    def test_short_stop_takes_widest_candidate(self):
        level = compute_short_initial_stop(0.0010, 0.0001, 1.1002, 1.1000, ShortStopConfig())

        assert level.stop_source == "atr"
        assert level.initial_stop_distance == pytest.approx(0.0015)

    def test_short_stop_phases(self):
        """Test Phase A during the no-shrink window and Phase B after 1.2R MFE."""
        assert evaluate_short_stop_phase(3, current_mfe=2.0, initial_risk=1.0).phase == "A"
        assert evaluate_short_stop_phase(6, current_mfe=1.0, initial_risk=1.0).phase == "A"

        phase = evaluate_short_stop_phase(6, current_mfe=1.3, initial_risk=1.0)
        assert phase.phase == "B"
        assert phase.should_activate_trail

    def test_short_trail_never_loosens(self):
        highs = [1.1010, 1.1008, 1.1005, 1.1003]

        assert compute_short_trailing_stop(highs, current_stop=1.1020) == pytest.approx(1.10095)
        assert compute_short_trailing_stop(highs, current_stop=1.1000) == pytest.approx(1.1000)
        assert compute_short_trailing_stop([], current_stop=1.1000) == 1.1000


class TestSizing:
    """Capital ladder, short cap and final multiplier."""

    @pytest.mark.parametrize("score,expected", [
        (10, 0.0), (24.9, 0.0), (25, 0.4), (30, 0.4), (45, 0.7), (50, 0.7),
        (60, 1.0), (74.9, 1.0), (75, 1.2), (90, 1.2),
    ])
    def test_capital_steps(self, score, expected):
        assert compute_capital_multiplier(score) == expected

    @pytest.mark.parametrize("session,expected", [
        (LiquiditySession.LONDON_OPEN, 1.15),
        (LiquiditySession.NY_OVERLAP, 1.15),
        (LiquiditySession.ASIAN, 0.85),
        (LiquiditySession.LATE_NY, 0.55),
        (LiquiditySession.ROLLOVER, 0.0),
    ])
    def test_session_priority_multiplier(self, session, expected):
        assert compute_session_multiplier(Direction.LONG, session) == expected
        assert compute_session_multiplier(Direction.SHORT, session) == expected

    def test_session_priority_per_direction(self):
        config = RouterConfig(
            short_session_priority={
                LiquiditySession.LONDON_OPEN: SessionPriority.LOW,
                LiquiditySession.ASIAN: SessionPriority.SUPPRESSED,
            },
        )

        assert session_priority(Direction.LONG, LiquiditySession.ASIAN, config) == SessionPriority.MEDIUM
        assert session_priority(Direction.SHORT, LiquiditySession.ASIAN, config) == SessionPriority.SUPPRESSED
        assert compute_session_multiplier(Direction.SHORT, LiquiditySession.LONDON_OPEN, config) == 0.55
        assert compute_session_multiplier(Direction.SHORT, LiquiditySession.NY_OVERLAP, config) == 0.5

    def test_capital_monotone(self):
        values = [compute_capital_multiplier(s) for s in range(0, 101)]
        assert values == sorted(values)

    @pytest.mark.parametrize("score", range(0, 101, 5))
    def test_short_capital_capped(self, score):
        """Test that short capital never exceeds 0.25."""
        assert compute_capital_multiplier(score, Direction.SHORT) <= 0.25

    def test_short_cap_reapplied_after_agent_feedback(self):
        capped = apply_capital_adjustments(0.25, Direction.SHORT, agent_size_multiplier=4.0)
        assert capped == 0.25

    def test_throttle_halves_capital(self):
        assert apply_capital_adjustments(1.0, Direction.LONG, throttled=True) == pytest.approx(0.5)

    def test_final_multiplier_clamped(self):
        assert compute_final_position_multiplier(1.2, 1.18, 100) == pytest.approx(1.2 * 1.18 * 100 / 75)
        assert compute_final_position_multiplier(5.0, 2.0, 100) == 2.0
        assert compute_final_position_multiplier(1.0, 1.0, -10) == 0.0


class TestExecutionDecision:
    """Assembled per-direction verdict."""

    def test_nominal_long_permitted(self, proposal, nominal_context):
        gate = evaluate_trade_proposal(proposal, nominal_context)
        decision = build_execution_decision(proposal, nominal_context, gate, survivorship_score=70)

        assert decision.permitted
        assert decision.engine == ExecutionEngine.LONG_ENGINE
        assert decision.block_reasons == []
        assert decision.capital_multiplier == 1.0
        assert decision.final_position_multiplier == pytest.approx(1.15 * 70 / 75)
        assert decision.session_multiplier == 1.15

    def test_unauthorized_long_pair_blocked(self, proposal, nominal_context):
        aud_nzd = proposal.model_copy(update={"pair": "AUD_NZD"})
        gate = evaluate_trade_proposal(aud_nzd, nominal_context)
        decision = build_execution_decision(aud_nzd, nominal_context, gate, survivorship_score=70)

        assert decision.engine == ExecutionEngine.BLOCKED
        assert not decision.permitted
        assert decision.final_position_multiplier == 0.0
        assert "AUD_NZD not authorized for long trading" in decision.block_reasons

    def test_suppressed_session_blocks(self, proposal, context_factory):
        ctx = context_factory(current_session=LiquiditySession.ROLLOVER)
        gate = evaluate_trade_proposal(proposal, ctx)
        decision = build_execution_decision(proposal, ctx, gate, survivorship_score=70)

        assert not decision.permitted
        assert decision.session_multiplier == 0.0
        assert decision.final_position_multiplier == 0.0
        assert "Session rollover suppressed for long trades" in decision.block_reasons

    def test_medium_priority_session_sizes_down(self, proposal, context_factory):
        ctx = context_factory(current_session=LiquiditySession.ASIAN)
        gate = evaluate_trade_proposal(proposal, ctx)
        decision = build_execution_decision(proposal, ctx, gate, survivorship_score=70)

        assert decision.session_multiplier == 0.85
        assert not any("Session" in r for r in decision.block_reasons)

    def test_throttled_gate_halves_size(self, proposal, context_factory):
        ctx = context_factory(friction_ratio=2.0)
        gate = evaluate_trade_proposal(proposal, ctx)
        decision = build_execution_decision(proposal, ctx, gate, survivorship_score=70)

        assert decision.permitted
        assert decision.capital_multiplier == pytest.approx(0.5)

    def test_rejected_gate_blocks(self, proposal, context_factory):
        ctx = context_factory(friction_ratio=2.0, spread_stability_rank=20.0)
        gate = evaluate_trade_proposal(proposal, ctx)
        decision = build_execution_decision(proposal, ctx, gate, survivorship_score=70)

        assert not decision.permitted
        assert decision.final_position_multiplier == 0.0
        assert decision.block_reasons[0] == "Gate rejected: G1_FRICTION, G4_SPREAD_INSTABILITY"

    def test_low_survivorship_blocks(self, proposal, nominal_context):
        gate = evaluate_trade_proposal(proposal, nominal_context)
        decision = build_execution_decision(proposal, nominal_context, gate, survivorship_score=20)

        assert not decision.permitted
        assert any("capital floor" in r for r in decision.block_reasons)

    def test_short_blocked_by_default(self, short_proposal, short_context_factory):
        ctx = short_context_factory()
        gate = evaluate_trade_proposal(short_proposal, ctx)
        decision = build_execution_decision(short_proposal, ctx, gate, survivorship_score=70)

        assert not decision.permitted
        assert decision.engine == ExecutionEngine.BLOCKED
        assert "Short engine disabled" in decision.block_reasons

    def test_short_shadow_only_blocks(self, short_proposal, short_context_factory):
        ctx = short_context_factory()
        config = RouterConfig(short_engine_enabled=True)
        gate = evaluate_trade_proposal(short_proposal, ctx)
        decision = build_execution_decision(short_proposal, ctx, gate, 70, config)

        assert decision.engine == ExecutionEngine.SHORT_ENGINE
        assert not decision.permitted
        assert "Short engine in shadow-only mode" in decision.block_reasons

    def test_live_short_permitted_and_capped(self, short_proposal, short_context_factory, shorts_router_config):
        ctx = short_context_factory()
        gate = evaluate_trade_proposal(short_proposal, ctx)
        decision = build_execution_decision(short_proposal, ctx, gate, 95, shorts_router_config)

        assert decision.permitted, decision.block_reasons
        assert decision.capital_multiplier == 0.25
        assert decision.stop_geometry.stop_distance >= 2 * ctx.current_spread

    def test_short_session_not_allowed(self, short_proposal, short_context_factory, shorts_router_config):
        ctx = short_context_factory(current_session=LiquiditySession.ASIAN)
        gate = evaluate_trade_proposal(short_proposal, ctx)
        decision = build_execution_decision(short_proposal, ctx, gate, 70, shorts_router_config)

        assert not decision.permitted
        assert "Session asian not allowed for EUR_USD shorts" in decision.block_reasons

    def test_wide_spread_fails_safety(self, proposal, context_factory):
        ctx = context_factory(current_spread=0.0005, total_friction=0.00052)
        gate = evaluate_trade_proposal(proposal, ctx)
        decision = build_execution_decision(proposal, ctx, gate, 70)

        assert not decision.permitted
        failed = [c.name for c in decision.safety_checks if not c.passed]
        assert failed == ["spread_threshold"]

    def test_forged_route_raises(self, proposal, nominal_context):
        """Test that an inconsistent precomputed route raises before sizing."""
        gate = evaluate_trade_proposal(proposal, nominal_context)
        forged = RouteDecision(direction=Direction.LONG, engine=ExecutionEngine.SHORT_ENGINE, reason="forged")

        with pytest.raises(RouterIntegrityError):
            build_execution_decision(proposal, nominal_context, gate, 70, route=forged)
