"""
Admission Gate Evaluator Tests

Decision rule, gate predicates, bounded outputs and batch stats.
"""

import pytest
from pydantic import ValidationError

from trade_governance import evaluate_trade_proposal, compute_governance_stats, validate_unit_consistency
from trade_governance.config import GateConfig
from trade_governance.gates import decide, evaluate_gates
from trade_governance.models import (
    GateEntry,
    GovernanceContext,
    GovernanceDecision,
    LiquiditySession,
    SequencingCluster,
    TradeProposal,
    VolatilityPhase,
)


class TestDecisionRule:
    """Gate count -> decision."""

    def test_nominal_context_approved(self, proposal, nominal_context):
        """Test that an all-clear context approves with no gates."""
        result = evaluate_trade_proposal(proposal, nominal_context)

        assert result.decision == GovernanceDecision.APPROVED
        assert result.gates == []
        assert result.capture_ratio > 0
        assert result.expected_expectancy != 0

    def test_friction_alone_throttles(self, proposal, context_factory):
        """Test that friction ratio 2 fires only G1 and throttles."""
        result = evaluate_trade_proposal(proposal, context_factory(friction_ratio=2.0))

        assert result.gate_ids == ["G1_FRICTION"]
        assert result.decision == GovernanceDecision.THROTTLED

    def test_friction_and_spread_reject(self, proposal, context_factory):
        """Test that G1 plus G4 rejects."""
        ctx = context_factory(friction_ratio=2.0, spread_stability_rank=20.0)
        result = evaluate_trade_proposal(proposal, ctx)

        assert result.gate_ids == ["G1_FRICTION", "G4_SPREAD_INSTABILITY"]
        assert result.decision == GovernanceDecision.REJECTED

    def test_decide_counts(self):
        """Test decide() directly for 0, 1 and 2 soft gates."""
        g = GateEntry(id="G6_OVERTRADING", message="x")
        assert decide([]) == GovernanceDecision.APPROVED
        assert decide([g]) == GovernanceDecision.THROTTLED
        assert decide([g, g]) == GovernanceDecision.REJECTED

    def test_single_hard_gate_rejects(self):
        """Test that one hard gate rejects on its own."""
        hard = GateEntry(id="G9_PRICE_DATA_UNAVAILABLE", message="x", hard=True)
        assert decide([hard]) == GovernanceDecision.REJECTED


class TestHardGates:
    """Data availability gates."""

    def test_missing_price_data_rejects(self, proposal, context_factory):
        """Test G9 rejects even when every soft gate would pass."""
        result = evaluate_trade_proposal(proposal, context_factory(price_data_available=False))

        assert result.decision == GovernanceDecision.REJECTED
        assert result.gate_ids == ["G9_PRICE_DATA_UNAVAILABLE"]
        assert result.gates[0].hard

    def test_hard_gates_short_circuit_soft_gates(self, context_factory):
        """Test that soft gates are not reported once a hard gate fires."""
        ctx = context_factory(analysis_available=False, friction_ratio=1.0, overtrading_throttled=True)
        gates = evaluate_gates(ctx)

        assert [g.id for g in gates] == ["G10_ANALYSIS_UNAVAILABLE"]

    def test_default_context_is_rejected(self, proposal):
        """Test that a context not asserting data availability is rejected."""
        result = evaluate_trade_proposal(proposal, GovernanceContext())
        assert result.decision == GovernanceDecision.REJECTED
        assert set(result.gate_ids) == {"G9_PRICE_DATA_UNAVAILABLE", "G10_ANALYSIS_UNAVAILABLE"}


class TestSoftGates:
    """Individual gate predicates."""

    @pytest.mark.parametrize("overrides,gate_id", [
        ({"htf_supports": False, "mtf_alignment_score": 30.0}, "G2_NO_HTF_SUPPORT"),
        ({"edge_decaying": True, "edge_decay_rate": 25.0}, "G3_EDGE_DECAY"),
        ({"spread_stability_rank": 25.0}, "G4_SPREAD_INSTABILITY"),
        ({"volatility_phase": VolatilityPhase.COMPRESSION, "session_aggressiveness": 20.0},
         "G5_COMPRESSION_LOW_SESSION"),
        ({"overtrading_throttled": True}, "G6_OVERTRADING"),
        ({"sequencing_cluster": SequencingCluster.LOSS_CLUSTER, "mtf_alignment_score": 50.0}, "G7_LOSS_CLUSTER"),
        ({"liquidity_shock_prob": 85.0}, "G8_HIGH_SHOCK"),
    ])
    def test_gate_fires_alone(self, context_factory, overrides, gate_id):
        """Test that each predicate fires exactly its own gate."""
        gates = evaluate_gates(context_factory(**overrides))
        assert [g.id for g in gates] == [gate_id]

    def test_edge_decay_needs_flag(self, context_factory):
        """Test that a high decay rate without the decaying flag does not fire G3."""
        assert evaluate_gates(context_factory(edge_decay_rate=40.0)) == []

    @pytest.mark.parametrize("shock", [71.0, 90.0, 100.0])
    def test_shock_suppressed_during_ignition(self, context_factory, shock):
        """Test that G8 never fires in ignition, whatever the shock probability."""
        ctx = context_factory(volatility_phase=VolatilityPhase.IGNITION, liquidity_shock_prob=shock)
        assert "G8_HIGH_SHOCK" not in [g.id for g in evaluate_gates(ctx)]

    def test_thresholds_come_from_config(self, context_factory):
        """Test that a stricter friction threshold fires G1 on the nominal context."""
        config = GateConfig(min_friction_ratio=6.0)
        assert [g.id for g in evaluate_gates(context_factory(), config)] == ["G1_FRICTION"]


class TestBoundedOutputs:
    """Invariants on every GateResult."""

    @pytest.mark.parametrize("p", [0.0, 0.2, 0.55, 0.9, 1.0])
    @pytest.mark.parametrize("phase", list(VolatilityPhase))
    def test_win_probability_and_score_bounds(self, context_factory, p, phase):
        """Test adjusted win probability in [0.30, 0.88] and score in [0, 100]."""
        proposal = TradeProposal(
            pair="EUR_USD",
            direction="long",
            base_win_probability=p,
            base_win_range=(8.0, 15.0),
            base_loss_range=(-10.0, -6.0),
        )
        result = evaluate_trade_proposal(proposal, context_factory(volatility_phase=phase))

        assert 0.30 <= result.adjusted_win_probability <= 0.88
        assert 0.0 <= result.governance_score <= 100.0

    def test_rejected_forensics_zeroed(self, proposal, context_factory):
        """Test that rejected results carry zero capture ratio and expectancy."""
        ctx = context_factory(friction_ratio=1.0, overtrading_throttled=True)
        result = evaluate_trade_proposal(proposal, ctx)

        assert result.decision == GovernanceDecision.REJECTED
        assert result.capture_ratio == 0.0
        assert result.expected_expectancy == 0.0

    def test_duration_follows_phase(self, proposal, context_factory):
        """Test the holding window for ignition."""
        result = evaluate_trade_proposal(proposal, context_factory(volatility_phase=VolatilityPhase.IGNITION))
        assert result.adjusted_duration_minutes == (1, 15)

    def test_labels(self, proposal, nominal_context):
        """Test display labels for the nominal context."""
        result = evaluate_trade_proposal(proposal, nominal_context)

        assert result.alignment_label == "Full Alignment"
        assert result.volatility_label == "Expansion"
        assert result.session_label == "London"
        assert result.trade_mode == "continuation"

    def test_composite_is_product_of_factors(self, proposal, nominal_context):
        """Test composite = alignment x session x sequencing x volatility."""
        m = evaluate_trade_proposal(proposal, nominal_context).multipliers
        assert m.composite == pytest.approx(m.alignment * m.session * m.sequencing * m.volatility)

    def test_low_session_lowers_score(self, proposal, context_factory):
        """Test that a weaker session lowers the composite and the score."""
        london = evaluate_trade_proposal(proposal, context_factory())
        late = evaluate_trade_proposal(proposal, context_factory(current_session=LiquiditySession.LATE_NY))

        assert late.multipliers.composite < london.multipliers.composite
        assert late.governance_score < london.governance_score

    def test_rejected_result_cannot_carry_forensics(self, proposal, nominal_context):
        """Test that the GateResult model refuses a rejected result with expectancy."""
        result = evaluate_trade_proposal(proposal, nominal_context)
        data = result.model_dump()
        data.update(decision="rejected", capture_ratio=0.5)

        with pytest.raises(ValidationError):
            type(result).model_validate(data)


class TestUnitConsistency:
    """G11 infrastructure check."""

    def test_nominal_units_valid(self, nominal_context):
        """Test that consistent price-unit inputs pass."""
        result = validate_unit_consistency(nominal_context)
        assert result.valid
        assert result.gate is None

    def test_mixed_units_flagged(self, context_factory):
        """Test that total friction in pips against a price-unit spread is caught."""
        result = validate_unit_consistency(context_factory(total_friction=1.4))

        assert not result.valid
        assert result.gate.id == "G11_INFRA_UNIT_MISMATCH"
        assert any("Total friction" in issue for issue in result.issues)

    def test_non_positive_atr_flagged(self, context_factory):
        result = validate_unit_consistency(context_factory(atr_value=0.0))
        assert not result.valid

    def test_unit_gate_only_when_enforced(self, proposal, context_factory):
        """Test that G11 joins the soft gates only when enabled."""
        ctx = context_factory(total_friction=1.4)

        relaxed = evaluate_trade_proposal(proposal, ctx)
        strict = evaluate_trade_proposal(proposal, ctx, GateConfig(enforce_unit_consistency=True))

        assert relaxed.decision == GovernanceDecision.APPROVED
        assert strict.gate_ids == ["G11_INFRA_UNIT_MISMATCH"]
        assert strict.decision == GovernanceDecision.THROTTLED


class TestGovernanceStats:
    """Batch aggregation."""

    def test_stats_over_mixed_batch(self, proposal, context_factory):
        """Test counts, rejection rate and top reasons."""
        results = [
            evaluate_trade_proposal(proposal, context_factory()),
            evaluate_trade_proposal(proposal, context_factory(friction_ratio=2.0)),
            evaluate_trade_proposal(proposal, context_factory(friction_ratio=2.0, spread_stability_rank=20.0)),
        ]
        stats = compute_governance_stats(results)

        assert stats.total_proposed == 3
        assert stats.total_approved == 1
        assert stats.total_throttled == 1
        assert stats.total_rejected == 1
        assert stats.rejection_rate == pytest.approx(1 / 3)
        assert stats.top_rejection_reasons[0] == ("G1_FRICTION", 2)
        assert stats.avg_expectancy == pytest.approx(results[0].expected_expectancy)

    def test_empty_batch(self):
        """Test that an empty batch yields neutral stats."""
        stats = compute_governance_stats([])

        assert stats.total_proposed == 0
        assert stats.rejection_rate == 0.0
        assert stats.avg_composite_multiplier == 1.0
