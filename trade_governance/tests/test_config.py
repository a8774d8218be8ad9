"""
Configuration Tests
"""

import json

import pytest
from pydantic import ValidationError

from trade_governance import load_engine_config
from trade_governance.config import CONFIG_ENV_VAR, EngineConfig, GateConfig, HealthConfig, RollbackConfig, RouterConfig
from trade_governance.exceptions import ConfigurationError


class TestConfigModels:
    """Defaults and validation."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.gates.min_friction_ratio == 3.0
        assert not config.router.short_engine_enabled
        assert config.router.short_shadow_only
        assert config.router.short_capital_cap == 0.25
        assert config.rollback.activation_ratio == 0.80
        assert config.rollback.recovery_ratio == 1.05
        assert sum(config.health.weights.values()) == pytest.approx(1.0)
        assert config.router.long_authorized_pairs == ["USD_CAD", "USD_JPY", "EUR_USD", "NZD_USD"]
        assert "USD_CAD" in config.router.short_restricted_pairs
        assert config.tiers.portfolio_max_correlation == 0.6
        assert config.tiers.enforce_portfolio_integration

    def test_pair_lists_normalized(self):
        config = RouterConfig(
            long_authorized_pairs=["eur/usd", " GBP_USD "],
            short_restricted_pairs={"usd/cad": "carry"},
        )

        assert config.long_authorized_pairs == ["EUR_USD", "GBP_USD"]
        assert config.short_restricted_pairs == {"USD_CAD": "carry"}

    def test_short_cap_cannot_exceed_quarter(self):
        with pytest.raises(ValidationError):
            RouterConfig(short_capital_cap=0.5)

    def test_health_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            HealthConfig(weights={
                "progress": 0.5, "persistence_delta": 0.2, "acceleration_delta": 0.2,
                "regime_stability": 0.2, "drift_penalty": 0.1,
            })

    def test_rollback_band_ordered(self):
        with pytest.raises(ValidationError):
            RollbackConfig(activation_ratio=1.1, recovery_ratio=1.0)

    def test_probability_band_ordered(self):
        with pytest.raises(ValidationError):
            GateConfig(win_probability_floor=0.8, win_probability_ceiling=0.5)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            GateConfig(min_fricton_ratio=2.0)


class TestLoadEngineConfig:
    """JSON loader."""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "governance.json"
        path.write_text(json.dumps({
            "version": "2.1.0",
            "gates": {"min_friction_ratio": 2.5},
            "router": {"short_engine_enabled": True, "short_shadow_only": False},
        }))

        config = load_engine_config(path)

        assert config.version == "2.1.0"
        assert config.gates.min_friction_ratio == 2.5
        assert config.router.short_engine_enabled
        assert config.health == HealthConfig()

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_engine_config(tmp_path / "absent.json") == EngineConfig()

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_engine_config(path)

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"rollback": {"activation_ratio": 2.0}}))

        with pytest.raises(ConfigurationError):
            load_engine_config(path)

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "env.json"
        path.write_text(json.dumps({"version": "3.0.0"}))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_engine_config().version == "3.0.0"

    def test_no_path_configured(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)

        assert load_engine_config() == EngineConfig()
