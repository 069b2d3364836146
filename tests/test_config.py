# tests/test_config.py
"""
Tests for VerifierConfig construction, validation and budgets.
"""

import json
import threading

import pytest

from circuit_safety.budget import BudgetSpec
from circuit_safety.config import ALL_RULES, VerifierConfig
from circuit_safety.errors import ConfigurationError, ResourceExhausted, VerificationCancelled
from circuit_safety.field import BN254_PRIME
from circuit_safety.heuristics import RuleKind


# ── defaults and validation ─────────────────────────────────────────


class TestValidation:

    def test_defaults(self):
        cfg = VerifierConfig()
        assert cfg.prime is None
        assert cfg.enabled_rules == ALL_RULES
        assert cfg.use_cache and cfg.decompose and cfg.confirm_witnesses
        assert not cfg.collect_all_unsafe

    @pytest.mark.parametrize("kwargs", [
        {"prime": 100},
        {"prime": "101"},
        {"time_budget_seconds": -1},
        {"max_degree": -2},
        {"max_variables": 1.5},
        {"max_workers": 0},
        {"max_workers": True},
        {"use_cache": "yes"},
    ])
    def test_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            VerifierConfig(**kwargs)

    def test_rules_from_strings(self):
        cfg = VerifierConfig(enabled_rules=["linear-solve", RuleKind.FREE_SIGNAL])
        assert cfg.enabled_rules == {RuleKind.LINEAR_SOLVE, RuleKind.FREE_SIGNAL}
        assert cfg.rule_enabled(RuleKind.LINEAR_SOLVE)
        assert not cfg.rule_enabled(RuleKind.DIRECT_ASSIGNMENT)

    def test_unknown_rule(self):
        with pytest.raises(ConfigurationError):
            VerifierConfig(enabled_rules=["magic"])


# ── dicts and files ─────────────────────────────────────────────────


class TestFromDict:

    def test_named_prime(self):
        assert VerifierConfig.from_dict({"prime": "bn254"}).prime == BN254_PRIME

    def test_hex_prime(self):
        assert VerifierConfig.from_dict({"prime": "0x65"}).prime == 101

    def test_garbage_prime(self):
        with pytest.raises(ConfigurationError):
            VerifierConfig.from_dict({"prime": "not-a-number"})

    def test_disabled_rules(self):
        cfg = VerifierConfig.from_dict({"disabled_rules": ["boolean_decomposition"]})
        assert RuleKind.BOOLEAN_DECOMPOSITION not in cfg.enabled_rules
        assert RuleKind.DIRECT_ASSIGNMENT in cfg.enabled_rules

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="unknown configuration key"):
            VerifierConfig.from_dict({"worker_count": 3})

    def test_json_file(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"max_workers": 2, "time_budget_seconds": 1.5}))
        cfg = VerifierConfig.from_json_file(path)
        assert cfg.max_workers == 2
        assert cfg.time_budget_seconds == 1.5

    def test_json_file_syntax_error(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text("{\n  \"max_workers\": ,\n}")
        with pytest.raises(ConfigurationError) as info:
            VerifierConfig.from_json_file(path)
        assert info.value.context["line"] == 2

    def test_json_file_not_object(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError):
            VerifierConfig.from_json_file(path)


class TestDerived:

    def test_overrides_skip_none(self):
        cfg = VerifierConfig(max_workers=3).with_overrides(max_workers=None, max_degree=8)
        assert cfg.max_workers == 3
        assert cfg.max_degree == 8

    def test_overrides_validate(self):
        with pytest.raises(ConfigurationError):
            VerifierConfig().with_overrides(max_workers=0)
        with pytest.raises(ConfigurationError):
            VerifierConfig().with_overrides(threads=2)

    def test_to_dict_is_json_ready(self):
        out = VerifierConfig(prime=101, enabled_rules=[RuleKind.LINEAR_SOLVE]).to_dict()
        assert out["prime"] == "101"
        assert out["enabled_rules"] == ["linear_solve"]
        json.dumps(out)

    def test_to_dict_round_trip(self):
        cfg = VerifierConfig(prime=101, max_workers=2, collect_all_unsafe=True)
        assert VerifierConfig.from_dict(cfg.to_dict()) == cfg

    def test_budget_spec(self):
        spec = VerifierConfig(time_budget_seconds=2, max_search_nodes=9).budget_spec()
        assert spec == BudgetSpec(time_seconds=2.0, max_degree=64, max_basis_size=2000,
                                  max_variables=75, max_search_nodes=9)


# ── running budgets ─────────────────────────────────────────────────


class TestBudget:

    def test_zero_time_fails_first_checkpoint(self):
        budget = BudgetSpec(time_seconds=0).start()
        with pytest.raises(ResourceExhausted) as info:
            budget.checkpoint("start")
        assert info.value.kind == "time"

    def test_stop_event_wins_over_time(self):
        stop = threading.Event()
        stop.set()
        budget = BudgetSpec(time_seconds=0).start([stop])
        with pytest.raises(VerificationCancelled):
            budget.checkpoint()

    @pytest.mark.parametrize("check,limit,kind", [
        ("check_degree", "max_degree", "degree"),
        ("check_basis", "max_basis_size", "basis"),
        ("check_variables", "max_variables", "variables"),
    ])
    def test_limits(self, check, limit, kind):
        budget = BudgetSpec(**{limit: 3}).start()
        getattr(budget, check)(3)
        with pytest.raises(ResourceExhausted) as info:
            getattr(budget, check)(4)
        assert info.value.kind == kind

    def test_search_nodes(self):
        budget = BudgetSpec(max_search_nodes=2).start()
        budget.count_search_node()
        budget.count_search_node()
        with pytest.raises(ResourceExhausted):
            budget.count_search_node()

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            ResourceExhausted("memory")
