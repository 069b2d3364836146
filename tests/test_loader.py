# tests/test_loader.py
"""
Tests for model loading: JSON models, Circom artifact directories, witnesses.
"""

import json

import pytest

from circuit_safety.constraint_model import SignalRole
from circuit_safety.errors import ModelParseError, StructuralError
from circuit_safety.field import BN254_PRIME
from circuit_safety.loader import (
    load_circom_artifacts,
    load_json_model,
    load_model,
    load_witness,
    model_from_dict,
    model_to_dict,
    parse_symbols,
)
from tests.conftest import P, is_zero_circuit


# ── JSON models ─────────────────────────────────────────────────────


class TestJsonModel:

    def test_loads_signals_and_constraints(self, is_zero_json):
        model = load_json_model(is_zero_json)
        assert model.name == "IsZero"
        assert model.prime == P
        assert [s.name for s in model.inputs] == ["in"]
        assert {s.name for s in model.targets} == {"out", "inv"}
        assert model.constraint_count == 2

    def test_assignment_recorded(self, is_zero_json):
        model = load_json_model(is_zero_json)
        out = model.signal_by_name("out").index
        assert model.constraint(0).assigned_signal == out
        assert model.constraint(1).assigned_signal is None

    def test_provenance(self, is_zero_json):
        model = load_json_model(is_zero_json)
        assert model.constraint(0).provenance.template == "IsZero"

    def test_named_prime_and_default(self):
        model = model_from_dict({"prime": "bn254", "signals": ["a"], "constraints": []})
        assert model.prime == BN254_PRIME
        model = model_from_dict({"signals": [], "constraints": []})
        assert model.prime == BN254_PRIME

    def test_constant_with_value(self):
        model = model_from_dict({
            "prime": 101,
            "signals": [
                {"name": "k", "role": "const", "value": "7"},
                {"name": "y", "role": "out"},
            ],
            "constraints": ["y === k * 2"],
        })
        assert model.signal_by_name("k").value == 7
        assert model.signal_by_name("k").role is SignalRole.CONSTANT

    def test_unknown_signal_in_expression(self):
        with pytest.raises(ModelParseError):
            model_from_dict({
                "prime": 101,
                "signals": [{"name": "a", "role": "input"}],
                "constraints": ["a === b"],
            })

    def test_bad_role(self):
        with pytest.raises(ModelParseError):
            model_from_dict({"prime": 101, "signals": [{"name": "a", "role": "wat"}]})

    def test_signals_must_be_list(self):
        with pytest.raises(ModelParseError):
            model_from_dict({"prime": 101, "signals": {"a": "input"}})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text('{"signals": [', encoding="utf-8")
        with pytest.raises(ModelParseError) as info:
            load_json_model(path)
        assert info.value.line == 1

    def test_round_trip_through_dict(self):
        model = is_zero_circuit()
        again = model_from_dict(model_to_dict(model))
        assert again.prime == model.prime
        assert [c.polynomial for c in again.constraints] == \
            [c.polynomial for c in model.constraints]
        assert [c.assigned_signal for c in again.constraints] == \
            [c.assigned_signal for c in model.constraints]


# ── Circom artifacts ────────────────────────────────────────────────


class TestCircomArtifacts:

    def test_layout(self, circom_dir):
        model = load_circom_artifacts(circom_dir)
        assert model.prime == P
        one = model.signal(0)
        assert one.role is SignalRole.CONSTANT and one.value == 1
        assert model.signal(1).name == "out"
        assert model.signal(1).role is SignalRole.OUTPUT
        assert model.signal(2).role is SignalRole.INPUT
        assert model.signal(3).role is SignalRole.INTERMEDIATE

    def test_r1cs_polynomials(self, circom_dir):
        model = load_circom_artifacts(circom_dir)
        # out = 1 − in·inv  and  in·out = 0
        assert model.constraint(0).is_satisfied_by({0: 1, 1: 1, 2: 0, 3: 5})
        assert model.constraint(0).is_satisfied_by({0: 1, 1: 0, 2: 2, 3: 51})
        assert model.constraint(1).is_satisfied_by({0: 1, 1: 0, 2: 9, 3: 0})
        assert not model.constraint(1).is_satisfied_by({0: 1, 1: 1, 2: 9, 3: 0})

    def test_double_arrow_and_provenance(self, circom_dir):
        model = load_circom_artifacts(circom_dir)
        assert model.constraint(0).assigned_signal == 1
        assert model.constraint(1).assigned_signal is None
        assert model.constraint(0).provenance.template == "IsZero"

    def test_subcomponent_scope(self, circom_dir):
        tree = json.loads((circom_dir / "tree_constraints.json").read_text())
        tree["subcomponents"] = [{
            "field": str(P), "no_constraints": 1, "initial_constraint": 1,
            "node_id": 1, "template_name": "Check", "component_name": "chk",
            "number_inputs": 0, "number_outputs": 0, "number_signals": 1,
            "initial_signal": 3, "are_double_arrow": [], "subcomponents": [],
        }]
        (circom_dir / "tree_constraints.json").write_text(json.dumps(tree))
        model = load_circom_artifacts(circom_dir)
        assert model.signal(3).scope == "chk"
        assert model.constraint(1).provenance.template == "Check"
        assert model.constraint(1).provenance.component == "chk"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_circom_artifacts(tmp_path)

    def test_symbol_file(self, tmp_path):
        sym = tmp_path / "c.sym"
        sym.write_text("1,1,0,main.out\n2,2,1,main.sub.x[0]\n")
        assert parse_symbols(sym) == {1: "out", 2: "sub.x[0]"}

    def test_malformed_symbol_line(self, tmp_path):
        sym = tmp_path / "c.sym"
        sym.write_text("1,1,main.out\n")
        with pytest.raises(ModelParseError) as info:
            parse_symbols(sym)
        assert info.value.line == 1

    def test_malformed_constraint_row(self, circom_dir):
        (circom_dir / "constraints.json").write_text('{"constraints": [[{}, {}]]}')
        with pytest.raises(ModelParseError):
            load_circom_artifacts(circom_dir)


# ── dispatch and witness files ──────────────────────────────────────


class TestDispatch:

    def test_file_vs_directory(self, is_zero_json, circom_dir):
        assert load_model(is_zero_json).name == "IsZero"
        assert load_model(circom_dir).constraint_count == 2

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_model(tmp_path / "nope.json")

    def test_witness_by_index_and_name(self, tmp_path, is_zero_json):
        model = load_json_model(is_zero_json)
        path = tmp_path / "w.json"
        path.write_text(json.dumps({"0": "0", "out": "1", "inv": "-1"}))
        witness = load_witness(path, model)
        assert witness == {0: 0, 1: 1, 2: P - 1}

    def test_witness_names_need_model(self, tmp_path):
        path = tmp_path / "w.json"
        path.write_text(json.dumps({"out": "1"}))
        with pytest.raises(ModelParseError):
            load_witness(path)

    def test_witness_unknown_name(self, tmp_path, is_zero_json):
        model = load_json_model(is_zero_json)
        path = tmp_path / "w.json"
        path.write_text(json.dumps({"nope": "1"}))
        with pytest.raises(StructuralError):
            load_witness(path, model)
