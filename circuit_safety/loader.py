"""
circuit_safety/loader.py
════════════════════════

Builds :class:`ConstraintModel` instances from files.

Two input formats are understood:

**JSON model** (hand-written or produced by other tools)::

    {
      "name": "IsZero",
      "prime": "bn254",
      "signals": [
        {"name": "in",  "role": "input"},
        {"name": "out", "role": "output"},
        {"name": "inv", "role": "intermediate"}
      ],
      "constraints": [
        {"expr": "inv * in - 1 + out === 0", "template": "IsZero"},
        "in * out === 0"
      ]
    }

**Circom artifacts directory** as written by the instrumented compiler::

    constraints.json        {"constraints": [[A, B, C], ...]}   A·B − C = 0
    <circuit>.sym           id,witness,component,main.path.name
    tree_constraints.json   component tree: field, signal and constraint
                            ranges, template names, `<==` pairs

Signal 0 of a Circom circuit is the constant one.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .constraint_model import ConstraintModel, ModelBuilder, SignalRole
from .errors import ModelParseError, StructuralError
from .expression_parser import ConstraintParser
from .field import BN254_PRIME, parse_prime
from .polynomial import Polynomial

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CONSTRAINTS_FILE = "constraints.json"
TREE_FILE = "tree_constraints.json"


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ModelParseError(
            f"invalid JSON: {exc.msg}", source=str(path), line=exc.lineno, column=exc.colno,
        ) from exc


def _field_value(raw: Any, source: str, what: str) -> int:
    if isinstance(raw, bool):
        raise ModelParseError(f"{what} must be an integer", source=source)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip(), 0) if raw.strip()[:2].lower() == "0x" else int(raw.strip())
        except ValueError:
            pass
    raise ModelParseError(f"{what} {raw!r} is not an integer", source=source)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — JSON MODEL FORMAT
# ═══════════════════════════════════════════════════════════════════

def model_from_dict(data: Mapping[str, Any], source: str = "<dict>") -> ConstraintModel:
    if not isinstance(data, Mapping):
        raise ModelParseError("model must be a JSON object", source=source)
    raw_prime = data.get("prime", BN254_PRIME)
    if isinstance(raw_prime, str):
        try:
            prime = parse_prime(raw_prime)
        except ValueError:
            raise ModelParseError(f"unparsable prime {raw_prime!r}", source=source) from None
    else:
        prime = _field_value(raw_prime, source, "prime")

    builder = ModelBuilder(prime, name=str(data.get("name", Path(source).stem or "circuit")))
    signals = data.get("signals")
    if not isinstance(signals, list):
        raise ModelParseError("'signals' must be a list", source=source)
    for pos, entry in enumerate(signals):
        if isinstance(entry, str):
            entry = {"name": entry, "role": "intermediate"}
        if not isinstance(entry, Mapping) or "name" not in entry:
            raise ModelParseError(f"signal #{pos} needs a name", source=source)
        try:
            role = SignalRole.parse(str(entry.get("role", "intermediate")))
        except ValueError as exc:
            raise ModelParseError(str(exc), source=source) from None
        value = entry.get("value")
        if value is not None:
            value = _field_value(value, source, f"value of {entry['name']}") % prime
        builder.signal(str(entry["name"]), role, str(entry.get("scope", "main")), value)

    def resolve(name: str) -> int:
        return builder.handle(name)

    parser = ConstraintParser(prime, resolve)
    constraints = data.get("constraints", [])
    if not isinstance(constraints, list):
        raise ModelParseError("'constraints' must be a list", source=source)
    for pos, entry in enumerate(constraints):
        if isinstance(entry, str):
            entry = {"expr": entry}
        if not isinstance(entry, Mapping) or "expr" not in entry:
            raise ModelParseError(f"constraint #{pos} needs an 'expr'", source=source)
        try:
            parsed = parser.parse(str(entry["expr"]), source=source, line=None)
        except StructuralError as exc:
            if isinstance(exc, ModelParseError):
                raise
            raise ModelParseError(f"constraint #{pos}: {exc}", source=source) from exc
        builder.add(
            parsed.polynomial,
            parsed.assigned_signal,
            template=str(entry.get("template", "")),
            component=str(entry.get("component", "")),
        )
    return builder.build()


def load_json_model(path: PathLike) -> ConstraintModel:
    p = Path(path)
    model = model_from_dict(_read_json(p), source=str(p))
    logger.info("loaded %s from %s", model, p)
    return model


def model_to_dict(model: ConstraintModel) -> Dict[str, Any]:
    """Inverse of :func:`model_from_dict` (constraints as ``P === 0``)."""
    names = model.names
    signals = []
    for s in model.signals:
        entry: Dict[str, Any] = {"name": s.name, "role": s.role.value, "scope": s.scope}
        if s.value is not None:
            entry["value"] = str(s.value)
        signals.append(entry)
    constraints = []
    for c in model.constraints:
        expr = f"{c.polynomial.to_string(names)} === 0"
        if c.assigned_signal is not None:
            coeff = c.polynomial.linear_coefficient(c.assigned_signal)
            rest = c.polynomial - Polynomial.variable(c.assigned_signal, model.prime, coeff)
            # a·x + r = 0  ⇔  x <== −r / a, kept symbolic when a == ±1
            if coeff == 1:
                expr = f"{names[c.assigned_signal]} <== {(-rest).to_string(names)}"
            elif coeff == model.prime - 1:
                expr = f"{names[c.assigned_signal]} <== {rest.to_string(names)}"
        entry = {"expr": expr}
        if c.provenance.template:
            entry["template"] = c.provenance.template
        if c.provenance.component:
            entry["component"] = c.provenance.component
        constraints.append(entry)
    return {
        "name": model.name,
        "prime": str(model.prime),
        "signals": signals,
        "constraints": constraints,
    }


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — CIRCOM ARTIFACTS
# ═══════════════════════════════════════════════════════════════════

def _walk_tree(node: Mapping[str, Any], depth: int = 0) -> Iterator[Tuple[int, Mapping[str, Any]]]:
    yield depth, node
    for child in node.get("subcomponents", []) or []:
        yield from _walk_tree(child, depth + 1)


def parse_symbols(path: Path) -> Dict[int, str]:
    """``id -> name`` from a Circom ``.sym`` file (leading ``main.`` dropped)."""
    names: Dict[int, str] = {}
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            parts = line.split(",", 3)
            if len(parts) != 4:
                raise ModelParseError(
                    "expected 4 comma-separated fields", source=str(path), line=lineno,
                )
            try:
                index = int(parts[0])
            except ValueError:
                raise ModelParseError(
                    f"bad signal id {parts[0]!r}", source=str(path), line=lineno,
                ) from None
            full = parts[3].strip()
            names[index] = full.split(".", 1)[1] if full.startswith("main.") else full
    return names


def parse_r1cs_constraints(path: Path, prime: int) -> List[Polynomial]:
    data = _read_json(path)
    rows = data.get("constraints") if isinstance(data, Mapping) else None
    if not isinstance(rows, list):
        raise ModelParseError("missing 'constraints' array", source=str(path))
    polys: List[Polynomial] = []
    for pos, row in enumerate(rows):
        if not isinstance(row, list) or len(row) != 3:
            raise ModelParseError(f"constraint #{pos} must be [A, B, C]", source=str(path))
        linear = []
        for part in row:
            if not isinstance(part, Mapping):
                raise ModelParseError(
                    f"constraint #{pos} has a non-object term", source=str(path),
                )
            coeffs = {
                _field_value(k, str(path), "signal id"): _field_value(v, str(path), "coefficient")
                for k, v in part.items()
            }
            linear.append(Polynomial.linear(coeffs, prime))
        a, b, c = linear
        polys.append(a * b - c)
    return polys


def _find_symbol_file(directory: Path) -> Optional[Path]:
    found = sorted(directory.glob("*.sym"))
    return found[0] if found else None


def load_circom_artifacts(directory: PathLike) -> ConstraintModel:
    root = Path(directory)
    cons_path = root / CONSTRAINTS_FILE
    tree_path = root / TREE_FILE
    for required in (cons_path, tree_path):
        if not required.exists():
            raise FileNotFoundError(str(required))

    tree = _read_json(tree_path)
    if not isinstance(tree, Mapping):
        raise ModelParseError("component tree must be an object", source=str(tree_path))
    prime = _field_value(tree.get("field", BN254_PRIME), str(tree_path), "field")
    polys = parse_r1cs_constraints(cons_path, prime)
    sym_path = _find_symbol_file(root)
    names = parse_symbols(sym_path) if sym_path is not None else {}

    main_start = int(tree.get("initial_signal", 1))
    n_out = int(tree.get("number_outputs", 0))
    n_in = int(tree.get("number_inputs", 0))
    n_main = int(tree.get("number_signals", 0))
    count = max(
        [main_start + n_main]
        + [k + 1 for k in names]
        + [v + 1 for p in polys for v in p.variables]
    )

    scope = ["main"] * count
    constraint_owner: Dict[int, Tuple[int, str, str]] = {}
    assigned: Dict[int, int] = {}
    for depth, node in _walk_tree(tree):
        component = str(node.get("component_name", "main")) or "main"
        template = str(node.get("template_name", ""))
        start = int(node.get("initial_signal", 0))
        if depth:
            for s in range(start, min(count, start + int(node.get("number_signals", 0)))):
                scope[s] = component
        first = int(node.get("initial_constraint", 0))
        for ci in range(first, first + int(node.get("no_constraints", 0))):
            previous = constraint_owner.get(ci)
            if previous is None or previous[0] < depth:
                constraint_owner[ci] = (depth, template, component)
        for pair in node.get("are_double_arrow", []) or []:
            ci, sig = int(pair[0]), int(pair[1])
            assigned[ci] = sig

    builder = ModelBuilder(prime, name=root.name or "circuit")
    for s in range(count):
        name = names.get(s, "one" if s == 0 else f"signal_{s}")
        if s == 0:
            builder.constant(name, 1)
        elif main_start <= s < main_start + n_out:
            builder.output(name, "main")
        elif main_start + n_out <= s < main_start + n_out + n_in:
            builder.input(name, "main")
        else:
            builder.intermediate(name, scope[s])

    for ci, poly in enumerate(polys):
        owner = constraint_owner.get(ci, (0, str(tree.get("template_name", "")), "main"))
        sig = assigned.get(ci)
        if sig is not None and sig not in poly.variables:
            logger.warning("constraint %d: assigned signal %d does not occur; ignored", ci, sig)
            sig = None
        builder.add(poly, sig, template=owner[1], component=owner[2])

    model = builder.build()
    logger.info("loaded %s from circom artifacts in %s", model, root)
    return model


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — DISPATCH / WITNESS FILES
# ═══════════════════════════════════════════════════════════════════

def load_model(path: PathLike) -> ConstraintModel:
    """Directory → Circom artifacts, file → JSON model."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(p))
    if p.is_dir():
        return load_circom_artifacts(p)
    return load_json_model(p)


def load_witness(path: PathLike, model: Optional[ConstraintModel] = None) -> Dict[int, int]:
    """``{"id or name": "value"}`` → handle-keyed assignment."""
    p = Path(path)
    data = _read_json(p)
    if not isinstance(data, Mapping):
        raise ModelParseError("witness must be a JSON object", source=str(p))
    out: Dict[int, int] = {}
    for key, raw in data.items():
        value = _field_value(raw, str(p), f"value of {key}")
        if key.strip().isdigit():
            handle = int(key)
        elif model is not None:
            handle = model.signal_by_name(key).index
        else:
            raise ModelParseError(f"signal {key!r} needs a model to resolve", source=str(p))
        out[handle] = value % model.prime if model is not None else value
    return out
