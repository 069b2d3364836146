"""
circuit_safety/config.py
════════════════════════

:class:`VerifierConfig`, the configuration surface of the verifier.

Values come from keyword arguments, a plain dict or a JSON file; the CLI
layers command-line overrides on top with :meth:`with_overrides`.
Every value is checked in ``__post_init__`` and a bad one raises
:class:`ConfigurationError`.

JSON example::

    {
      "prime": "bn254",
      "time_budget_seconds": 2.5,
      "max_workers": 8,
      "disabled_rules": ["boolean_decomposition"]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from .budget import BudgetSpec
from .errors import ConfigurationError
from .field import is_probable_prime, parse_prime
from .heuristics import RuleKind

logger = logging.getLogger(__name__)

ALL_RULES: FrozenSet[RuleKind] = frozenset(RuleKind)


def _parse_rules(values: Iterable[Union[str, RuleKind]]) -> FrozenSet[RuleKind]:
    out = set()
    for v in values:
        if isinstance(v, RuleKind):
            out.add(v)
            continue
        try:
            out.add(RuleKind.parse(str(v)))
        except ValueError as exc:
            raise ConfigurationError(str(exc), rule=v) from None
    return frozenset(out)


@dataclass(frozen=True)
class VerifierConfig:
    """Options consumed by :class:`ModularVerifier`.

    ``prime`` of ``None`` accepts whatever field the model declares;
    otherwise the model must match it.
    """
    prime: Optional[int] = None
    time_budget_seconds: float = 5.0
    max_degree: int = 64
    max_basis_size: int = 2000
    max_variables: int = 75
    max_linear_rows: int = 256
    max_search_nodes: int = 4096
    max_workers: int = 4
    collect_all_unsafe: bool = False
    use_cache: bool = True
    decompose: bool = True
    confirm_witnesses: bool = True
    enabled_rules: FrozenSet[RuleKind] = field(default_factory=lambda: ALL_RULES)
    random_seed: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "enabled_rules", _parse_rules(self.enabled_rules))
        if self.prime is not None:
            if isinstance(self.prime, bool) or not isinstance(self.prime, int):
                raise ConfigurationError("prime must be an integer", prime=self.prime)
            if not is_probable_prime(self.prime):
                raise ConfigurationError("field modulus is not prime", prime=self.prime)
        if not isinstance(self.time_budget_seconds, (int, float)) or self.time_budget_seconds < 0:
            raise ConfigurationError(
                "time_budget_seconds must be a non-negative number",
                value=self.time_budget_seconds,
            )
        for name in ("max_degree", "max_basis_size", "max_variables",
                     "max_linear_rows", "max_search_nodes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer", value=value)
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int) \
                or self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1", value=self.max_workers)
        for name in ("collect_all_unsafe", "use_cache", "decompose", "confirm_witnesses"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"{name} must be a boolean", value=getattr(self, name))

    # ── construction ─────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerifierConfig":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        disabled: Iterable[Any] = ()
        for key, value in data.items():
            if key == "disabled_rules":
                disabled = value
                continue
            if key not in known:
                raise ConfigurationError(f"unknown configuration key {key!r}")
            kwargs[key] = value
        if isinstance(kwargs.get("prime"), str):
            try:
                kwargs["prime"] = parse_prime(kwargs["prime"])
            except ValueError:
                raise ConfigurationError("unparsable prime", prime=kwargs["prime"]) from None
        if "enabled_rules" in kwargs:
            kwargs["enabled_rules"] = _parse_rules(kwargs["enabled_rules"])
        rules = kwargs.get("enabled_rules", ALL_RULES) - _parse_rules(disabled)
        kwargs["enabled_rules"] = rules
        return cls(**kwargs)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "VerifierConfig":
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"invalid JSON in {p}: {exc.msg}", line=exc.lineno
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"{p}: top-level JSON value must be an object")
        logger.debug("loaded configuration from %s", p)
        return cls.from_dict(data)

    def with_overrides(self, **overrides: Any) -> "VerifierConfig":
        """Copy with the non-``None`` *overrides* applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"unknown configuration keys {sorted(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "enabled_rules":
                value = sorted(r.value for r in value)
            elif f.name == "prime" and value is not None:
                value = str(value)
            out[f.name] = value
        return out

    # ── derived ──────────────────────────────────────────────────────

    def budget_spec(self) -> BudgetSpec:
        return BudgetSpec(
            time_seconds=float(self.time_budget_seconds),
            max_degree=self.max_degree,
            max_basis_size=self.max_basis_size,
            max_variables=self.max_variables,
            max_search_nodes=self.max_search_nodes,
        )

    def rule_enabled(self, rule: RuleKind) -> bool:
        return rule in self.enabled_rules
