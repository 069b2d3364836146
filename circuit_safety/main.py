#!/usr/bin/env python3
"""circuit_safety/main.py — CLI entry-point for the circuit safety verifier.

Usage examples
--------------
    # Verify a JSON constraint model
    circuit-safety verify iszero.json

    # Verify a directory of Circom artifacts, collecting every unsafe signal
    circuit-safety verify build/circuit --collect-all --timeout 20

    # Machine-readable report written to a file
    circuit-safety verify iszero.json --format json -o report.json

    # Dependency graph as Graphviz DOT
    circuit-safety graph iszero.json -o iszero.dot

    # Show the decomposition into clusters
    circuit-safety plan build/circuit

    # Check a witness file against a model
    circuit-safety check iszero.json witness.json

    # Show version and exit
    circuit-safety --version

Exit codes
----------
    0   Circuit is Safe (or the witness satisfies every constraint).
    1   Structural or configuration error (bad model, bad option values).
    2   Infrastructure failure (missing file, unexpected exception).
    3   Circuit is Unsafe (or the witness violates a constraint).
    4   Verdict is Unknown.

The module doubles as ``python -m circuit_safety`` via the companion
``circuit_safety/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
import threading
from pathlib import Path
from typing import Optional, Sequence, TextIO

from . import __version__
from .config import VerifierConfig
from .constraint_model import ConstraintModel
from .decomposer import Decomposer
from .dependency_graph import DependencyGraph
from .errors import ConfigurationError, StructuralError
from .heuristics import RuleKind
from .loader import load_model, load_witness
from .orchestrator import ModularVerifier
from .verdict import Verdict

_log = logging.getLogger("circuit_safety")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2
EXIT_UNSAFE: int = 3
EXIT_UNKNOWN: int = 4

_VERDICT_EXIT = {
    Verdict.SAFE: EXIT_OK,
    Verdict.UNSAFE: EXIT_UNSAFE,
    Verdict.UNKNOWN: EXIT_UNKNOWN,
}


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``circuit_safety`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("circuit_safety")
    root.setLevel(level)
    if any(getattr(h, "_circuit_safety_cli", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler._circuit_safety_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """``None`` or ``"-"`` → stdout; otherwise open *dest* for writing."""
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _write(dest: Optional[str], text: str) -> None:
    out = _open_output(dest)
    try:
        out.write(text if text.endswith("\n") else text + "\n")
    finally:
        if out is not sys.stdout:
            out.close()


def _load(raw: str) -> ConstraintModel:
    return load_model(_resolve_path(raw, "model"))


def _use_color(args: argparse.Namespace) -> bool:
    if args.color == "always":
        return True
    if args.color == "never" or args.output not in (None, "-"):
        return False
    return sys.stdout.isatty()


def _build_config(args: argparse.Namespace) -> VerifierConfig:
    config = VerifierConfig()
    if args.config:
        config = VerifierConfig.from_json_file(_resolve_path(args.config, "config"))
    config = config.with_overrides(
        time_budget_seconds=args.timeout,
        max_degree=args.max_degree,
        max_variables=args.max_vars,
        max_workers=args.workers,
        random_seed=args.seed,
    )
    if args.collect_all:
        config = config.with_overrides(collect_all_unsafe=True)
    if args.no_cache:
        config = config.with_overrides(use_cache=False)
    if args.monolithic:
        config = config.with_overrides(decompose=False)
    if args.no_confirm:
        config = config.with_overrides(confirm_witnesses=False)
    if args.disable_rule:
        disabled = set()
        for name in args.disable_rule:
            try:
                disabled.add(RuleKind.parse(name))
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from None
        config = config.with_overrides(enabled_rules=config.enabled_rules - disabled)
    return config


# ===========================================================================
# Commands
# ===========================================================================

# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------

def cmd_verify(args: argparse.Namespace) -> int:
    """Load a model, verify it and print the report."""
    config = _build_config(args)
    model = _load(args.model)
    _log.info("model %s: %s", model.name, model.summary())

    cancel = threading.Event()
    verifier = ModularVerifier(config)
    try:
        report = verifier.verify(model, cancel_event=cancel)
    except KeyboardInterrupt:
        cancel.set()
        raise

    if args.format == "json":
        _write(args.output, report.to_json())
    else:
        _write(args.output, report.to_text(color=_use_color(args), verbose=args.all))
    return _VERDICT_EXIT[report.verdict]


# ---------------------------------------------------------------------------
# graph
# ---------------------------------------------------------------------------

def cmd_graph(args: argparse.Namespace) -> int:
    """Emit the dependency graph as DOT (or its statistics as text)."""
    model = _load(args.model)
    graph = DependencyGraph(model)
    if args.stats:
        lines = [f"{k}: {v}" for k, v in graph.statistics().items()]
        _write(args.output, "\n".join(lines))
    else:
        _write(args.output, graph.to_dot(title=model.name))
    return EXIT_OK


# ---------------------------------------------------------------------------
# plan
# ---------------------------------------------------------------------------

def cmd_plan(args: argparse.Namespace) -> int:
    """List the clusters the verifier would schedule, in order."""
    model = _load(args.model)
    plan = Decomposer(model, monolithic=args.monolithic).plan()
    _write(args.output, "\n".join(plan.describe()))
    return EXIT_OK


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

def cmd_check(args: argparse.Namespace) -> int:
    """Evaluate every constraint of a model under a witness file."""
    model = _load(args.model)
    witness = load_witness(_resolve_path(args.witness, "witness"), model)
    values = dict(model.constant_assignment())
    values.update(witness)
    missing = [s.name for s in model.signals if s.index not in values]
    if missing:
        raise StructuralError(
            f"witness leaves {len(missing)} signal(s) unassigned", signals=missing[:10],
        )
    violated = model.violated_constraints(values)
    names = model.names
    lines = [f"{model.name}: {len(violated)} of {model.constraint_count} constraint(s) violated"]
    for ci in violated:
        lines.append(f"  #{ci}: {model.constraint(ci).describe(names)}")
    _write(args.output, "\n".join(lines))
    return EXIT_UNSAFE if violated else EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="circuit-safety",
        description=(
            "Modular safety verifier for arithmetic circuits.\n\n"
            "Checks that every output and intermediate signal of a\n"
            "constraint system is uniquely determined by its inputs."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              circuit-safety verify iszero.json
              circuit-safety verify build/circuit --collect-all --format json
              circuit-safety graph  iszero.json -o iszero.dot
              circuit-safety plan   build/circuit
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_model_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "model",
            metavar="MODEL",
            help="JSON model file or directory of Circom artifacts.",
        )
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    # --- verify ------------------------------------------------------------
    p_verify = subparsers.add_parser(
        "verify",
        help="Decide whether every output and intermediate is determined.",
    )
    _add_model_args(p_verify)
    p_verify.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="Report format (default: text).",
    )
    p_verify.add_argument(
        "--color",
        choices=["auto", "always", "never"],
        default="auto",
        help="Colour the text report (default: auto).",
    )
    p_verify.add_argument(
        "--all",
        action="store_true",
        help="List Safe signals in the text report as well.",
    )
    p_verify.add_argument(
        "-c", "--config",
        metavar="FILE",
        default=None,
        help="JSON configuration file; options below override it.",
    )
    g = p_verify.add_argument_group("budgets")
    g.add_argument("--timeout", type=float, default=None, metavar="SEC",
                   help="Wall-clock budget per algebraic task (default: 5).")
    g.add_argument("--max-degree", type=int, default=None, metavar="N",
                   help="Largest polynomial degree during elimination.")
    g.add_argument("--max-vars", type=int, default=None, metavar="N",
                   help="Largest ring size the algebraic verifier accepts.")
    g = p_verify.add_argument_group("strategy")
    g.add_argument("-j", "--workers", type=int, default=None, metavar="N",
                   help="Worker threads (default: 4).")
    g.add_argument("--collect-all", action="store_true",
                   help="Keep going after the first Unsafe signal.")
    g.add_argument("--no-cache", action="store_true",
                   help="Disable the verdict cache.")
    g.add_argument("--monolithic", action="store_true",
                   help="Verify the whole circuit as a single cluster.")
    g.add_argument("--no-confirm", action="store_true",
                   help="Do not extend witnesses to the whole circuit.")
    g.add_argument("--disable-rule", action="append", default=[], metavar="RULE",
                   choices=[r.value for r in RuleKind],
                   help="Disable a heuristic rule (repeatable).")
    g.add_argument("--seed", type=int, default=None, metavar="N",
                   help="Seed for witness search.")
    p_verify.set_defaults(func=cmd_verify)

    # --- graph -------------------------------------------------------------
    p_graph = subparsers.add_parser(
        "graph",
        help="Print the signal/constraint dependency graph as DOT.",
    )
    _add_model_args(p_graph)
    p_graph.add_argument(
        "--stats",
        action="store_true",
        help="Print graph statistics instead of DOT.",
    )
    p_graph.set_defaults(func=cmd_graph)

    # --- plan --------------------------------------------------------------
    p_plan = subparsers.add_parser(
        "plan",
        help="List the clusters in scheduling order.",
    )
    _add_model_args(p_plan)
    p_plan.add_argument(
        "--monolithic",
        action="store_true",
        help="Show the single-cluster plan.",
    )
    p_plan.set_defaults(func=cmd_plan)

    # --- check -------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check",
        help="Check a witness file against every constraint.",
    )
    _add_model_args(p_check)
    p_check.add_argument(
        "witness",
        metavar="WITNESS",
        help='JSON object {"signal id or name": "value"}.',
    )
    p_check.set_defaults(func=cmd_check)

    return parser


# ===========================================================================
# Main
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except (StructuralError, ConfigurationError) as exc:
        _log.error("%s", exc)
        return EXIT_ERROR
    except OSError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
