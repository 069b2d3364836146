"""
circuit_safety/orchestrator.py
══════════════════════════════

Drives a decomposition plan to a circuit-level verdict.

    ┌────────────┐   ready clusters    ┌──────────────────────────────┐
    │ main thread│ ──────────────────► │ ThreadPoolExecutor (workers) │
    │  scheduler │ ◄────────────────── │  one cluster per job, its    │
    └────────────┘  newly proven sigs  │  targets in order            │
                                       └──────────────┬───────────────┘
                                                      ▼
      PENDING ──► HEURISTIC_CHECKED ──► ESCALATED ──► RESOLVED
         │                 └────────────────────────────▲
         └──────────── (free cluster, cache hit, skip) ─┘

A cluster is submitted once every cluster it depends on has finished;
Safe signals of its ancestors become parameters of its tasks.

Everything shared between workers lives in an explicit
:class:`VerificationContext`: configuration, the single-flight
:class:`VerdictCache`, the stop events and the statistics counters.
There is no module-level mutable state.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from .algebraic_verifier import AlgebraicVerifier
from .config import VerifierConfig
from .constraint_model import ConstraintModel
from .decomposer import DecompositionPlan, Decomposer, SignalCluster, VerificationTask
from .dependency_graph import DependencyGraph
from .errors import ResourceExhausted, SolverFault, VerificationCancelled
from .heuristics import HeuristicChecker, RuleKind, free_witness
from .report import TaskResult, VerificationReport
from .verdict import (
    ResolutionStage,
    TaskVerdict,
    UnknownReason,
    Verdict,
    combine,
)
from .witness import WitnessCompleter

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — SINGLE-FLIGHT CACHE
# ═══════════════════════════════════════════════════════════════════

class VerdictCache:
    """Signature → verdict, computed at most once per signature.

    The first caller for a signature owns the computation; concurrent
    callers block on the owner's future.  A computation that raises
    (cancellation included) is removed before its future is failed, so
    only completed verdicts are ever published.  Waiters that see a
    cancellation recompute if their own run is still live.

    Values are stored in canonical labels; see
    :attr:`VerificationTask.canonical_labels`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, "Future[TaskVerdict]"] = {}
        self.hits = 0
        self.misses = 0

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], TaskVerdict],
        is_live: Callable[[], bool] = lambda: True,
        publish: Callable[[TaskVerdict], bool] = lambda verdict: True,
    ) -> Tuple[TaskVerdict, bool]:
        """Return ``(verdict, was_cached)``.

        A computed verdict rejected by *publish* is handed to the callers
        already waiting on it but not kept for later ones.
        """
        while True:
            with self._lock:
                entry = self._entries.get(key)
                owner = entry is None
                if owner:
                    entry = Future()
                    self._entries[key] = entry
                    self.misses += 1
                else:
                    self.hits += 1
            if owner:
                try:
                    value = compute()
                except BaseException as exc:
                    with self._lock:
                        self._entries.pop(key, None)
                    entry.set_exception(exc)
                    raise
                if not publish(value):
                    with self._lock:
                        self._entries.pop(key, None)
                entry.set_result(value)
                return value, False
            try:
                return entry.result(), True
            except VerificationCancelled:
                if not is_live():
                    raise
                logger.debug("cached computation for %s was cancelled; retrying", key[:12])

    def peek(self, key: str) -> Optional[TaskVerdict]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not entry.done() or entry.exception() is not None:
            return None
        return entry.result()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for f in self._entries.values() if f.done())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = self.misses = 0


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — CONTEXT AND TASK RECORDS
# ═══════════════════════════════════════════════════════════════════

class VerificationContext:
    """Per-run state shared by all workers."""

    def __init__(
        self,
        config: VerifierConfig,
        cache: Optional[VerdictCache],
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.cancel_event = cancel_event or threading.Event()
        self.abort_event = threading.Event()
        self.checker = HeuristicChecker(config.enabled_rules, config.max_linear_rows)
        self.verifier = AlgebraicVerifier(seed=config.random_seed)
        self._lock = threading.Lock()
        self._stats: Dict[str, int] = {}

    @property
    def stop_events(self) -> Tuple[threading.Event, ...]:
        return (self.cancel_event, self.abort_event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def stopped(self) -> bool:
        return self.cancel_event.is_set() or self.abort_event.is_set()

    def new_budget(self):
        return self.config.budget_spec().start(self.stop_events)

    def count(self, name: str, n: int = 1) -> None:
        with self._lock:
            self._stats[name] = self._stats.get(name, 0) + n

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)


class TaskState(Enum):
    PENDING = "pending"
    HEURISTIC_CHECKED = "heuristic_checked"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


_TRANSITIONS: Dict[TaskState, FrozenSet[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.HEURISTIC_CHECKED, TaskState.RESOLVED}),
    TaskState.HEURISTIC_CHECKED: frozenset({TaskState.ESCALATED, TaskState.RESOLVED}),
    TaskState.ESCALATED: frozenset({TaskState.RESOLVED}),
    TaskState.RESOLVED: frozenset(),
}


@dataclass
class TaskRecord:
    target: int
    cluster: int
    task: Optional[VerificationTask] = None
    state: TaskState = TaskState.PENDING
    history: List[TaskState] = field(default_factory=lambda: [TaskState.PENDING])
    verdict: Optional[TaskVerdict] = None
    cache_hit: bool = False
    heuristic_ms: float = 0.0
    algebraic_ms: float = 0.0
    total_ms: float = 0.0

    def advance(self, state: TaskState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal task transition {self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)

    def resolve(self, verdict: TaskVerdict) -> None:
        self.verdict = verdict
        self.advance(TaskState.RESOLVED)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — VERIFIER
# ═══════════════════════════════════════════════════════════════════

class ModularVerifier:
    """Decompose, check heuristically, escalate, aggregate.

    Usage
    -----
    >>> verifier = ModularVerifier(VerifierConfig(max_workers=2))
    >>> report = verifier.verify(model)
    >>> report.verdict
    <Verdict.SAFE: 'safe'>

    The cache outlives single runs, so verifying several models with one
    verifier reuses verdicts across them.
    """

    def __init__(
        self,
        config: Optional[VerifierConfig] = None,
        cache: Optional[VerdictCache] = None,
    ) -> None:
        self.config = config or VerifierConfig()
        if cache is None and self.config.use_cache:
            cache = VerdictCache()
        self.cache = cache if self.config.use_cache else None

    def verify(
        self,
        model: ConstraintModel,
        cancel_event: Optional[threading.Event] = None,
    ) -> VerificationReport:
        started = time.perf_counter()
        model.validate(expected_prime=self.config.prime)
        graph = DependencyGraph(model)
        graph.check_consistency()
        decomposer = Decomposer(model, graph, monolithic=not self.config.decompose)
        plan = decomposer.plan()

        context = VerificationContext(self.config, self.cache, cancel_event)
        completer = WitnessCompleter(model, self.config.budget_spec(), self.config.random_seed)
        records: Dict[int, TaskRecord] = {
            t: TaskRecord(target=t, cluster=c.position)
            for c in plan.clusters for t in c.signals
        }

        self._schedule(context, decomposer, plan, completer, records)
        self._finalize(context, records)

        verdict = combine(r.verdict.verdict for r in records.values())
        if context.cancelled and verdict is Verdict.SAFE:
            verdict = Verdict.UNKNOWN
        results = [
            TaskResult.from_record(model, records[t])
            for c in plan.clusters for t in c.signals
        ]
        stats = context.stats
        stats["cache_entries"] = len(self.cache) if self.cache is not None else 0
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        report = VerificationReport(
            model_name=model.name,
            prime=model.prime,
            verdict=verdict,
            tasks=results,
            cancelled=context.cancelled,
            short_circuited=context.abort_event.is_set(),
            plan=plan.summary(),
            stats=stats,
            config=self.config.to_dict(),
            elapsed_ms=elapsed_ms,
            signal_names=model.names,
        )
        logger.info(
            "verified %s: %s (%d tasks, %.1f ms)",
            model.name, verdict.value, len(results), elapsed_ms,
        )
        return report

    # ── scheduling ───────────────────────────────────────────────────

    def _schedule(
        self,
        context: VerificationContext,
        decomposer: Decomposer,
        plan: DecompositionPlan,
        completer: WitnessCompleter,
        records: Dict[int, TaskRecord],
    ) -> None:
        clusters = plan.clusters
        ancestors = _ancestors(clusters)
        cluster_of = {s: c.position for c in clusters for s in c.signals}
        proven: Set[int] = set()
        finished: Set[int] = set()
        waiting = set(range(len(clusters)))

        with ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="circuit-safety",
        ) as pool:
            running: Dict[Future, int] = {}

            def submit_ready() -> None:
                for pos in sorted(waiting):
                    cluster = clusters[pos]
                    if not cluster.upstream <= finished:
                        continue
                    inherited = frozenset(
                        s for s in proven if cluster_of[s] in ancestors[pos]
                    )
                    waiting.discard(pos)
                    running[pool.submit(
                        self._run_cluster, context, decomposer, cluster,
                        inherited, completer, records,
                    )] = pos

            submit_ready()
            while running:
                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in done:
                    pos = running.pop(fut)
                    proven |= fut.result()
                    finished.add(pos)
                if not context.stopped:
                    submit_ready()

    def _run_cluster(
        self,
        context: VerificationContext,
        decomposer: Decomposer,
        cluster: SignalCluster,
        inherited: FrozenSet[int],
        completer: WitnessCompleter,
        records: Dict[int, TaskRecord],
    ) -> Set[int]:
        """Resolve the targets of *cluster* in order; return new Safe signals."""
        model = decomposer.model
        proven: Set[int] = set(inherited)
        newly: Set[int] = set()
        for target in cluster.signals:
            if context.stopped:
                break
            record = records[target]
            started = time.perf_counter()
            try:
                verdict = self._resolve(context, decomposer, cluster, proven, record)
                verdict = self._confirm(context, completer, verdict)
            except VerificationCancelled:
                record.total_ms = (time.perf_counter() - started) * 1000.0
                break
            record.total_ms = (time.perf_counter() - started) * 1000.0
            record.resolve(verdict)
            context.count(f"verdict_{verdict.verdict.value}")
            logger.debug(
                "target %s: %s via %s", model.name_of(target),
                verdict.verdict.value, verdict.stage.value,
            )
            if verdict.verdict is Verdict.SAFE:
                proven.add(target)
                newly.add(target)
            elif verdict.verdict is Verdict.UNSAFE and not self.config.collect_all_unsafe:
                logger.info("short-circuit on unsafe signal %s", model.name_of(target))
                context.abort_event.set()
        return newly

    # ── per-task resolution ──────────────────────────────────────────

    def _resolve(
        self,
        context: VerificationContext,
        decomposer: Decomposer,
        cluster: SignalCluster,
        proven: Set[int],
        record: TaskRecord,
    ) -> TaskVerdict:
        target = record.target
        if cluster.is_free:
            context.count("free_signals")
            return TaskVerdict.unsafe(
                ResolutionStage.DECOMPOSITION,
                free_witness(target),
                rule=RuleKind.FREE_SIGNAL.value,
                detail="signal appears in no constraint",
            )

        task = decomposer.build_task(target, cluster, proven)
        record.task = task
        if context.cache is None:
            return self._evaluate(context, decomposer.model, task, record)

        labels = task.canonical_labels
        back = {v: k for k, v in labels.items()}

        def compute() -> TaskVerdict:
            verdict = self._evaluate(context, decomposer.model, task, record)
            if verdict.witness is not None:
                verdict = verdict.with_witness(verdict.witness.relabel(labels))
            return verdict

        canonical, cached = context.cache.get_or_compute(
            task.signature, compute,
            is_live=lambda: not context.stopped,
            publish=_reusable,
        )
        verdict = canonical
        if canonical.witness is not None:
            verdict = canonical.with_witness(canonical.witness.relabel(back))
        if cached:
            record.cache_hit = True
            context.count("cache_hits")
            verdict = verdict.with_stage(ResolutionStage.CACHE)
        return verdict

    def _evaluate(
        self,
        context: VerificationContext,
        model: ConstraintModel,
        task: VerificationTask,
        record: TaskRecord,
    ) -> TaskVerdict:
        started = time.perf_counter()
        verdict = context.checker.check(task)
        record.heuristic_ms = (time.perf_counter() - started) * 1000.0
        record.advance(TaskState.HEURISTIC_CHECKED)
        if verdict.verdict.is_conclusive:
            context.count("heuristic_resolved")
            return verdict

        record.advance(TaskState.ESCALATED)
        context.count("algebraic_invocations")
        started = time.perf_counter()
        try:
            verdict = context.verifier.verify(task, context.new_budget())
        except VerificationCancelled:
            raise
        except ResourceExhausted as exc:
            reason = UnknownReason.TIMEOUT if exc.kind == "time" else UnknownReason.RESOURCE_LIMIT
            logger.warning(
                "budget exhausted for %s: %s", model.name_of(task.target), exc,
            )
            context.count(f"exhausted_{exc.kind}")
            verdict = TaskVerdict.unknown(ResolutionStage.ALGEBRAIC, reason, detail=str(exc))
        except Exception as exc:
            fault = exc if isinstance(exc, SolverFault) else SolverFault(
                f"{type(exc).__name__}: {exc}", task=task.describe(model),
            )
            logger.error(
                "solver fault on %s: %s", task.describe(model), fault, exc_info=True,
            )
            context.count("solver_faults")
            verdict = TaskVerdict.unknown(
                ResolutionStage.ALGEBRAIC, UnknownReason.SOLVER_FAULT, detail=str(fault),
            )
        finally:
            record.algebraic_ms = (time.perf_counter() - started) * 1000.0
        return verdict

    def _confirm(
        self,
        context: VerificationContext,
        completer: WitnessCompleter,
        verdict: TaskVerdict,
    ) -> TaskVerdict:
        if verdict.verdict is not Verdict.UNSAFE or not self.config.confirm_witnesses:
            return verdict
        assert verdict.witness is not None
        # free signals stay Unsafe without a full witness
        free = verdict.stage is ResolutionStage.DECOMPOSITION
        try:
            confirmed = completer.confirm(verdict.witness, context.stop_events)
        except ResourceExhausted as exc:
            logger.warning("witness confirmation ran out of budget: %s", exc)
            confirmed = None
        if confirmed is None and free:
            logger.info(
                "free signal %s reported with its task-level witness",
                completer.model.name_of(verdict.witness.target),
            )
            return verdict
        if confirmed is None:
            logger.warning(
                "could not extend witness for %s to the whole circuit",
                completer.model.name_of(verdict.witness.target),
            )
            context.count("unconfirmed_witnesses")
            return TaskVerdict.unknown(
                verdict.stage,
                UnknownReason.UNCONFIRMED_WITNESS,
                detail="task witness does not extend to a full witness",
            )
        return verdict.with_witness(confirmed)

    def _finalize(self, context: VerificationContext, records: Dict[int, TaskRecord]) -> None:
        reason = UnknownReason.CANCELLED if context.cancelled else UnknownReason.SKIPPED
        for record in records.values():
            if record.state is TaskState.RESOLVED:
                continue
            record.resolve(TaskVerdict.unknown(
                ResolutionStage.NONE, reason,
                detail="run cancelled" if context.cancelled else "not run after short-circuit",
            ))
            context.count(f"verdict_{Verdict.UNKNOWN.value}")


def _ancestors(clusters: List[SignalCluster]) -> List[FrozenSet[int]]:
    """Transitive upstream positions; clusters are in topological order."""
    out: List[FrozenSet[int]] = []
    for c in clusters:
        acc: Set[int] = set(c.upstream)
        for u in c.upstream:
            acc |= out[u]
        out.append(frozenset(acc))
    return out


# Outcomes a larger budget could change; never cached across runs.
_BUDGET_DEPENDENT = frozenset({
    UnknownReason.TIMEOUT,
    UnknownReason.RESOURCE_LIMIT,
    UnknownReason.NO_RATIONAL_WITNESS,
})


def _reusable(verdict: TaskVerdict) -> bool:
    return verdict.reason not in _BUDGET_DEPENDENT
