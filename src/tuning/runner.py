# runner.py
from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Deque, Dict, List, Optional

from .config import parse_config
from .dag import JobGraph, build_dag
from .errors import ActionError, ConfigError, TemplateError
from .facts import Facts
from .model import JobResult, Outcome
from .template import evaluate_boolean, render

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 2


# ----------------------------------------------------------------------
# Config loading (text -> graph)
# ----------------------------------------------------------------------

def read_config(path: str | Path) -> str:
    """
    Read a configuration file as raw text.

    Discovery of the default location lives in the CLI; this only checks
    that the given path exists. Undecodable text raises ConfigError.
    """
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    try:
        return config_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigError(f"{config_path} is not valid UTF-8: {e}") from e


def load_jobs(text: str, facts: Facts) -> JobGraph:
    """
    Render the raw config against the facts, parse it, and link the jobs.

    Raises TemplateError, ConfigError or GraphError; nothing has run yet
    when any of them is raised.
    """
    rendered = render(text, facts)
    specs = parse_config(rendered)
    graph = build_dag(specs)
    logger.debug("loaded %d job(s): %s", len(graph), ", ".join(graph.names))
    return graph


def apply(text: str, facts: Facts, *, max_workers: int = DEFAULT_WORKERS) -> "RunReport":
    """Load and execute a configuration in one call."""
    return run_graph(load_jobs(text, facts), facts, max_workers=max_workers)


# ----------------------------------------------------------------------
# Outcomes
# ----------------------------------------------------------------------

class OutcomeBoard:
    """
    Per-job outcomes indexed by node id.

    Every transition goes through transition(), under one lock; a job
    leaves Pending once and reaches a terminal state exactly once.
    """

    def __init__(self, graph: JobGraph):
        self._lock = threading.Lock()
        self._results = [JobResult(name=n, outcome=Outcome.PENDING) for n in graph.names]

    def get(self, i: int) -> Outcome:
        with self._lock:
            return self._results[i].outcome

    def transition(
        self,
        i: int,
        outcome: Outcome,
        *,
        detail: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> JobResult:
        with self._lock:
            result = self._results[i]
            current = result.outcome
            if current.is_terminal:
                raise RuntimeError(
                    f"job {result.name!r} is already {current.value}, cannot become {outcome.value}"
                )
            if current is Outcome.RUNNING and not outcome.is_terminal:
                raise RuntimeError(f"job {result.name!r} is already running")

            result.outcome = outcome
            result.detail = detail
            result.error = error
            return replace(result)

    def snapshot(self) -> List[JobResult]:
        with self._lock:
            return [replace(r) for r in self._results]


@dataclass
class RunReport:
    results: List[JobResult]

    @property
    def ok(self) -> bool:
        return all(r.outcome.is_ok for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def counts(self) -> Dict[str, int]:
        return dict(Counter(r.outcome.value for r in self.results))

    def failures(self) -> List[JobResult]:
        return [r for r in self.results if not r.outcome.is_ok]

    def __getitem__(self, name: str) -> JobResult:
        for r in self.results:
            if r.name == name:
                return r
        raise KeyError(name)


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

def _record(
    board: OutcomeBoard,
    graph: JobGraph,
    i: int,
    outcome: Outcome,
    *,
    detail: Optional[str] = None,
    error: Optional[BaseException] = None,
) -> None:
    board.transition(i, outcome, detail=detail, error=error)

    name = graph.names[i]
    extra = {"job": name, "outcome": outcome.value}
    if error is not None:
        extra["error"] = str(error)
        logger.error("job %s: %s: %s", name, outcome.value, error, extra=extra)
    elif detail:
        logger.info("job %s: %s (%s)", name, outcome.value, detail, extra=extra)
    else:
        logger.info("job %s: %s", name, outcome.value, extra=extra)


def _settle(graph: JobGraph, facts: Facts, board: OutcomeBoard, ready: Deque[int]) -> None:
    """
    Resolve every Pending job whose fate is now decided.

    Repeats until a full pass changes nothing, since blocking or skipping
    one job can decide its dependents. Jobs that should run are marked
    Running and queued in the order they were found.
    """
    progress = True
    while progress:
        progress = False
        for i, spec in enumerate(graph.specs):
            if board.get(i) is not Outcome.PENDING:
                continue

            states = [(d, board.get(d)) for d in graph.needs[i]]

            blocker = next((d for d, s in states if s.blocks_dependents), None)
            if blocker is not None:
                _record(board, graph, i, Outcome.BLOCKED,
                        detail=f"needs {graph.names[blocker]!r}, which is {board.get(blocker).value}")
                progress = True
                continue

            if not all(s.is_terminal for _, s in states):
                continue

            progress = True

            reason = spec.unmet_requirement(facts)
            if reason:
                _record(board, graph, i, Outcome.SKIPPED_BY_REQUIREMENT, detail=reason)
                continue

            try:
                should_run = evaluate_boolean(spec.when, facts)
            except TemplateError as e:
                _record(board, graph, i, Outcome.FAILED, error=e)
                continue

            if not should_run:
                _record(board, graph, i, Outcome.SKIPPED_BY_CONDITION, detail=f"when: {spec.when}")
                continue

            _record(board, graph, i, Outcome.RUNNING)
            ready.append(i)


def run_graph(graph: JobGraph, facts: Facts, *, max_workers: int = DEFAULT_WORKERS) -> RunReport:
    """
    Execute a job graph.

    - A job is dispatched only once every job it needs is terminal.
    - Failed / Blocked / SkippedByRequirement block dependents;
      SkippedByCondition does not.
    - Only action.run() calls happen on worker threads; all scheduling
      decisions are made here, on the calling thread.
    - A failing job never stops independent branches.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    board = OutcomeBoard(graph)
    ready: Deque[int] = deque()
    in_flight: Dict[Future, int] = {}

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tuning-job") as pool:
        _settle(graph, facts, board, ready)

        while ready or in_flight:
            # schedule all currently ready, oldest first
            while ready:
                i = ready.popleft()
                fut = pool.submit(graph.specs[i].action.run, facts)
                in_flight[fut] = i

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            i = in_flight.pop(fut)

            try:
                detail = fut.result()
            except ActionError as e:
                _record(board, graph, i, Outcome.FAILED, error=e)
            except Exception as e:
                logger.debug("job %s raised unexpectedly", graph.names[i], exc_info=True)
                _record(board, graph, i, Outcome.FAILED, error=e)
            else:
                _record(board, graph, i, Outcome.SUCCEEDED, detail=detail)

            _settle(graph, facts, board, ready)

    results = board.snapshot()
    stuck = [r.name for r in results if not r.outcome.is_terminal]
    if stuck:
        # unreachable for an acyclic graph
        raise RuntimeError(f"jobs never reached a final state: {stuck}")

    return RunReport(results)
