# errors.py
"""
Error taxonomy for tuning.

Load-time errors (facts, template, config, graph) abort a run before any
job starts. ActionError is local to a single job: the runner records it as
that job's Failed outcome and keeps going.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class TuningError(Exception):
    """Base exception for tuning."""
    pass


class FactsError(TuningError):
    """A machine fact (e.g. a well-known directory) could not be determined."""
    pass


class TemplateError(TuningError):
    """Malformed expression, unknown fact/function, or non-boolean condition."""
    pass


class ConfigError(TuningError):
    """Rendered configuration is not a valid job document."""
    pass


# ----------------------------------------------------------------------
# Graph errors
# ----------------------------------------------------------------------

class GraphError(TuningError):
    """Job specifications cannot be linked into an acyclic graph."""
    pass


@dataclass
class DuplicateName(GraphError):
    name: str

    def __str__(self) -> str:
        return f"duplicate job name: {self.name!r}"


@dataclass
class UnknownDependency(GraphError):
    job: str
    dependency: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"job {self.job!r} needs missing job {self.dependency!r}. "
            f"Known jobs: {sorted(self.known)}"
        )


@dataclass
class CycleDetected(GraphError):
    # members in discovery order, first member is not repeated at the end
    cycle: List[str]

    def __str__(self) -> str:
        path = " -> ".join(self.cycle + self.cycle[:1])
        return f"dependency cycle: {path}"


# ----------------------------------------------------------------------
# Action errors
# ----------------------------------------------------------------------

class ActionError(TuningError):
    """A job's action failed while running."""
    pass


@dataclass
class SpawnFailed(ActionError):
    command: str
    reason: str

    def __str__(self) -> str:
        return f"`{self.command}` could not begin: {self.reason}"


@dataclass
class NonZeroExit(ActionError):
    command: str
    code: int
    stderr: Optional[str] = None

    def __str__(self) -> str:
        msg = f"`{self.command}` exited with non-zero status {self.code}"
        if self.stderr and self.stderr.strip():
            msg += f": {self.stderr.strip().splitlines()[-1]}"
        return msg


@dataclass
class IoFailed(ActionError):
    path: str
    operation: str
    reason: str

    def __str__(self) -> str:
        return f"{self.operation} {self.path} failed: {self.reason}"
