from .facts import Facts
from .template import render, evaluate_boolean
from .config import parse_config
from .model import CommandAction, FileAction, FileState, JobSpec, JobResult, Outcome
from .dag import JobGraph, build_dag
from .runner import apply, load_jobs, run_graph, RunReport

__all__ = [
    "Facts", "render", "evaluate_boolean", "parse_config",
    "CommandAction", "FileAction", "FileState", "JobSpec", "JobResult", "Outcome",
    "JobGraph", "build_dag", "apply", "load_jobs", "run_graph", "RunReport",
]
