"""Tests for the scheduler/executor and the end-to-end apply pipeline."""

import logging
import sys
import threading

import pytest

from tuning.dag import build_dag
from tuning.errors import ConfigError, CycleDetected, NonZeroExit, TemplateError, UnknownDependency
from tuning.model import JobSpec, Outcome
from tuning.runner import OutcomeBoard, apply, load_jobs, read_config, run_graph

from tests._helpers import FakeAction


def job(name, needs=(), **kwargs):
    when = kwargs.pop("when", "true")
    os_req = kwargs.pop("os", None)
    exes = kwargs.pop("needs_executables", None)
    action = FakeAction(label=name, **kwargs)
    return JobSpec(
        action=action,
        name=name,
        needs=tuple(needs),
        when=when,
        os=frozenset(os_req) if os_req else None,
        needs_executables=frozenset(exes) if exes else None,
    )


def outcomes(report):
    return {r.name: r.outcome for r in report.results}


class TestScheduling:

    def test_unordered_jobs_all_run(self, facts):
        specs = [job("a"), job("b")]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"a": Outcome.SUCCEEDED, "b": Outcome.SUCCEEDED}
        assert [s.action.calls for s in specs] == [1, 1]
        assert report.ok and report.exit_code == 0
        assert report["a"].detail == "done"

    def test_dependencies_finish_before_dependents_start(self, facts):
        events = []
        specs = [
            job("d", ["b", "c"], events=events),
            job("a", events=events, delay=0.05),
            job("b", ["a"], events=events, delay=0.02),
            job("c", ["a"], events=events),
            job("e", events=events, delay=0.03),
        ]
        graph = build_dag(specs)
        report = run_graph(graph, facts)

        assert report.ok
        for i, spec in enumerate(specs):
            started = events.index(("start", spec.name))
            for dep in spec.needs:
                assert events.index(("end", dep)) < started

    def test_every_job_runs_exactly_once(self, facts):
        specs = [job(f"j{i}", [f"j{i - 1}"] if i % 3 else []) for i in range(12)]
        report = run_graph(build_dag(specs), facts, max_workers=4)

        assert all(r.outcome is Outcome.SUCCEEDED for r in report.results)
        assert all(s.action.calls == 1 for s in specs)

    def test_independent_jobs_overlap(self, facts):
        barrier = threading.Barrier(2, timeout=5)
        specs = [job("a", barrier=barrier), job("b", barrier=barrier)]

        report = run_graph(build_dag(specs), facts, max_workers=2)

        assert report.ok

    def test_pool_bounds_concurrency(self, facts):
        active = []
        peak = []
        lock = threading.Lock()

        class Tracking(FakeAction):
            def run(self, facts):
                with lock:
                    active.append(self.label)
                    peak.append(len(active))
                try:
                    return super().run(facts)
                finally:
                    with lock:
                        active.remove(self.label)

        specs = [JobSpec(action=Tracking(label=f"t{i}", delay=0.02), name=f"t{i}") for i in range(6)]
        report = run_graph(build_dag(specs), facts)

        assert report.ok
        assert max(peak) <= 2

    def test_rejects_zero_workers(self, facts):
        with pytest.raises(ValueError):
            run_graph(build_dag([job("a")]), facts, max_workers=0)

    def test_empty_graph(self, facts):
        report = run_graph(build_dag([]), facts)
        assert report.results == [] and report.exit_code == 0


class TestFailurePropagation:

    def test_failed_dependency_blocks(self, facts):
        specs = [job("a", error=NonZeroExit(command="a", code=2)), job("b", ["a"])]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"a": Outcome.FAILED, "b": Outcome.BLOCKED}
        assert specs[1].action.calls == 0
        assert report["a"].error.code == 2
        assert "'a'" in report["b"].detail
        assert report.exit_code == 1

    def test_blocking_is_transitive(self, facts):
        specs = [job("a", error=NonZeroExit(command="a", code=1)), job("b", ["a"]), job("c", ["b"])]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report)["c"] is Outcome.BLOCKED
        assert specs[2].action.calls == 0

    def test_independent_branch_keeps_running(self, facts):
        specs = [
            job("bad", error=NonZeroExit(command="bad", code=1)),
            job("after-bad", ["bad"]),
            job("good", delay=0.02),
            job("after-good", ["good"]),
        ]
        report = run_graph(build_dag(specs), facts, max_workers=1)

        assert outcomes(report) == {
            "bad": Outcome.FAILED,
            "after-bad": Outcome.BLOCKED,
            "good": Outcome.SUCCEEDED,
            "after-good": Outcome.SUCCEEDED,
        }

    def test_unexpected_exception_fails_only_that_job(self, facts):
        specs = [job("a", error=RuntimeError("bug")), job("b")]
        report = run_graph(build_dag(specs), facts)
        assert outcomes(report) == {"a": Outcome.FAILED, "b": Outcome.SUCCEEDED}

    def test_one_failed_need_among_many_blocks(self, facts):
        specs = [job("ok"), job("bad", error=NonZeroExit(command="bad", code=1)), job("c", ["ok", "bad"])]
        report = run_graph(build_dag(specs), facts)
        assert outcomes(report)["c"] is Outcome.BLOCKED
        assert report.failures()[0].name == "bad"


class TestConditions:

    def test_when_false_skips_without_running(self, facts):
        specs = [job("a", when="false")]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"a": Outcome.SKIPPED_BY_CONDITION}
        assert specs[0].action.calls == 0
        assert report.exit_code == 0

    def test_condition_skip_does_not_block(self, facts):
        specs = [job("a", when="is_os_windows"), job("b", ["a"])]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"a": Outcome.SKIPPED_BY_CONDITION, "b": Outcome.SUCCEEDED}
        assert specs[1].action.calls == 1

    def test_when_uses_facts(self, facts):
        specs = [job("a", when='has_executable(exe="tuning")'), job("b", when='has_executable(exe="nope")')]
        report = run_graph(build_dag(specs), facts)
        assert outcomes(report) == {"a": Outcome.SUCCEEDED, "b": Outcome.SKIPPED_BY_CONDITION}

    def test_bad_when_fails_only_that_job(self, facts):
        specs = [job("a", when="no_such_fact"), job("b", ["a"]), job("c")]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"a": Outcome.FAILED, "b": Outcome.BLOCKED, "c": Outcome.SUCCEEDED}
        assert isinstance(report["a"].error, TemplateError)
        assert specs[0].action.calls == 0

    def test_when_raising_at_runtime_fails_only_that_job(self, facts):
        specs = [job("bad", when="1 / 0 == 1"), job("after", ["bad"]), job("ok")]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"bad": Outcome.FAILED, "after": Outcome.BLOCKED, "ok": Outcome.SUCCEEDED}
        assert isinstance(report["bad"].error, TemplateError)
        assert specs[2].action.calls == 1

    def test_when_not_evaluated_for_blocked_jobs(self, facts):
        # an invalid `when` would fail the job if it were evaluated
        specs = [job("a", error=NonZeroExit(command="a", code=1)), job("b", ["a"], when="no_such_fact")]
        report = run_graph(build_dag(specs), facts)
        assert outcomes(report)["b"] is Outcome.BLOCKED


class TestRequirements:

    def test_os_requirement_unmet(self, facts):
        specs = [job("a", os=["windows"]), job("b", ["a"])]
        report = run_graph(build_dag(specs), facts)

        assert outcomes(report) == {"a": Outcome.SKIPPED_BY_REQUIREMENT, "b": Outcome.BLOCKED}
        assert specs[0].action.calls == 0
        assert report.exit_code == 1

    def test_executable_requirement(self, facts):
        specs = [job("a", needs_executables=["tuning"]), job("b", needs_executables=["nope"])]
        report = run_graph(build_dag(specs), facts)
        assert outcomes(report) == {"a": Outcome.SUCCEEDED, "b": Outcome.SKIPPED_BY_REQUIREMENT}
        assert "nope" in report["b"].detail

    def test_requirement_checked_before_when(self, facts):
        specs = [job("a", os=["windows"], when="no_such_fact")]
        report = run_graph(build_dag(specs), facts)
        assert outcomes(report) == {"a": Outcome.SKIPPED_BY_REQUIREMENT}


class TestOutcomeBoard:

    def test_terminal_written_once(self):
        board = OutcomeBoard(build_dag([job("a")]))
        board.transition(0, Outcome.RUNNING)
        board.transition(0, Outcome.SUCCEEDED)
        with pytest.raises(RuntimeError):
            board.transition(0, Outcome.FAILED)

    def test_cannot_start_twice(self):
        board = OutcomeBoard(build_dag([job("a")]))
        board.transition(0, Outcome.RUNNING)
        with pytest.raises(RuntimeError):
            board.transition(0, Outcome.RUNNING)

    def test_snapshot_is_a_copy(self):
        board = OutcomeBoard(build_dag([job("a")]))
        snap = board.snapshot()
        board.transition(0, Outcome.BLOCKED)
        assert snap[0].outcome is Outcome.PENDING


def test_transitions_are_logged(facts, caplog):
    specs = [job("a", error=NonZeroExit(command="a", code=4)), job("b", ["a"])]
    with caplog.at_level(logging.INFO, logger="tuning"):
        run_graph(build_dag(specs), facts)

    records = [(r.job, r.outcome) for r in caplog.records if hasattr(r, "job")]
    assert ("a", "running") in records
    assert ("a", "failed") in records
    assert ("b", "blocked") in records
    failed = next(r for r in caplog.records if getattr(r, "outcome", None) == "failed")
    assert "status 4" in failed.error


# ----------------------------------------------------------------------
# End to end: text -> render -> parse -> graph -> run
# ----------------------------------------------------------------------

class TestApply:

    def test_load_errors_abort_before_running(self, facts, tmp_path):
        marker = tmp_path / "ran"
        text = f'''
            [[jobs]]
            name = "a"
            type = "file"
            path = "{marker}"
            content = "x"
            needs = ["a"]
        '''
        with pytest.raises(CycleDetected):
            apply(text, facts)
        assert not marker.exists()

    def test_unknown_dependency(self, facts):
        with pytest.raises(UnknownDependency):
            load_jobs('[[jobs]]\ntype = "command"\ncommand = "x"\nneeds = ["ghost"]\n', facts)

    def test_template_error(self, facts):
        with pytest.raises(TemplateError):
            load_jobs('[[jobs]]\ntype = "command"\ncommand = "{{ nope }}"\n', facts)

    def test_config_error(self, facts):
        with pytest.raises(ConfigError):
            load_jobs('[[jobs]]\ntype = "{{ is_os_linux }}"\n', facts)

    def test_full_run(self, facts, tmp_path):
        out = tmp_path / "out"
        text = f'''
            [[jobs]]
            name = "dir"
            type = "file"
            path = "{out}"
            state = "directory"

            [[jobs]]
            name = "note"
            type = "file"
            path = "{out}/note.txt"
            content = "linux={{{{ is_os_linux }}}}"
            needs = ["dir"]

            [[jobs]]
            name = "check"
            type = "command"
            command = "{sys.executable}"
            argv = ["-c", "import sys; sys.exit(open(sys.argv[1]).read() != 'linux=true')", "{out}/note.txt"]
            needs = ["note"]

            [[jobs]]
            name = "windows only"
            type = "command"
            command = "does-not-exist"
            when = "is_os_windows"

            [[jobs]]
            name = "after skip"
            type = "command"
            command = "{sys.executable}"
            argv = ["-c", "pass"]
            needs = ["windows only"]
        '''
        report = apply(text, facts)

        assert outcomes(report) == {
            "dir": Outcome.SUCCEEDED,
            "note": Outcome.SUCCEEDED,
            "check": Outcome.SUCCEEDED,
            "windows only": Outcome.SKIPPED_BY_CONDITION,
            "after skip": Outcome.SUCCEEDED,
        }
        assert (out / "note.txt").read_text() == "linux=true"

        # second run converges without changes
        again = apply(text, facts)
        assert again["note"].detail == "unchanged"
        assert again.counts() == {"succeeded": 4, "skipped(condition)": 1}

    def test_command_failure_exit_code(self, facts):
        text = f'''
            [[jobs]]
            type = "command"
            command = "{sys.executable}"
            argv = ["-c", "import sys; sys.exit(7)"]
        '''
        report = apply(text, facts)
        result = report.results[0]
        assert result.outcome is Outcome.FAILED
        assert result.error.code == 7
        assert report.exit_code == 1


def test_read_config(write_config, tmp_path):
    path = write_config("[[jobs]]\n")
    assert read_config(path) == "[[jobs]]\n"
    with pytest.raises(FileNotFoundError):
        read_config(tmp_path / "missing.toml")


def test_read_config_rejects_non_utf8(tmp_path):
    path = tmp_path / "latin1.toml"
    path.write_bytes(b"\xff\xfe[[jobs]]\n")
    with pytest.raises(ConfigError, match="not valid UTF-8"):
        read_config(path)
