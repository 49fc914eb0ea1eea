# model.py
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple, Union

from .errors import IoFailed, NonZeroExit, SpawnFailed
from .facts import Facts
from .template import render

logger = logging.getLogger(__name__)

# (os_requirement, executable_requirement); None means "no requirement"
Requirements = Tuple[Optional[FrozenSet[str]], Optional[FrozenSet[str]]]

STDERR_TAIL = 4000


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CommandAction:
    """
    Run a program with arguments.

    `creates` / `removes` make the command idempotent the shell way:
    skip when the created path already exists, or when the removed path
    is already gone.
    """
    command: str
    argv: Tuple[str, ...] = ()
    chdir: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict, hash=False)
    creates: Optional[str] = None
    removes: Optional[str] = None

    type = "command"

    def describe(self) -> str:
        parts = []
        if self.creates:
            parts.append(f"[ ! -e {self.creates} ] &&")
        if self.removes:
            parts.append(f"[ -e {self.removes} ] &&")
        if self.chdir:
            parts.append(f"cd {self.chdir} &&")
        parts.append(self.command)
        parts.extend(self.argv)
        return " ".join(parts)

    def requirements(self) -> Requirements:
        return None, None

    def run(self, facts: Facts) -> str:
        if self.creates and os.path.exists(self.creates):
            return f"{self.creates} already created"
        if self.removes and not os.path.exists(self.removes):
            return f"{self.removes} already removed"

        env = os.environ.copy()
        env.update(self.env)

        try:
            proc = subprocess.run(
                [self.command, *self.argv],
                cwd=self.chdir,
                env=env,
                text=True,
                capture_output=True,
            )
        except OSError as e:
            # missing executable, missing cwd, permission denied
            raise SpawnFailed(command=self.describe(), reason=str(e)) from e

        if proc.stdout:
            logger.debug("%s stdout:\n%s", self.command, proc.stdout.rstrip())
        if proc.stderr:
            logger.debug("%s stderr:\n%s", self.command, proc.stderr.rstrip())

        if proc.returncode != 0:
            raise NonZeroExit(
                command=self.describe(),
                code=proc.returncode,
                stderr=proc.stderr[-STDERR_TAIL:] if proc.stderr else None,
            )
        return "exit 0"


class FileState(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    ABSENT = "absent"
    TOUCH = "touch"
    LINK = "link"


@dataclass(frozen=True)
class FileAction:
    """
    Converge a filesystem path to a desired state.

    For state "file" the desired bytes come from `content`, or from the
    file at `src`; with `template` set they are rendered against the facts
    first. Nothing is written when bytes and mode already match.
    """
    path: str
    state: FileState = FileState.FILE
    content: Optional[str] = None
    src: Optional[str] = None
    template: bool = False
    mode: Optional[int] = None
    force: bool = False

    type = "file"

    def describe(self) -> str:
        label = f"{self.state.value} {self.path}"
        if self.state is FileState.LINK and self.src:
            label += f" -> {self.src}"
        return label

    def requirements(self) -> Requirements:
        return None, None

    def run(self, facts: Facts) -> str:
        target = Path(self.path)
        handler = {
            FileState.FILE: self._ensure_file,
            FileState.DIRECTORY: self._ensure_directory,
            FileState.ABSENT: self._ensure_absent,
            FileState.TOUCH: self._touch,
            FileState.LINK: self._ensure_link,
        }[self.state]
        try:
            return handler(target, facts)
        except OSError as e:
            raise IoFailed(path=self.path, operation=self.state.value, reason=str(e)) from e

    # ---- states ----
    def _desired_bytes(self, facts: Facts) -> bytes:
        if self.src is not None:
            data = Path(self.src).read_bytes()
        else:
            data = (self.content or "").encode("utf-8")

        if self.template:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise IoFailed(
                    path=self.src or self.path,
                    operation="template",
                    reason=f"not valid UTF-8: {e}",
                ) from e
            data = render(text, facts, escape_paths=False).encode("utf-8")
        return data

    def _ensure_file(self, target: Path, facts: Facts) -> str:
        desired = self._desired_bytes(facts)
        changed = False

        current = target.read_bytes() if target.is_file() else None
        if current != desired:
            target.write_bytes(desired)
            changed = True

        if self._fix_mode(target):
            changed = True
        return "changed" if changed else "unchanged"

    def _ensure_directory(self, target: Path, facts: Facts) -> str:
        changed = False
        if not target.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            changed = True
        if self._fix_mode(target):
            changed = True
        return "changed" if changed else "unchanged"

    def _ensure_absent(self, target: Path, facts: Facts) -> str:
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)
        else:
            return "unchanged"
        return "changed"

    def _touch(self, target: Path, facts: Facts) -> str:
        target.touch()
        self._fix_mode(target)
        return "changed"

    def _ensure_link(self, target: Path, facts: Facts) -> str:
        if not self.src:
            raise IoFailed(path=self.path, operation="link", reason="no src to link to")

        if target.is_symlink():
            if os.readlink(target) == self.src:
                return "unchanged"
            target.unlink()
        elif target.exists():
            if not self.force:
                raise IoFailed(
                    path=self.path,
                    operation="link",
                    reason="path exists and is not a link (set force = true to replace)",
                )
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()

        target.symlink_to(self.src)
        return "changed"

    def _fix_mode(self, target: Path) -> bool:
        if self.mode is None:
            return False
        if (target.stat().st_mode & 0o7777) == self.mode:
            return False
        target.chmod(self.mode)
        return True


Action = Union[CommandAction, FileAction]

# Closed set of job types, keyed by the `type` tag used in config files.
ACTION_TYPES = {
    CommandAction.type: CommandAction,
    FileAction.type: FileAction,
}


# ----------------------------------------------------------------------
# Job specification
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class JobSpec:
    """
    One declared job: an action plus dependencies and gating.

    `name` is optional; the graph builder falls back to action.describe().
    `when` is kept verbatim and evaluated at dispatch time.
    """
    action: Action
    name: Optional[str] = None
    needs: Tuple[str, ...] = ()
    when: str = "true"
    os: Optional[FrozenSet[str]] = None
    needs_executables: Optional[FrozenSet[str]] = None

    def requirements(self) -> Requirements:
        """Job-level requirements merged with the action's own."""
        action_os, action_exes = self.action.requirements()
        return _narrow(self.os, action_os), _accumulate(self.needs_executables, action_exes)

    def unmet_requirement(self, facts: Facts) -> Optional[str]:
        """Return a reason string if this job cannot run on this machine."""
        os_req, exe_req = self.requirements()
        if os_req is not None and facts.os_name not in os_req:
            return f"os {facts.os_name!r} not in {sorted(os_req)}"
        for exe in sorted(exe_req or ()):
            if not facts.has_executable(exe):
                return f"executable {exe!r} not found"
        return None


def _narrow(a: Optional[FrozenSet[str]], b: Optional[FrozenSet[str]]) -> Optional[FrozenSet[str]]:
    # both OS lists must allow the current OS
    if a is None or b is None:
        return a if b is None else b
    return a & b


def _accumulate(a: Optional[FrozenSet[str]], b: Optional[FrozenSet[str]]) -> Optional[FrozenSet[str]]:
    if a is None or b is None:
        return a if b is None else b
    return a | b


# ----------------------------------------------------------------------
# Outcomes
# ----------------------------------------------------------------------

class Outcome(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_BY_CONDITION = "skipped(condition)"
    SKIPPED_BY_REQUIREMENT = "skipped(requirement)"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self not in (Outcome.PENDING, Outcome.RUNNING)

    @property
    def blocks_dependents(self) -> bool:
        return self in (Outcome.FAILED, Outcome.BLOCKED, Outcome.SKIPPED_BY_REQUIREMENT)

    @property
    def is_ok(self) -> bool:
        return self in (Outcome.SUCCEEDED, Outcome.SKIPPED_BY_CONDITION)


@dataclass
class JobResult:
    name: str
    outcome: Outcome
    detail: Optional[str] = None
    error: Optional[BaseException] = None
