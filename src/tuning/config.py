# config.py
"""
Structural parsing of a rendered configuration document.

    [[jobs]]
    name = "gitconfig"
    type = "file"
    path = "{{ home_dir }}/.gitconfig"
    src = "{{ config_dir }}/tuning/gitconfig"

    [[jobs]]
    type = "command"
    command = "git"
    argv = ["config", "--global", "--list"]
    needs = ["gitconfig"]
    when = 'has_executable(exe="git")'

Template rendering has already happened by the time text reaches
parse_config(); this module never sees `{{ }}`.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import tomli

from .errors import ConfigError
from .model import ACTION_TYPES, Action, CommandAction, FileAction, FileState, JobSpec

COMMON_KEYS = {"name", "type", "needs", "when", "os", "needs_executables"}
COMMAND_KEYS = {"command", "argv", "chdir", "env", "creates", "removes"}
FILE_KEYS = {"path", "state", "content", "src", "template", "mode", "force"}


def parse_config(text: str) -> List[JobSpec]:
    """
    Parse rendered TOML text into job specifications, in document order.

    Raises:
        ConfigError: invalid TOML, unknown keys, or wrongly typed values.
    """
    try:
        doc = tomli.loads(text)
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML: {e}") from e

    extra = sorted(set(doc) - {"jobs"})
    if extra:
        raise ConfigError(f"unexpected top-level keys: {extra}")
    if "jobs" not in doc:
        raise ConfigError("missing top-level `jobs` array ([[jobs]] tables)")

    jobs = doc["jobs"]
    if not isinstance(jobs, list):
        raise ConfigError("`jobs` must be an array of tables ([[jobs]])")

    return [_parse_job(i, raw) for i, raw in enumerate(jobs)]


def _parse_job(index: int, raw: Any) -> JobSpec:
    where = f"jobs[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a table, got {type(raw).__name__}")

    if isinstance(raw.get("name"), str):
        where = f"{where} ({raw['name']!r})"

    kind = raw.get("type")
    if kind not in ACTION_TYPES:
        raise ConfigError(f"{where}: `type` must be one of {sorted(ACTION_TYPES)}, got {kind!r}")

    allowed = COMMON_KEYS | (COMMAND_KEYS if kind == "command" else FILE_KEYS)
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ConfigError(f"{where}: unknown keys for type {kind!r}: {unknown}")

    action: Action
    if kind == "command":
        action = _parse_command(where, raw)
    else:
        action = _parse_file(where, raw)

    return JobSpec(
        action=action,
        name=_opt_str(where, raw, "name"),
        needs=_str_list(where, raw, "needs", unique=True) or (),
        when=_opt_str(where, raw, "when") or "true",
        os=_str_set(where, raw, "os"),
        needs_executables=_str_set(where, raw, "needs_executables"),
    )


def _parse_command(where: str, raw: Dict[str, Any]) -> CommandAction:
    command = _opt_str(where, raw, "command")
    if not command:
        raise ConfigError(f"{where}: command job requires `command`")

    env = raw.get("env", {})
    if not isinstance(env, dict) or not all(isinstance(v, str) for v in env.values()):
        raise ConfigError(f"{where}: `env` must be a table of strings")

    return CommandAction(
        command=command,
        argv=tuple(_str_list(where, raw, "argv") or ()),
        chdir=_opt_str(where, raw, "chdir"),
        env=dict(env),
        creates=_opt_str(where, raw, "creates"),
        removes=_opt_str(where, raw, "removes"),
    )


def _parse_file(where: str, raw: Dict[str, Any]) -> FileAction:
    path = _opt_str(where, raw, "path")
    if not path:
        raise ConfigError(f"{where}: file job requires `path`")

    state_raw = raw.get("state", FileState.FILE.value)
    try:
        state = FileState(state_raw)
    except ValueError:
        raise ConfigError(
            f"{where}: `state` must be one of {[s.value for s in FileState]}, got {state_raw!r}"
        ) from None

    content = _opt_str(where, raw, "content")
    src = _opt_str(where, raw, "src")
    if content is not None and src is not None:
        raise ConfigError(f"{where}: set either `content` or `src`, not both")
    if state is FileState.LINK and src is None:
        raise ConfigError(f"{where}: link job requires `src`")

    return FileAction(
        path=path,
        state=state,
        content=content,
        src=src,
        template=_opt_bool(where, raw, "template"),
        mode=_parse_mode(where, raw.get("mode")),
        force=_opt_bool(where, raw, "force"),
    )


def _parse_mode(where: str, value: Any) -> Optional[int]:
    """Accept `mode = 0o644`, `mode = 420` or `mode = "0644"`."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{where}: `mode` must be an integer or octal string")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        try:
            mode = int(value, 8)
        except ValueError:
            raise ConfigError(f"{where}: `mode` {value!r} is not an octal number") from None
    else:
        raise ConfigError(f"{where}: `mode` must be an integer or octal string")

    if not 0 <= mode <= 0o7777:
        raise ConfigError(f"{where}: `mode` {oct(mode)} out of range")
    return mode


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------

def _opt_str(where: str, raw: Dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{where}: `{key}` must be a string")
    return value


def _opt_bool(where: str, raw: Dict[str, Any], key: str) -> bool:
    value = raw.get(key, False)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}: `{key}` must be true or false")
    return value


def _str_list(where: str, raw: Dict[str, Any], key: str, unique: bool = False) -> Optional[Tuple[str, ...]]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{where}: `{key}` must be an array of strings")
    if unique:
        # ordered set: keep first occurrence
        return tuple(dict.fromkeys(value))
    return tuple(value)


def _str_set(where: str, raw: Dict[str, Any], key: str) -> Optional[FrozenSet[str]]:
    values = _str_list(where, raw, key, unique=True)
    return frozenset(values) if values is not None else None
