# template.py
"""
Template evaluation against machine facts.

The whole configuration file is rendered as text before it is parsed as
TOML, so anything a template emits has to stay valid TOML:
  - booleans render as `true` / `false`
  - path values are escaped for TOML basic strings (Windows backslashes)

`when` conditions are standalone expressions (no `{{ }}`) evaluated later,
at dispatch time, by evaluate_boolean().
"""

from __future__ import annotations

from pathlib import PurePath
from typing import Any, Dict

import jinja2

from .errors import TemplateError
from .facts import Facts


def escape_path(value: PurePath) -> str:
    """Escape a path so it can sit inside a double-quoted TOML string."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def _finalize_toml(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, PurePath):
        return escape_path(value)
    return value


def _environment(**kwargs: Any) -> jinja2.Environment:
    return jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        **kwargs,
    )


# Environments are safe to share between threads once built.
_TOML_ENV = _environment(finalize=_finalize_toml)
_TEXT_ENV = _environment()


def _describe(e: Exception) -> str:
    if isinstance(e, jinja2.TemplateSyntaxError):
        return f"line {e.lineno}: {e.message}"
    return str(e)


def render(text: str, facts: Facts, *, escape_paths: bool = True) -> str:
    """
    Render `text` with the facts in scope.

    Args:
        text: Raw template text.
        facts: Facts providing the template namespace.
        escape_paths: Apply TOML escaping (paths, booleans). Turn off for
                      content that is not itself TOML, e.g. file bodies.

    Raises:
        TemplateError: malformed syntax, unknown fact, bad function call, or
            any error raised while evaluating an expression.
    """
    env = _TOML_ENV if escape_paths else _TEXT_ENV
    try:
        return env.from_string(text).render(facts.as_context())
    except Exception as e:
        # includes runtime errors raised by expressions, e.g. 1 / 0
        raise TemplateError(f"unable to render template: {_describe(e)}") from e


def _condition_context(facts: Facts) -> Dict[str, Any]:
    # paths compare as strings in conditions: `home_dir == "/root"`
    return {
        k: str(v) if isinstance(v, PurePath) else v
        for k, v in facts.as_context().items()
    }


def evaluate_boolean(expr: str, facts: Facts) -> bool:
    """
    Evaluate a `when` expression such as
    `is_os_linux and not has_executable(exe="git")`.

    Raises:
        TemplateError: malformed syntax, unknown fact/function, an error
                       raised while evaluating, or a non-boolean result.
    """
    try:
        compiled = _TEXT_ENV.compile_expression(expr, undefined_to_none=False)
        result = compiled(**_condition_context(facts))
    except Exception as e:
        raise TemplateError(f"unable to evaluate {expr!r}: {_describe(e)}") from e

    if isinstance(result, jinja2.Undefined):
        raise TemplateError(f"unable to evaluate {expr!r}: unknown fact")
    if not isinstance(result, bool):
        raise TemplateError(f"{expr!r} evaluated to {result!r}, expected a boolean")
    return result
