"""Console output formatting utilities for tuning."""

from __future__ import annotations

import sys
from typing import Iterable, List, Optional

from tuning.model import JobResult, Outcome


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(self, config: str, os_name: str, job_count: int, workers: int) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Config: {config}")
        print(f"OS: {os_name}")
        print(f"Jobs: {job_count}")
        print(f"Workers: {workers}")
        print()

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print topological stages."""
        for idx, level in enumerate(levels):
            self.print_header(f"Stage {idx + 1}")
            for name in level:
                print(f"  {name}")

    def print_facts(self, rows: Iterable[tuple[str, object]]) -> None:
        """Print fact name/value pairs."""
        for key, value in rows:
            print(f"{key} = {value}")

    def print_results(self, results: List[JobResult]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for r in results:
            line = f"  {r.name}: {r.outcome.value.upper()}"
            if r.outcome is Outcome.FAILED and r.error is not None:
                line += f" ({self._first_line(str(r.error))})"
            elif r.detail and r.outcome is not Outcome.SUCCEEDED:
                line += f" ({r.detail})"
            print(line)

        failed = sum(1 for r in results if not r.outcome.is_ok)
        print(f"\n{len(results) - failed} ok, {failed} not ok")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    @staticmethod
    def _first_line(text: str) -> str:
        return text.split("\n")[0] if text else "Unknown error"


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
