"""Console output formatting utilities for phaseci."""

from __future__ import annotations

import sys
from typing import Iterable, Optional

from ..diagnostics import Diagnostic, format_diagnostic, format_summary


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # set while stdout carries machine-readable output (the job graph)
        self.stdout_reserved = False

    def _out(self):
        return sys.stderr if self.stdout_reserved else sys.stdout

    def print_build_started(self, workflow: str, job_count: int, cycle_count: int) -> None:
        """Print compile start information."""
        out = self._out()
        print("\nBUILD STARTED", file=out)
        print(f"Workflow: {workflow}", file=out)
        print(f"Jobs: {job_count}", file=out)
        print(f"Cycles: {cycle_count}", file=out)
        print(file=out)

    def print_diagnostic(self, diagnostic: Diagnostic) -> None:
        """Errors and warnings go to stderr, every time they occur."""
        stream = sys.stderr if diagnostic.severity.value in ("error", "warning") else self._out()
        print(format_diagnostic(diagnostic), file=stream)

    def print_diagnostics(self, diagnostics: Iterable[Diagnostic]) -> None:
        for d in diagnostics:
            self.print_diagnostic(d)

    def print_summary(self, diagnostics: list[Diagnostic]) -> None:
        print(f"\n{format_summary(diagnostics)}", file=sys.stderr)

    def print_phase_set(self, cycle: str, key: str, jobs: Iterable[str]) -> None:
        """Print the jobs a cycle was lowered into."""
        out = self._out()
        print(f"CYCLE: {cycle} (key: {key})", file=out)
        for name in jobs:
            print(f"  {name}", file=out)

    def print_decision(self, should_continue: bool, reason: str, iteration: int) -> None:
        print(f"DECISION: {'continue' if should_continue else 'stop'} ({reason}) after iteration {iteration}")

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

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message, file=self._out())

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
