"""Console output formatting utilities for ruleflow."""

from __future__ import annotations

import sys
from typing import Iterable, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-job progress lines
        """
        self.debug = debug
        self.quiet = quiet

    def print_run_started(self, workflow: str, job_count: int, dry_run: bool = False) -> None:
        """Print run start information."""
        print("\nDRY RUN" if dry_run else "\nRUN STARTED")
        print(f"Workflow: {workflow}")
        print(f"Jobs: {job_count}")
        print()

    def print_job_start(self, name: str, reason: str) -> None:
        """Print job start message."""
        if not self.quiet:
            print(f"\nJOB STARTED: {name}")
            print(f"Reason: {reason}")

    def print_command(self, cmd: str) -> None:
        print(f"    {cmd}")

    def print_success(self, name: str) -> None:
        if not self.quiet:
            print(f"JOB FINISHED: {name}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "FAILED"
        """
        prefix = "JOB FAILED" if is_job else "FAILED"
        print(f"{prefix}: {name}", file=sys.stderr)
        if exit_code is not None:
            print(f"Exit code: {exit_code}", file=sys.stderr)
        if hint:
            print(f"Hint: {hint}", file=sys.stderr)
        if self.debug:
            print(f"Error details: {reason}", file=sys.stderr)
        else:
            # last line of stderr is usually the useful one
            lines = [ln for ln in (reason or "").splitlines() if ln.strip()]
            print(f"Error: {lines[-1] if lines else 'Unknown error'}", file=sys.stderr)

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print a job that a dry run would execute."""
        print(f"  {name} ({reason})")

    def print_rules(self, rules: Iterable) -> None:
        for rule in rules:
            outputs = ", ".join(rule.output_patterns) or "-"
            print(f"{rule.name}: {outputs}")

    def print_results(self, statuses: dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for job, status in statuses.items():
            status_display = status.upper() if status != "ok" else "SUCCESS"
            print(f"  {job}: {status_display}")

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
        print(message)

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
