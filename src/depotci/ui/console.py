"""Console output formatting utilities for depotci."""

from __future__ import annotations

import sys
from typing import Optional


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

    def print_target(self, label: str, descriptor: str, virtual: bool = False) -> None:
        """Print one discovered target."""
        kind = "virtual" if virtual else "target"
        print(f"  {label} ({kind}, {descriptor})")

    def print_chunk_written(self, filename: str, step_count: int) -> None:
        """Print chunk emission message."""
        print(f"CHUNK: {filename} ({step_count} steps)")

    def print_pipeline_summary(
        self,
        targets: int,
        skipped: int,
        chunks: int,
    ) -> None:
        """Print pipeline generation summary."""
        print("\nPIPELINE GENERATED")
        print(f"Targets: {targets}")
        print(f"Unchanged: {skipped}")
        print(f"Chunks: {chunks}")

    def print_build_started(self, label: str, descriptor: str) -> None:
        """Print build start message."""
        print(f"\nBUILD STARTED: {label}")
        print(f"Descriptor: {descriptor}")

    def print_store_hit(self, path: str) -> None:
        """Print store hit message."""
        print(f"STORE: hit ({path})")

    def print_warning(self, message: str) -> None:
        """Print a warning diagnostic."""
        print(f"WARNING: {message}", file=sys.stderr)

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
