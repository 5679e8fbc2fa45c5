"""
SysGuard - Progress Bar

This module provides progress display for the CLI, with a redrawn bar on
terminals and one line per completed check for non-TTY output.
"""

import sys
import time
from dataclasses import dataclass
from typing import Optional, TextIO

from ..core.check import Outcome, Verdict


@dataclass
class ProgressState:
    """State of the current progress operation."""
    current: int = 0
    total: int = 0
    running: int = 0
    check_name: str = ""
    check_id: str = ""
    status: str = "pending"  # pending, running, pass, fail, unknown
    start_time: float = 0.0


class ProgressBar:
    """Progress bar for scan execution.

    Checks run concurrently, so the bar counts completed checks and shows
    how many are in flight. Pass ``on_progress`` as the engine's progress
    callback.

    Example:
        with ProgressBar(total=len(strategy)) as pb:
            report = run_scan(progress_callback=pb.on_progress)
    """

    # Status symbols
    SYMBOLS = {
        "pending": "○",
        "running": "◐",
        "pass": "✓",
        "fail": "✗",
        "unknown": "?",
    }

    STATUS_COLORS = {
        "pass": "green",
        "fail": "red",
        "unknown": "yellow",
        "running": "cyan",
    }

    # ANSI color codes
    COLORS = {
        "green": "\033[92m",
        "red": "\033[91m",
        "yellow": "\033[93m",
        "blue": "\033[94m",
        "cyan": "\033[96m",
        "reset": "\033[0m",
    }

    def __init__(
        self,
        total: int,
        verbose: bool = False,
        file: Optional[TextIO] = None,
        disable: bool = False,
        width: int = 40
    ) -> None:
        """Initialize the progress bar.

        Args:
            total: Total number of checks
            verbose: If True, show the label of the last completed check
            file: Output stream (defaults to sys.stderr)
            disable: If True, disable the progress bar entirely
            width: Width of the progress bar in characters
        """
        self.total = total
        self.verbose = verbose
        self.file = file or sys.stderr
        self.width = width
        self.state = ProgressState(total=total, start_time=time.time())

        self._is_tty = hasattr(self.file, 'isatty') and self.file.isatty()
        self._use_colors = self._is_tty and not disable
        self._disabled = disable or total == 0

    def _color(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        if self._use_colors:
            return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"
        return text

    def _format_time(self, seconds: float) -> str:
        """Format seconds as MM:SS."""
        mins, secs = divmod(int(seconds), 60)
        return f"{mins:02d}:{secs:02d}"

    def _render_bar(self) -> str:
        """Render the progress bar line."""
        if not self._is_tty:
            return self._render_text()

        elapsed = time.time() - self.state.start_time
        total = self.state.total
        percent = (self.state.current / total * 100) if total > 0 else 0

        filled = int(self.width * self.state.current / total) if total > 0 else 0
        bar_fill = "█" * filled + "░" * (self.width - filled)

        status_color = self.STATUS_COLORS.get(self.state.status, "blue")
        symbol = self._color(self.SYMBOLS.get(self.state.status, "○"), status_color)

        parts = [
            "\r",
            f"{symbol} ",
            f"Check {self.state.current}/{total} ",
            f"[{self._color(bar_fill, 'blue')}] ",
            f"{percent:5.1f}% ",
            f"| {self._format_time(elapsed)}",
        ]
        if self.state.running:
            parts.append(f" | {self.state.running} running")
        if self.verbose and self.state.check_name:
            parts.append(f" | {self.state.check_name[:30]}")

        return "".join(parts)

    def _render_text(self) -> str:
        """Render one line for non-TTY output (completed checks only)."""
        symbol = self.SYMBOLS.get(self.state.status, "○")
        line = f"[{symbol}] Check {self.state.current}/{self.state.total}"
        if self.state.check_name:
            line += f": {self.state.check_name}"
        return f"{line} - {self.state.status.upper()}\n"

    def on_progress(
        self,
        event: str,
        check_id: str,
        check_name: str,
        outcome: Optional[Outcome],
    ) -> None:
        """Engine progress callback.

        Args:
            event: 'start' when a check is scheduled, 'complete' when its
                outcome is emitted
            check_id: Instance id of the check
            check_name: Label of the check
            outcome: The outcome ('complete' events only)
        """
        if self._disabled:
            return

        if event == "start":
            self.state.running += 1
            if self._is_tty:
                self.state.status = "running"
                self._draw()
            return

        self.state.running = max(0, self.state.running - 1)
        self.state.current += 1
        self.state.check_id = check_id
        self.state.check_name = check_name
        self.state.status = outcome.verdict.value if outcome is not None else Verdict.UNKNOWN.value
        self._draw()

    def _draw(self) -> None:
        """Draw the current progress state."""
        if self._disabled:
            return

        self.file.write(self._render_bar())
        self.file.flush()

    def clear(self) -> None:
        """Clear the progress bar from the terminal."""
        if self._disabled or not self._is_tty:
            return

        self.file.write("\r" + " " * 100 + "\r")
        self.file.flush()

    def finish(self, message: Optional[str] = None) -> None:
        """Finish the progress bar and optionally print a summary.

        Args:
            message: Optional final message to display
        """
        if self._disabled:
            return

        if self._is_tty:
            self.clear()
        if message:
            self.file.write(message + "\n")

        self.file.flush()

    def __enter__(self) -> "ProgressBar":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.finish()


class NullProgressBar:
    """A no-op progress bar for when progress is disabled."""

    def __init__(self, *args, **kwargs) -> None:
        pass

    def on_progress(self, *args, **kwargs) -> None:
        pass

    def clear(self) -> None:
        pass

    def finish(self, *args, **kwargs) -> None:
        pass

    def __enter__(self) -> "NullProgressBar":
        return self

    def __exit__(self, *args) -> None:
        pass


def create_progress_bar(
    total: int,
    verbose: bool = False,
    disable: bool = False,
    file: Optional[TextIO] = None
) -> ProgressBar:
    """Factory function to create a progress bar.

    Args:
        total: Total number of checks
        verbose: Enable verbose output
        disable: Disable progress bar entirely
        file: Output stream

    Returns:
        ProgressBar instance (or NullProgressBar if disabled)
    """
    if disable:
        return NullProgressBar()
    return ProgressBar(total=total, verbose=verbose, file=file, disable=disable)
