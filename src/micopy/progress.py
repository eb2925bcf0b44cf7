"""
Console progress bar for micopy copy runs.
"""

from __future__ import annotations

import sys
from datetime import timedelta
from typing import Optional, TextIO, Tuple, Union

from colorama import Fore, Style

BAR_WIDTH = 50


def render_bar(completed: int, total: int, width: int = BAR_WIDTH) -> Tuple[str, str]:
    """Return the padded ``#`` bar and the rounded percentage for one event."""
    if total <= 0:
        return "#" * width, "100%"
    filled = min(width, width * completed // total)
    # halves round up: 1/8 shows as 13%
    percent = (200 * completed + total) // (2 * total)
    return "#" * filled + " " * (width - filled), f"{percent}%"


def format_summary(total: int, elapsed: Union[timedelta, float]) -> str:
    if not isinstance(elapsed, timedelta):
        elapsed = timedelta(seconds=elapsed)
    return f"{total} files copied in {elapsed}"


class ProgressReporter:
    """
    Draws an in-place ``[#####     ] 50%`` bar on *stream*.

    Everything drawn comes from the arguments of each call; the reporter keeps
    no counters of its own.
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        width: int = BAR_WIDTH,
        color: bool = True,
    ) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self.width = width
        self.color = color

    def update(self, completed: int, total: int) -> None:
        bar, percentage = render_bar(completed, total, self.width)
        self.stream.write(f"\r[{bar}] {percentage}")
        self.stream.flush()

    def finish(self, total: int, elapsed: Union[timedelta, float]) -> None:
        summary = format_summary(total, elapsed)
        if self.color:
            summary = Fore.GREEN + summary + Style.RESET_ALL
        # a drawn bar still owns the current line
        prefix = "\n" if total > 0 else ""
        self.stream.write(f"{prefix}{summary}\n")
        self.stream.flush()
