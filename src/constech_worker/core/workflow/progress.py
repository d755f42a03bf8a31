"""Terminal progress indicator for agent execution.

Two threads are involved while the agent runs: the exec reader thread
delivers output lines through :meth:`ProgressTracker.feed`, and a timer
thread repaints the status line. Output text is buffered and logged at
DEBUG only; it is never written to the terminal while the status line is
live.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from rich.console import Console
from rich.markup import escape

from constech_worker.core.workflow.output_parser import clean_output_text

logger = logging.getLogger(__name__)

FRAMES = [
    "[████░░░░░░]",
    "[█████░░░░░]",
    "[██████░░░░]",
    "[███████░░░]",
    "[████████░░]",
    "[█████████░]",
    "[██████████]",
    "[░█████████]",
    "[░░████████]",
    "[░░░███████]",
    "[░░░░██████]",
    "[░░░░░█████]",
    "[░░░░░░████]",
    "[░░░░░░░███]",
    "[░░░░░░░░██]",
    "[░░░░░░░░░█]",
    "[░░░░░░░░░░]",
    "[█░░░░░░░░░]",
    "[██░░░░░░░░]",
    "[███░░░░░░░]",
]


def format_elapsed(seconds: float) -> str:
    """Format elapsed seconds as MM:SS."""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


class ProgressTracker:
    """Animated status line plus an output buffer for one execution."""

    def __init__(
        self,
        console: Optional[Console] = None,
        message: str = "Executing Claude Code workflow...",
        interval: float = 0.3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.console = console or Console(stderr=True)
        self.message = message
        self.interval = interval
        self._clock = clock
        self._frame = 0
        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None
        self._lines: List[str] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._ticker: Optional[threading.Thread] = None
        self._status = None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return end - self._started_at

    def render(self) -> str:
        """Return the current status text and advance the animation."""
        frame = FRAMES[self._frame % len(FRAMES)]
        self._frame += 1
        return f"{frame} {format_elapsed(self.elapsed)}"

    def start(self) -> None:
        self._started_at = self._clock()
        self._stopped_at = None
        self._stop.clear()
        self._status = self.console.status(self.message)
        self._status.start()
        self._ticker = threading.Thread(target=self._tick, daemon=True)
        self._ticker.start()

    def _tick(self) -> None:
        while not self._stop.wait(self.interval):
            if self._status is not None:
                self._status.update(f"{self.message} {self.render()}")

    def feed(self, line: str) -> None:
        """Buffer one line of environment output."""
        with self._lock:
            self._lines.append(line)
        cleaned = clean_output_text(line).strip()
        if cleaned:
            logger.debug(f"Container output: {cleaned}")

    @property
    def output(self) -> str:
        with self._lock:
            return "".join(self._lines)

    def tail(self, count: int = 50) -> str:
        with self._lock:
            return "".join(self._lines[-count:])

    def stop(self) -> None:
        self._stop.set()
        if self._started_at is not None and self._stopped_at is None:
            self._stopped_at = self._clock()
        if self._ticker is not None:
            self._ticker.join(timeout=2)
            self._ticker = None
        if self._status is not None:
            self._status.stop()
            self._status = None

    def succeed(self, message: str) -> None:
        self.stop()
        self.console.print(f"[green]✔[/green] {escape(message)} ({format_elapsed(self.elapsed)})")

    def fail(self, message: str) -> None:
        self.stop()
        self.console.print(f"[red]✖[/red] {escape(message)} ({format_elapsed(self.elapsed)})")
