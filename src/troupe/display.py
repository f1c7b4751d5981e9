"""
Troupe Console Output

Human-facing banners, per-host result lines and the final recap. All of
it is suppressed in JSON mode, where the run report is the only output.
Diagnostics go through the standard ``logging`` tree instead.
"""

import logging
import sys
from typing import Dict, Optional, TextIO

from troupe.engine.results import COUNTERS, HostStats, TaskResult

RESET = '\033[0m'
COLORS = {
    'ok': '\033[32m',  # Green
    'changed': '\033[33m',  # Yellow
    'failed': '\033[31m',  # Red
    'unreachable': '\033[31m',
    'skipped': '\033[36m',  # Cyan
    'ignored': '\033[35m',
    'rescued': '\033[35m',
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(verbosity: int = 0) -> None:
    """
    Configure the ``troupe`` logger tree.

    0 shows warnings only, -v adds info, -vv and above add debug.
    """
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger = logging.getLogger("troupe")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


class Display:
    """Console printer for one run."""

    def __init__(
        self,
        verbosity: int = 0,
        json_output: bool = False,
        stream: Optional[TextIO] = None,
        color: Optional[bool] = None,
    ):
        self.verbosity = verbosity
        self.json_output = json_output
        self.stream = stream or sys.stdout
        if color is None:
            color = hasattr(self.stream, 'isatty') and self.stream.isatty()
        self.color = color

    def _print(self, text: str = "", err: bool = False) -> None:
        print(text, file=sys.stderr if err else self.stream)

    def _paint(self, label: str, text: str) -> str:
        if not self.color or label not in COLORS:
            return text
        return f"{COLORS[label]}{text}{RESET}"

    def banner(self, title: str) -> None:
        """Print a banner line like ``PLAY [web] ****``."""
        if self.json_output:
            return
        self._print(f"\n{title} " + "*" * max(3, 70 - len(title)))

    def playbook(self, path: str) -> None:
        self.banner(f"PLAYBOOK: {path}")

    def play(self, name: str) -> None:
        self.banner(f"PLAY [{name}]")

    def warning(self, msg: str) -> None:
        if not self.json_output:
            self._print(self._paint('changed', f"[WARNING]: {msg}"), err=True)

    def error(self, msg: str) -> None:
        if not self.json_output:
            self._print(self._paint('failed', f"ERROR: {msg}"), err=True)

    def task_result(self, result: TaskResult) -> None:
        """One line per (host, task) result."""
        if self.json_output:
            return

        label = result.status.value
        if result.ignored:
            label = 'ignored'
        elif result.rescued:
            label = 'rescued'

        line = self._paint(label, f"{label}: [{result.host}]") + f" {result.task_name}"
        if result.msg and (result.failed or self.verbosity > 0 or "msg" in result.payload):
            line += f" => {result.msg}"
        self._print(line)

        if self.verbosity >= 2:
            for key in ('stdout', 'stderr'):
                value = result.payload.get(key)
                if value:
                    self._print(f"    {key}: {value[:500]}")

        if result.loop_results and self.verbosity >= 1:
            for item in result.loop_results:
                self._print(f"    - {item.status.value}: {item.msg}" if item.msg else f"    - {item.status.value}")

    def recap(self, stats: Dict[str, HostStats]) -> None:
        """Print the final per-host summary."""
        if self.json_output:
            return

        self.banner("PLAY RECAP")
        for host, host_stats in stats.items():
            parts = []
            for name in COUNTERS:
                count = getattr(host_stats, name)
                text = f"{name}={count}"
                parts.append(self._paint(name, text) if count else text)
            self._print(f"{host:30} : " + "  ".join(parts))
