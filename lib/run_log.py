"""Run log: progress output for a rotation run.

Inside GitHub Actions (GITHUB_ACTIONS=true) lines are written as plain text
and phases/errors use workflow commands so the job log folds each phase and
annotates failures. Everywhere else output goes through a rich Console.
"""

import json
import os
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from rich.console import Console
from rich.markup import escape


def running_in_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS", "").lower() == "true"


def _escape_command_data(value: str) -> str:
    # Workflow command payloads must not contain raw newlines or '%'.
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class RunLog:
    """Structured logger collaborator for the rotation services.

    Carries no control-flow meaning: services call it purely for
    observability. ``lines`` keeps a copy of everything written, which
    tests use for assertions.
    """

    def __init__(self, console: Optional[Console] = None, github_actions: Optional[bool] = None):
        self.github_actions = running_in_github_actions() if github_actions is None else github_actions
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.lines: List[str] = []
        self.error_count = 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _plain(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def info(self, message: str) -> None:
        self.lines.append(message)
        self._plain(message)

    def warning(self, message: str) -> None:
        self.lines.append(f"WARNING: {message}")
        if self.github_actions:
            self._plain(f"::warning::{_escape_command_data(message)}")
        else:
            self.console.print(f"[yellow]⚠  {escape(message)}[/yellow]", markup=True, highlight=False)

    def error(self, message: str) -> None:
        self.error_count += 1
        self.lines.append(f"ERROR: {message}")
        if self.github_actions:
            self._plain(f"::error::{_escape_command_data(message)}")
        else:
            self.console.print(f"[red]✗ {escape(message)}[/red]", markup=True, highlight=False)

    def echo_json(self, data: Any) -> None:
        """Echo a raw API response on a single line for audit/debugging."""
        self.info(json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str))

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        """Bracket a phase with begin/end markers; the end marker is always written."""
        self.lines.append(f">> {title}")
        if self.github_actions:
            self._plain(f"::group::{title}")
        else:
            self.console.rule(f"[bold cyan]{escape(title)}[/bold cyan]", align="left")
        try:
            yield
        finally:
            self.lines.append(f"<< {title}")
            if self.github_actions:
                self._plain("::endgroup::")
            else:
                self.console.rule(style="dim")
