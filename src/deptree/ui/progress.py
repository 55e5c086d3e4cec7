"""progress display for resolution runs."""

import sys
from contextlib import contextmanager
from typing import Optional
from rich.console import Console
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TaskID,
)

from ..resolution.reporter import ResolutionReporter


class ProgressManager:
    """central manager for progress output."""

    def __init__(self, console: Optional[Console] = None):
        """
        initialize progress manager.

        args:
            console: optional rich console instance. if not provided, creates new one.
        """
        self.console = console or Console(stderr=True)
        self._enabled = self._should_show_progress()

    def _should_show_progress(self) -> bool:
        """
        check if we should show progress.

        returns false in non-interactive environments (ci/cd, piped output).
        """
        return sys.stderr.isatty() and not sys.stderr.closed

    def print(self, *args, **kwargs):
        """print through managed console to avoid interference with the spinner."""
        self.console.print(*args, **kwargs)

    @contextmanager
    def spinner(self, description: str, transient: bool = True):
        """
        create an indeterminate spinner for unknown-duration tasks.

        yields:
            tuple of (Progress instance, task id). in non-interactive mode the
            progress is a dummy and the description is printed once.
        """
        if not self._enabled:
            self.console.print(f"{description}...")
            yield _DummyProgress(), None
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=transient,
        ) as progress:
            task_id = progress.add_task(description, total=None)
            yield progress, task_id

    @contextmanager
    def resolution(self, name: str, version: str):
        """spinner that counts fetched packages while a resolution runs; yields the reporter to pass to the resolver."""
        with self.spinner(f"resolving {name}@{version}") as (progress, task_id):
            yield ProgressReporter(progress, task_id, f"resolving {name}@{version}")


class ProgressReporter(ResolutionReporter):
    """resolution reporter that keeps a spinner description up to date."""

    def __init__(self, progress, task_id: Optional[TaskID], description: str):
        self.progress = progress
        self.task_id = task_id
        self.description = description
        self.fetched_count = 0
        self.in_flight = 0

    def fetching(self, name: str):
        self.in_flight += 1
        self._refresh(name)

    def fetched(self, name: str, version_count: int):
        self.in_flight = max(0, self.in_flight - 1)
        self.fetched_count += 1
        self._refresh(name)

    def failed(self, name: str, error):
        self.in_flight = max(0, self.in_flight - 1)
        self._refresh(name)

    def retrying(self, name: str, attempt: int, delay: float):
        self.in_flight = max(0, self.in_flight - 1)
        self._refresh(f"{name} (retry {attempt})")

    def _refresh(self, current: str):
        if self.task_id is None:
            return
        self.progress.update(
            self.task_id,
            description=f"{self.description} [dim]{self.fetched_count} fetched, {self.in_flight} in flight: {current}[/dim]",
        )


class _DummyProgress:
    """dummy progress object for non-interactive mode."""

    def add_task(self, description: str, total: Optional[int] = None, **kwargs) -> TaskID:
        """add a task (no-op)."""
        return TaskID(0)

    def update(self, task_id: TaskID, **kwargs):
        """update a task (no-op)."""
        pass
