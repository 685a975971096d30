"""Step and run state for one test case.

The tracker is the only write path to a test case's run fields. Each mutation
reads the current document, changes it and writes it back, so a document that
vanished mid-run surfaces as RunNotFoundError on the next update. The step list
is fixed at start: its length and step names never change afterwards.
"""

import logging
from datetime import datetime

from runwatch.models import RunStatus, StepRecord, StepStatus, TestRun
from runwatch.store import RunStore

logger = logging.getLogger(__name__)


def initial_steps(names: list[str]) -> list[StepRecord]:
    """Build the Pending step list for a fresh run."""
    return [StepRecord(name=name) for name in names]


class RunTracker:
    """Canonical view and mutation API for one test case's run state."""

    def __init__(self, store: RunStore, test_id: str) -> None:
        self.store = store
        self.test_id = test_id
        self._finalized = False

    @property
    def is_finalized(self) -> bool:
        """True once test:end or a process failure has set the final status."""
        return self._finalized

    def snapshot(self) -> TestRun:
        """Read the current run document."""
        return self.store.get_test_case(self.test_id)

    def start(self, step_names: list[str]) -> TestRun:
        """Reset steps from the template and mark the run In Progress."""
        steps = initial_steps(step_names)
        last_run = datetime.now().isoformat()
        self.store.update_test_case(
            self.test_id,
            status=RunStatus.IN_PROGRESS,
            steps=steps,
            last_run=last_run,
            duration=None,
        )
        self._finalized = False
        logger.info("Run %s started with %d steps", self.test_id, len(steps))
        return self.snapshot()

    def mark_in_progress(self) -> bool:
        """Move the run to In Progress unless it already is.

        Returns:
            True if the status changed.
        """
        run = self.snapshot()
        if run.status == RunStatus.IN_PROGRESS:
            return False
        self.store.update_test_case(self.test_id, status=RunStatus.IN_PROGRESS)
        return True

    def apply_step_end(
        self,
        index: int,
        status: StepStatus,
        duration: float,
        error: str | None,
    ) -> bool:
        """Record the outcome of the step at index.

        Returns:
            False if index is outside the step list (nothing written).
        """
        run = self.snapshot()
        if not 0 <= index < len(run.steps):
            return False
        step = run.steps[index]
        step.status = status
        step.duration = duration
        step.error = error or None
        self.store.update_test_case(self.test_id, steps=run.steps)
        return True

    def attach_screenshot(self, index: int, url: str) -> bool:
        """Bind an archived screenshot URL to the step at index.

        Returns:
            False if no step exists at index.
        """
        run = self.snapshot()
        if not 0 <= index < len(run.steps):
            logger.error(
                "No step at index %d for %s; available: %s",
                index,
                self.test_id,
                [f"{i}: {s.name}" for i, s in enumerate(run.steps)],
            )
            return False
        run.steps[index].screenshot_url = url
        self.store.update_test_case(self.test_id, steps=run.steps)
        return True

    def finish(self, passed: bool, duration: float) -> RunStatus:
        """Finalize the run from the test's own end report."""
        status = RunStatus.COMPLETED if passed else RunStatus.FAILED
        self._finalized = True
        self.store.update_test_case(self.test_id, status=status, duration=duration)
        return status

    def fail(self, last_result: str) -> None:
        """Finalize the run as Failed with process-level diagnostics."""
        self._finalized = True
        self.store.update_test_case(
            self.test_id, status=RunStatus.FAILED, last_result=last_result
        )
