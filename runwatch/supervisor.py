"""Run supervisor - launches test processes and drives their event pipelines.

Each requested run gets its own child process, RunContext, tracker and fan-out
queue; nothing mutable is shared between runs. The supervisor itself runs on
the asyncio event loop: stdout is decoded and dispatched as it arrives while
stderr is accumulated for process-level diagnostics.
"""

import asyncio
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Any

from runwatch.archive import ScreenshotArchiver
from runwatch.broadcast import TEST_FINISH, TEST_START, Broadcaster, FanOut, NullBroadcaster
from runwatch.dispatcher import EventDispatcher, RunContext
from runwatch.errors import MissingScriptError, RunInProgressError, RunwatchError
from runwatch.models import RunStatus, StepStatus, TestRun
from runwatch.notifications import NotificationService
from runwatch.store import RunStore
from runwatch.tracker import RunTracker

logger = logging.getLogger(__name__)

NON_ZERO_EXIT_MESSAGE = "Process exited with non-zero code"
MISSING_SCRIPT_MESSAGE = "No script file is configured for this test case."

# Seconds to wait for a child to exit after SIGTERM during shutdown
TERMINATE_TIMEOUT = 5.0


def parse_runner_command(value: str | None) -> list[str]:
    """Split a runner command prefix like ``"pytest -s"`` into argv."""
    if not value:
        return [sys.executable]
    return shlex.split(value)


def _cancel_all(tasks: list[asyncio.Task[Any]]) -> None:
    for task in tasks:
        task.cancel()


class Supervisor:
    """Starts runs and tracks their background pipelines.

    Args:
        store: Document store holding test case templates and run state.
        archiver: Screenshot archiver for screenshot:add events.
        scripts_dir: Directory that script paths are resolved against.
        broadcaster: Live channel for test:start/test:event/test:finish.
        notifier: Optional lifecycle notification writer.
        runner_command: argv prefix used to execute a script; defaults to
            the current Python interpreter.
    """

    def __init__(
        self,
        store: RunStore,
        archiver: ScreenshotArchiver,
        scripts_dir: Path,
        broadcaster: Broadcaster | None = None,
        notifier: NotificationService | None = None,
        runner_command: list[str] | None = None,
    ) -> None:
        self.store = store
        self.archiver = archiver
        self.scripts_dir = Path(scripts_dir)
        self.broadcaster = broadcaster or NullBroadcaster()
        self.notifier = notifier
        self.runner_command = runner_command or [sys.executable]
        self._tasks: dict[str, asyncio.Task[int | None]] = {}
        # Test ids between the active check and task registration
        self._starting: set[str] = set()

    @property
    def active_runs(self) -> list[str]:
        """Test ids whose pipeline is still running."""
        return [test_id for test_id, task in self._tasks.items() if not task.done()]

    def is_active(self, test_id: str) -> bool:
        if test_id in self._starting:
            return True
        task = self._tasks.get(test_id)
        return task is not None and not task.done()

    def build_command(self, script_path: str) -> list[str]:
        """argv used to run a test script."""
        return [*self.runner_command, str(self.scripts_dir / script_path)]

    def prepare_run(self, test_id: str) -> TestRun:
        """Validate the template and reset its run state.

        Raises:
            RunNotFoundError: If the test case does not exist.
            MissingScriptError: If the test case has no script path; the
                document is marked Failed before raising.
        """
        template = self.store.get_test_case(test_id)
        if not template.script_path:
            self.store.update_test_case(
                test_id, status=RunStatus.FAILED, last_result=MISSING_SCRIPT_MESSAGE
            )
            raise MissingScriptError(test_id)

        return RunTracker(self.store, test_id).start(template.step_names())

    async def start(self, test_id: str) -> TestRun:
        """Prepare a run and execute it in the background.

        Returns as soon as the run is accepted, not when it completes.

        Raises:
            RunInProgressError: If this test case already has an active run.
            RunNotFoundError: If the test case does not exist.
            MissingScriptError: If the test case has no script path.
        """
        if self.is_active(test_id):
            raise RunInProgressError(test_id)

        self._starting.add(test_id)
        try:
            run = await asyncio.to_thread(self.prepare_run, test_id)
            task = asyncio.create_task(self.execute(run), name=f"run-{test_id}")
            self._tasks[test_id] = task
        finally:
            self._starting.discard(test_id)
        task.add_done_callback(lambda t: self._on_task_done(test_id, t))
        return run

    async def wait(self, test_id: str) -> int | None:
        """Wait for a running test to finish and return its exit code.

        Returns None when the test id has no run in progress.
        """
        task = self._tasks.get(test_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    def _on_task_done(self, test_id: str, task: asyncio.Task[int | None]) -> None:
        if self._tasks.get(test_id) is task:
            del self._tasks[test_id]
        if task.cancelled():
            logger.warning("Run %s was cancelled", test_id)
            return
        error = task.exception()
        if error is not None:
            logger.error("Run %s crashed: %s", test_id, error)

    async def execute(self, run: TestRun) -> int | None:
        """Launch the test process for a prepared run and drive its pipeline.

        Returns:
            The child's exit code, or None if it could not be started.
        """
        test_id = run.id
        context = RunContext(test_id=test_id, step_count=len(run.steps), project=run.name)
        tracker = RunTracker(self.store, test_id)
        fanout = FanOut(self.broadcaster, name=test_id)
        fanout.start()
        fanout.post(TEST_START, {"testId": test_id})
        dispatcher = EventDispatcher(context, tracker, self.archiver, fanout, self.notifier)

        try:
            command = self.build_command(run.script_path or "")
            env = os.environ.copy()
            env["TARGET_URL"] = run.test_url or ""
            env["RUNWATCH_TEST_ID"] = test_id

            logger.info("Launching %s: %s", test_id, " ".join(command))
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                    cwd=str(self.scripts_dir),
                )
            except OSError as e:
                logger.error("Failed to launch test process for %s: %s", test_id, e)
                await self._fail(context, tracker, fanout, f"Failed to start test process: {e}")
                return None

            if process.stdout is None or process.stderr is None:
                raise RuntimeError(f"Test process for {test_id} has no output pipes")
            readers = [
                asyncio.create_task(dispatcher.consume(process.stdout)),
                asyncio.create_task(self._collect_stderr(process.stderr, context)),
            ]
            try:
                await asyncio.gather(*readers)
                code = await process.wait()
            except asyncio.CancelledError:
                _cancel_all(readers)
                await self._terminate(process, test_id)
                raise
            except Exception as e:
                logger.exception("Event pipeline for %s failed", test_id)
                _cancel_all(readers)
                await self._terminate(process, test_id)
                if not tracker.is_finalized:
                    await self._fail(context, tracker, fanout, f"Event pipeline failed: {e}")
                return process.returncode

            logger.info("Test process for %s exited with code %s", test_id, code)
            if tracker.is_finalized:
                return code

            if code != 0:
                logger.error("Test process for %s failed: %s", test_id, context.error_output)
                await self._fail(
                    context, tracker, fanout, context.error_output or NON_ZERO_EXIT_MESSAGE
                )
            else:
                await self._finish_unreported(context, tracker, fanout)
            return code
        finally:
            await fanout.close()

    async def _collect_stderr(self, reader: asyncio.StreamReader, context: RunContext) -> None:
        while True:
            line = await reader.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace")
            context.stderr.append(text)
            logger.warning("[%s stderr] %s", context.test_id, text.rstrip())

    async def _fail(
        self,
        context: RunContext,
        tracker: RunTracker,
        fanout: FanOut,
        last_result: str,
    ) -> None:
        try:
            await asyncio.to_thread(tracker.fail, last_result)
        except RunwatchError as e:
            logger.error("Could not record failure for %s: %s", context.test_id, e.message)
        fanout.post(TEST_FINISH, {"testId": context.test_id, "status": RunStatus.FAILED.value})

    async def _finish_unreported(
        self, context: RunContext, tracker: RunTracker, fanout: FanOut
    ) -> None:
        """Finalize a run whose process exited cleanly without test:end."""
        logger.warning("Run %s exited without reporting test:end", context.test_id)
        passed = context.failed == 0
        try:
            await asyncio.to_thread(tracker.finish, passed, context.elapsed_ms)
        except RunwatchError as e:
            logger.error("Could not finalize %s: %s", context.test_id, e.message)
        status = StepStatus.PASSED if passed else StepStatus.FAILED
        fanout.post(TEST_FINISH, {"testId": context.test_id, "status": status.value})

    async def _terminate(self, process: asyncio.subprocess.Process, test_id: str) -> None:
        if process.returncode is not None:
            return
        logger.info("Terminating test process for %s", test_id)
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_TIMEOUT)
        except TimeoutError:
            process.kill()
            await process.wait()

    async def shutdown(self) -> None:
        """Cancel all active runs, terminating their processes."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
