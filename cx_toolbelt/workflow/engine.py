"""Run a deploy workflow's shell steps in dependency order.

Steps whose dependencies have completed run concurrently on a thread pool,
each in its own shell process. The runner enforces a timeout for the whole
workflow in addition to the optional per-step timeouts.

Failure semantics:

- A failing step stops the scheduling of new steps. Steps already running
  are allowed to finish, and the failed step's dependents never run.
- A failing step marked ``continue_on_fail`` is recorded as a failure but
  its dependents are still scheduled.
- Disabled steps are skipped and count as completed.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional, Set

import networkx as nx

from .errors import WorkflowRunError, WorkflowStepsError
from .models import Step, Workflow
from .notifier import (
    STEP_FAILED,
    STEP_SKIPPED,
    STEP_STARTED,
    STEP_SUCCEEDED,
    WORKFLOW_FINISHED,
    WORKFLOW_STARTED,
    Event,
    Notifier,
    null_notify,
)

DEFAULT_TIMEOUT = 10 * 60.0


def default_concurrency() -> int:
    return max(1, (os.cpu_count() or 1) - 1)


class StepStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)


def _ready_steps(graph: nx.DiGraph, completed: Set[str], scheduled: Set[str]) -> List[str]:
    """Steps not yet scheduled whose predecessors have all completed, in document order."""
    return [
        name
        for name in graph.nodes
        if name not in scheduled and all(dep in completed for dep in graph.predecessors(name))
    ]


class WorkflowRunner:
    """Execute a validated ``Workflow``.

    Args:
        workflow: The workflow to run (see ``load_workflow``).
        concurrency: Maximum number of steps running at once. Defaults to
            one less than the number of CPUs, and never less than 1.
        timeout: Seconds the whole run may take.
        notifier: Receives step and workflow lifecycle events.
        log_level: At ``logging.DEBUG`` the output of every process is logged.
    """

    def __init__(
        self,
        workflow: Workflow,
        *,
        concurrency: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
        notifier: Optional[Notifier] = None,
        log_level: int = logging.INFO,
    ) -> None:
        self.workflow = workflow
        self.concurrency = max(1, concurrency) if concurrency is not None else default_concurrency()
        self.timeout = timeout
        self.notifier = notifier or null_notify
        self.log_level = log_level
        self._logger = logging.getLogger(__name__)
        self._processes: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    def _notify(self, name: str, message: str, step: Optional[str] = None, **payload) -> None:
        self.notifier(Event(name=name, message=message, step=step, payload=payload))

    def run(self) -> Dict[str, StepResult]:
        """Run every step and return the results keyed by step name.

        Raises:
            WorkflowRunError: The workflow did not finish within ``timeout``.
            WorkflowStepsError: One or more steps failed.
        """
        steps = {s.name: s for s in self.workflow.steps}
        graph = self.workflow.graph()
        completed: Set[str] = set()
        scheduled: Set[str] = set()

        results: Dict[str, StepResult] = {}
        ready: Deque[str] = deque()
        running: Dict[Future, Step] = {}
        stopped = False
        deadline = time.monotonic() + self.timeout

        self._notify(WORKFLOW_STARTED, f"Running workflow with {len(steps)} steps")
        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="cx-workflow")
        try:
            while True:
                skipped = False
                if not stopped:
                    for name in _ready_steps(graph, completed, scheduled):
                        scheduled.add(name)
                        ready.append(name)
                    while ready and len(running) < self.concurrency:
                        step = steps[ready.popleft()]
                        if step.disabled:
                            results[step.name] = StepResult(step.name, StepStatus.SKIPPED)
                            self._notify(STEP_SKIPPED, f"Step {step.name} is disabled, skipping", step.name)
                            completed.add(step.name)
                            skipped = True
                            continue
                        running[pool.submit(self._run_step, step)] = step

                if not running:
                    if skipped:
                        continue
                    break

                remaining = deadline - time.monotonic()
                done, _ = wait(running, timeout=max(remaining, 0), return_when=FIRST_COMPLETED)
                if not done:
                    raise WorkflowRunError(f"workflow did not finish within {self.timeout:g} seconds")

                for future in done:
                    step = running.pop(future)
                    result = future.result()
                    results[step.name] = result
                    if result.is_success or step.continue_on_fail:
                        completed.add(step.name)
                    else:
                        stopped = True
        except WorkflowRunError:
            self._kill_running()
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        else:
            pool.shutdown(wait=True)

        failures: List[StepResult] = [r for r in results.values() if r.status is StepStatus.FAILED]
        succeeded = sum(1 for r in results.values() if r.status is StepStatus.SUCCEEDED)
        self._notify(WORKFLOW_FINISHED, f"Workflow finished: {succeeded} succeeded, {len(failures)} failed")
        if failures:
            raise WorkflowStepsError(failures)
        return results

    def _kill_running(self) -> None:
        with self._lock:
            processes = list(self._processes)
        for proc in processes:
            proc.kill()

    def _exec(self, name: str, command: str, cwd: Optional[str], env: Dict[str, str], timeout: Optional[float]):
        """Run ``command`` through the shell; returns ``(exit_code, output, timed_out)``."""
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        with self._lock:
            self._processes.add(proc)
        try:
            try:
                output, _ = proc.communicate(timeout=timeout)
                timed_out = False
            except subprocess.TimeoutExpired:
                proc.kill()
                output, _ = proc.communicate()
                timed_out = True
        finally:
            with self._lock:
                self._processes.discard(proc)

        if self.log_level <= logging.DEBUG:
            for line in (output or "").splitlines():
                self._logger.debug("[%s] %s", name, line)
        return proc.returncode, output or "", timed_out

    def _run_step(self, step: Step) -> StepResult:
        message = f"Running step {step.name}"
        if step.show_command:
            message += f": {step.command}"
        self._notify(STEP_STARTED, message, step.name)

        env = dict(os.environ)
        env.update(step.environment())
        started = time.monotonic()
        try:
            code, output, timed_out = self._exec(step.name, step.command, step.workdir, env, step.timeout)
            error: Optional[str] = None
            if timed_out:
                error = f"timed out after {step.timeout:g} seconds"
            elif code != 0:
                error = f"exit status {code}"
            elif step.probe is not None:
                probe_code, probe_output, probe_timed_out = self._exec(
                    f"{step.name}/probe", step.probe.command, step.workdir, env, step.probe.timeout
                )
                if probe_timed_out:
                    error = f"probe timed out after {step.probe.timeout:g} seconds"
                elif probe_code != 0:
                    error = f"probe failed with exit status {probe_code}"
                    output += probe_output
        except OSError as e:
            code, output, error = None, "", str(e)

        result = StepResult(
            name=step.name,
            status=StepStatus.FAILED if error else StepStatus.SUCCEEDED,
            exit_code=code,
            output=output,
            error=error,
            duration=time.monotonic() - started,
        )
        if error:
            self._notify(STEP_FAILED, f"Step {step.name} failed: {error}", step.name, exit_code=code)
        else:
            self._notify(STEP_SUCCEEDED, f"Step {step.name} completed in {result.duration:.1f}s", step.name)
        return result
