"""Deploy workflows: load a workflow document and run its steps as a DAG."""

from .engine import StepResult, StepStatus, WorkflowRunner, default_concurrency
from .errors import WorkflowError, WorkflowRunError, WorkflowStepsError
from .models import Probe, Step, Workflow, load_workflow, parse_duration
from .notifier import Event, console_notify

__all__ = [
    "Event",
    "Probe",
    "Step",
    "StepResult",
    "StepStatus",
    "Workflow",
    "WorkflowError",
    "WorkflowRunError",
    "WorkflowRunner",
    "WorkflowStepsError",
    "console_notify",
    "default_concurrency",
    "load_workflow",
    "parse_duration",
]
