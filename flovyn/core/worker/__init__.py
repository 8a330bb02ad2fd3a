from flovyn.core.worker.base import ActivationWorker
from flovyn.core.worker.task_worker import TaskWorker
from flovyn.core.worker.workflow_worker import WorkflowWorker

__all__ = [
    'ActivationWorker',
    'TaskWorker',
    'WorkflowWorker',
]
