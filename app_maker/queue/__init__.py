"""Redis-streams job queue: producer, worker pool and result records."""

from .client import CONSUMER_GROUP, TASK_QUEUES, TaskQueue
from .result import ResultWriter
from .task import QueuedTask
from .worker import QueueWorker, TaskHandler, weighted_queue_order

__all__ = [
    "CONSUMER_GROUP",
    "QueueWorker",
    "QueuedTask",
    "ResultWriter",
    "TASK_QUEUES",
    "TaskHandler",
    "TaskQueue",
    "weighted_queue_order",
]
