"""
Task and task result types exchanged between the coordinator and workers.
traitor.common.rpc converts them to and from worker.proto messages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import time

from traitor.common.metrics import JobMetrics


class TaskStatus(Enum):
    """Status of individual map or reduce tasks"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MapTask:
    """One map task: a single accepted archive file"""
    task_id: int
    job_id: str
    input_path: str
    intermediate_dir: str
    num_reduce_tasks: int
    job_file: Optional[str] = None
    use_combiner: bool = True


@dataclass
class ReduceTask:
    """One reduce task: every intermediate file of a partition"""
    task_id: int
    job_id: str
    partition_id: int
    output_path: str
    intermediate_files: List[str] = field(default_factory=list)
    job_file: Optional[str] = None
    compress: bool = False
    overflow_policy: str = "saturate"


@dataclass
class MapResult:
    """Outcome of a map task attempt"""
    task_id: int
    success: bool
    intermediate_files: List[str] = field(default_factory=list)
    metrics: JobMetrics = field(default_factory=JobMetrics)
    file_error: str = ""
    error_message: str = ""
    execution_time_ms: int = 0


@dataclass
class ReduceResult:
    """Outcome of a reduce task attempt"""
    task_id: int
    success: bool
    output_file: str = ""
    keys_written: int = 0
    error_message: str = ""
    execution_time_ms: int = 0


class TaskAttempt:
    """Scheduling state of a task inside the coordinator."""

    def __init__(self, task, max_retries: int = 3):
        self.task = task
        self.status = TaskStatus.PENDING
        self.retries = 0
        self.max_retries = max_retries
        self.error_message = ""
        self.start_time = None
        self.end_time = None

    @property
    def task_id(self):
        return self.task.task_id

    def start(self):
        """Mark the task as running."""
        self.status = TaskStatus.IN_PROGRESS
        self.start_time = time.time()

    def complete(self):
        """Mark task as completed."""
        self.status = TaskStatus.COMPLETED
        self.end_time = time.time()

    def fail(self, error_msg: str) -> bool:
        """Mark task as failed; returns True if another attempt is allowed."""
        self.status = TaskStatus.FAILED
        self.error_message = error_msg
        self.end_time = time.time()
        if self.retries < self.max_retries:
            self.retries += 1
            return True
        return False
