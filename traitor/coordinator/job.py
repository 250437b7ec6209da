#!/usr/bin/env python3
"""
Job state for the coordinator
Handles the job lifecycle and task bookkeeping
"""

import logging
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from traitor.common.config import JobConfig
from traitor.common.metrics import JobMetrics
from traitor.common.tasks import TaskAttempt, TaskStatus

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Status of a job"""
    CONFIGURED = "configured"
    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = (JobStatus.SUCCEEDED, JobStatus.FAILED)


class Job:
    """Represents one run of the job"""

    def __init__(self, config: JobConfig, job_id: Optional[str] = None):
        self.job_id = job_id or uuid.uuid4().hex[:12]
        self.config = config
        self.status = JobStatus.CONFIGURED
        self.error_message = ""
        self.submit_time = None
        self.completion_time = None

        self.input_files: List[str] = []
        self.map_tasks: Dict[int, TaskAttempt] = {}
        self.reduce_tasks: Dict[int, TaskAttempt] = {}
        self.lost_files: List[str] = []
        self.output_files: List[str] = []
        self.metrics = JobMetrics()

    def submit(self):
        """Validate the configuration and hand the job over for execution."""
        if self.status != JobStatus.CONFIGURED:
            raise ValueError(f"Cannot submit job from {self.status.value}")
        self.config.validate()
        self.status = JobStatus.SUBMITTED
        self.submit_time = time.time()
        logger.info(f"Job {self.job_id} submitted: '{self.config.job_name}'")

    def start(self):
        """Transition job to running."""
        if self.status != JobStatus.SUBMITTED:
            raise ValueError(f"Cannot start job from {self.status.value}")
        self.status = JobStatus.RUNNING
        logger.info(f"Job {self.job_id} running")

    def mark_succeeded(self):
        """Mark job as succeeded if every task is done."""
        if self.status != JobStatus.RUNNING:
            raise ValueError(f"Cannot complete job from {self.status.value}")
        pending = [t for t in list(self.map_tasks.values()) + list(self.reduce_tasks.values())
                   if t.status != TaskStatus.COMPLETED]
        if pending:
            raise ValueError(f"Cannot complete job - {len(pending)} tasks not done")
        self.status = JobStatus.SUCCEEDED
        self.completion_time = time.time()
        logger.info(f"Job {self.job_id} completed successfully")

    def mark_failed(self, error_msg: str):
        """Mark job as failed with error message."""
        if self.status in TERMINAL_STATES:
            raise ValueError(f"Job {self.job_id} already {self.status.value}")
        self.status = JobStatus.FAILED
        self.error_message = error_msg
        self.completion_time = time.time()
        logger.error(f"Job {self.job_id} failed: {error_msg}")

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATES

    def get_status(self) -> Dict:
        """Current job status with progress"""
        map_done = sum(1 for t in self.map_tasks.values() if t.status == TaskStatus.COMPLETED)
        reduce_done = sum(1 for t in self.reduce_tasks.values() if t.status == TaskStatus.COMPLETED)
        total = len(self.map_tasks) + len(self.reduce_tasks)
        progress = int((map_done + reduce_done) / total * 100) if total > 0 else 0

        return {
            'job_id': self.job_id,
            'status': self.status.value,
            'progress': progress,
            'map_completed': map_done,
            'map_total': len(self.map_tasks),
            'reduce_completed': reduce_done,
            'reduce_total': len(self.reduce_tasks),
            'error_message': self.error_message,
        }
