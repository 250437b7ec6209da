"""
TaskExecutor, runs map and reduce tasks on a local thread pool.
This is the in-process execution substrate; the gRPC worker server wraps
the same executor for remote execution.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict

import psutil

from traitor.common.tasks import MapResult, MapTask, ReduceResult, ReduceTask
from traitor.worker.map_executor import execute_map_task
from traitor.worker.reduce_executor import execute_reduce_task

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Interface the coordinator schedules work through.

    Implementations run each task somewhere and resolve the returned future
    with the task's result. Retries and the shuffle barrier are the
    coordinator's business.
    """

    def submit_map(self, task: MapTask) -> Future:
        raise NotImplementedError

    def submit_reduce(self, task: ReduceTask) -> Future:
        raise NotImplementedError

    def shutdown(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()


class TaskExecutor(WorkerPool):
    def __init__(self, max_workers: int = 4):
        """Initialize TaskExecutor with a bounded thread pool."""
        self.max_workers = max_workers
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="traitor-task")
        self.process = psutil.Process()

        # Task state tracking
        self.task_states: Dict[str, str] = {}
        self._state_lock = threading.Lock()

    def _get_task_key(self, job_id: str, task_type: str, task_id: int) -> str:
        """Generate unique key for task state tracking."""
        return f"{job_id}_{task_type}_{task_id}"

    def get_task_state(self, job_id: str, task_type: str, task_id: int) -> str:
        with self._state_lock:
            return self.task_states.get(self._get_task_key(job_id, task_type, task_id), "UNKNOWN")

    def _update_state(self, key: str, state: str):
        with self._state_lock:
            self.task_states[key] = state

    def cleanup_task(self, job_id: str, task_type: str, task_id: int):
        """Forget a finished task; results travel back in the task's future."""
        with self._state_lock:
            self.task_states.pop(self._get_task_key(job_id, task_type, task_id), None)

    def active_task_count(self) -> int:
        with self._state_lock:
            return sum(1 for s in self.task_states.values() if s == "RUNNING")

    def get_memory_usage(self) -> float:
        """Get current memory usage in bytes."""
        return self.process.memory_info().rss

    def run_map(self, task: MapTask) -> MapResult:
        """Execute a map task in the calling thread."""
        self._update_state(self._get_task_key(task.job_id, "map", task.task_id), "RUNNING")
        try:
            result = execute_map_task(task)
        finally:
            self.cleanup_task(task.job_id, "map", task.task_id)
        logger.debug(f"Map task {task.task_id} {'completed' if result.success else 'failed'}, "
                     f"worker memory {self.get_memory_usage() / 1e6:.1f} MB")
        return result

    def run_reduce(self, task: ReduceTask) -> ReduceResult:
        """Execute a reduce task in the calling thread."""
        self._update_state(self._get_task_key(task.job_id, "reduce", task.task_id), "RUNNING")
        try:
            result = execute_reduce_task(task)
        finally:
            self.cleanup_task(task.job_id, "reduce", task.task_id)
        logger.debug(f"Reduce task {task.task_id} {'completed' if result.success else 'failed'}, "
                     f"worker memory {self.get_memory_usage() / 1e6:.1f} MB")
        return result

    def submit_map(self, task: MapTask) -> Future:
        return self.executor.submit(self.run_map, task)

    def submit_reduce(self, task: ReduceTask) -> Future:
        return self.executor.submit(self.run_reduce, task)

    def shutdown(self):
        self.executor.shutdown(wait=True)


def worker_status(executor: TaskExecutor) -> Dict[str, float]:
    """Load figures a worker reports in its heartbeat."""
    active = executor.active_task_count()
    return {
        'cpu_usage': psutil.cpu_percent(interval=None),
        'memory_rss': executor.get_memory_usage(),
        'active_tasks': active,
        'available_slots': max(0, executor.max_workers - active),
    }

