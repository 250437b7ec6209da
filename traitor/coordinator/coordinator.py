"""
Job coordinator.
Wires input selection, the map phase, the shuffle barrier and the reduce
phase into one job run on top of a worker pool.
"""

import logging
import os
import shutil
import time
from collections import defaultdict
from concurrent.futures import FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from traitor.common.config import JobConfig
from traitor.common.errors import JobFailedError, NotFoundError, OutputExistsError
from traitor.common.metrics import JobCounter, JobReport
from traitor.common.tasks import MapTask, ReduceTask, TaskAttempt
from traitor.coordinator.input_selector import InputSelector
from traitor.coordinator.job import Job, JobStatus
from traitor.worker.map_executor import partition_of_file
from traitor.worker.task_executor import TaskExecutor, WorkerPool

logger = logging.getLogger(__name__)

TEMPORARY_DIR = "_temporary"
SUCCESS_MARKER = "_SUCCESS"


@dataclass
class JobResult:
    """What the caller learns once a job has finished"""
    success: bool
    status: JobStatus
    counters: Dict[str, int] = field(default_factory=dict)
    output_files: List[str] = field(default_factory=list)
    lost_files: List[str] = field(default_factory=list)
    error_message: str = ""
    report: Optional[JobReport] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class JobCoordinator:
    """Runs one job from configuration to output."""

    def __init__(self, config: JobConfig, pool: Optional[WorkerPool] = None,
                 job_id: Optional[str] = None):
        """
        Args:
            config: Job configuration
            pool: Where tasks run; a local thread pool is created if None
            job_id: Optional fixed job id
        """
        self.config = config
        self.job = Job(config, job_id=job_id)
        self.pool = pool
        self._output_created = False
        self.intermediate_dir = os.path.join(config.output_path, TEMPORARY_DIR, self.job.job_id)
        self.report = JobReport(
            job_name=config.job_name,
            input_path=config.input_path,
            output_path=config.output_path,
            num_reduce_tasks=config.num_reducers,
        )

    def run(self) -> JobResult:
        """
        Run the job to completion

        Returns:
            JobResult; job-fatal problems give success=False

        Raises:
            ConfigurationError: If the configuration is invalid (nothing is touched)
        """
        job = self.job
        job.submit()

        owns_pool = self.pool is None
        pool = self.pool or TaskExecutor(max_workers=self.config.map_workers)
        try:
            self._prepare_output()
            job.start()
            self._discover()
            partition_files = self._run_map_phase(pool)
            self._run_reduce_phase(pool, partition_files)
            self._commit_output()
            job.mark_succeeded()
        except Exception as e:
            job.mark_failed(str(e))
        finally:
            if owns_pool:
                pool.shutdown()
            if self._output_created:
                shutil.rmtree(os.path.join(self.config.output_path, TEMPORARY_DIR), ignore_errors=True)

        return self._build_result()

    def _prepare_output(self):
        """
        Clear or refuse an existing output location

        Raises:
            OutputExistsError: If the output exists and overwrite is off
        """
        output_path = self.config.output_path
        if os.path.lexists(output_path):
            if not self.config.overwrite:
                raise OutputExistsError(f"Output path already exists: {output_path}")
            logger.info(f"clearing the output path at '{output_path}'")
            if os.path.isdir(output_path) and not os.path.islink(output_path):
                shutil.rmtree(output_path)
            else:
                os.remove(output_path)

        logger.info(f"setting output path to '{output_path}'")
        os.makedirs(self.intermediate_dir, exist_ok=True)
        self._output_created = True

    def _discover(self):
        """Select the archive files this job will read."""
        config = self.config
        logger.info(f"setting input path to '{config.input_path}'")
        selector = InputSelector(config.input_path, suffix=config.suffix, max_files=config.max_files)
        self.job.input_files = selector.select(max_workers=config.discovery_workers)
        self.job.metrics.increment(JobCounter.FILES_ACCEPTED, len(self.job.input_files))

    def _run_map_phase(self, pool: WorkerPool) -> Dict[int, List[str]]:
        """
        Run one map task per input file

        Returns:
            Intermediate files of every partition, gathered once all maps are done
        """
        config = self.config
        job = self.job
        partition_files = defaultdict(list)

        for task_id, path in enumerate(job.input_files):
            task = MapTask(
                task_id=task_id,
                job_id=job.job_id,
                input_path=path,
                intermediate_dir=self.intermediate_dir,
                num_reduce_tasks=config.num_reducers,
                job_file=config.job_file,
                use_combiner=config.use_combiner,
            )
            job.map_tasks[task_id] = TaskAttempt(task, max_retries=config.max_retries)

        def on_success(attempt: TaskAttempt, result):
            job.metrics = job.metrics.merge(result.metrics)
            if result.file_error:
                self._handle_lost_file(attempt.task.input_path, result.file_error)
            for path in result.intermediate_files:
                partition_files[partition_of_file(path)].append(path)

        self.report.num_map_tasks = len(job.map_tasks)
        self.report.map_phase_start = time.time()
        logger.info(f"Job {job.job_id}: map phase, {len(job.map_tasks)} tasks")
        self._run_tasks("Map", job.map_tasks, pool.submit_map, on_success)
        self.report.map_phase_end = time.time()

        return partition_files

    def _handle_lost_file(self, path: str, error: str):
        """
        Record a file whose contribution was lost

        Raises:
            NotFoundError: If the whole input root has disappeared
        """
        if not os.path.exists(self.config.input_path):
            raise NotFoundError(f"Input path vanished during the job: {self.config.input_path}")
        logger.warning(f"Lost contribution of {path}: {error}")
        self.job.lost_files.append(path)
        self.job.metrics.increment(JobCounter.FILES_LOST)

    def _run_reduce_phase(self, pool: WorkerPool, partition_files: Dict[int, List[str]]):
        """Run one reduce task per partition."""
        config = self.config
        job = self.job

        for partition_id in range(config.num_reducers):
            task = ReduceTask(
                task_id=partition_id,
                job_id=job.job_id,
                partition_id=partition_id,
                output_path=config.output_path,
                intermediate_files=sorted(partition_files.get(partition_id, [])),
                job_file=config.job_file,
                compress=config.compress,
                overflow_policy=config.overflow_policy,
            )
            job.reduce_tasks[partition_id] = TaskAttempt(task, max_retries=config.max_retries)

        def on_success(attempt: TaskAttempt, result):
            job.output_files.append(result.output_file)

        self.report.reduce_phase_start = time.time()
        logger.info(f"Job {job.job_id}: reduce phase, {len(job.reduce_tasks)} tasks")
        self._run_tasks("Reduce", job.reduce_tasks, pool.submit_reduce, on_success)
        self.report.reduce_phase_end = time.time()
        job.output_files.sort()

    def _run_tasks(self, phase: str, attempts: Dict[int, TaskAttempt],
                   submit: Callable, on_success: Callable):
        """
        Run every task of a phase, retrying failures; returns when all are done

        Raises:
            JobFailedError: If a task is still failing after its retries
        """
        in_flight = {}
        for attempt in attempts.values():
            attempt.start()
            in_flight[submit(attempt.task)] = attempt

        try:
            while in_flight:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    attempt = in_flight.pop(future)
                    try:
                        result = future.result()
                        error = "" if result.success else (result.error_message or "unknown error")
                    except Exception as e:
                        result, error = None, str(e)

                    if not error:
                        attempt.complete()
                        on_success(attempt, result)
                        continue

                    if not attempt.fail(error):
                        raise JobFailedError(
                            f"{phase} task {attempt.task_id} failed after {attempt.max_retries} retries: {error}")
                    logger.warning(f"{phase} task {attempt.task_id} failed ({error}), "
                                   f"retry {attempt.retries}/{attempt.max_retries}")
                    attempt.start()
                    in_flight[submit(attempt.task)] = attempt
        finally:
            for future in in_flight:
                future.cancel()

    def _commit_output(self):
        """Mark the output complete."""
        shutil.rmtree(os.path.join(self.config.output_path, TEMPORARY_DIR), ignore_errors=True)
        with open(os.path.join(self.config.output_path, SUCCESS_MARKER), 'w'):
            pass

    def _build_result(self) -> JobResult:
        job = self.job
        report = self.report
        report.end_time = job.completion_time or time.time()
        report.status = job.status.value
        report.error_message = job.error_message
        report.counters = job.metrics.to_dict()
        report.lost_files = list(job.lost_files)
        report.output_files = list(job.output_files)

        return JobResult(
            success=job.status == JobStatus.SUCCEEDED,
            status=job.status,
            counters=report.counters,
            output_files=report.output_files,
            lost_files=report.lost_files,
            error_message=job.error_message,
            report=report,
        )


def run_job(config: JobConfig, pool: Optional[WorkerPool] = None) -> JobResult:
    """Configure, run and report a job in one call."""
    return JobCoordinator(config, pool=pool).run()
