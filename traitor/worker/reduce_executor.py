#!/usr/bin/env python3
"""
Reduce Task Executor
Reads the intermediate files of one partition, groups values by key,
applies the bounded sum and writes one output partition
"""

import gzip
import logging
import os
import pickle
import time
import uuid
from collections import defaultdict
from typing import Dict, List, Tuple

from traitor.common.bounded import OverflowPolicy, reducer_function
from traitor.common.tasks import ReduceResult, ReduceTask

logger = logging.getLogger(__name__)


def output_file_name(partition_id: int, compress: bool = False) -> str:
    name = f"part-r-{partition_id:05d}"
    return f"{name}.gz" if compress else name


class ReduceExecutor:
    """Executes a single reduce task"""

    def __init__(self, task: ReduceTask):
        """
        Initialize the reduce executor

        Args:
            task: The reduce task (one partition)
        """
        self.task = task
        self.policy = OverflowPolicy(task.overflow_policy)

    def execute(self) -> ReduceResult:
        """
        Execute the reduce task

        Returns:
            ReduceResult with the output file path on success
        """
        start_time = time.time()
        task = self.task

        try:
            key_groups = self._read_and_group_intermediate()
            logger.debug(f"Reduce task {task.task_id}: grouped {len(key_groups)} unique keys")

            results = []
            for key in sorted(key_groups):  # Sort by key for deterministic output
                results.extend(reducer_function(key, key_groups[key], self.policy))

            output_file = self._write_output(results)

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Reduce task {task.task_id}: wrote {len(results)} keys to {output_file} "
                        f"in {execution_time}ms")
            return ReduceResult(
                task_id=task.task_id,
                success=True,
                output_file=output_file,
                keys_written=len(results),
                execution_time_ms=execution_time,
            )

        except Exception as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Reduce task {task.task_id} failed: {e}")
            return ReduceResult(
                task_id=task.task_id,
                success=False,
                error_message=str(e),
                execution_time_ms=execution_time,
            )

    def _read_and_group_intermediate(self) -> Dict[str, List[int]]:
        """
        Read all intermediate files of the partition and group by key

        Returns:
            Dictionary mapping key to list of values

        Raises:
            FileNotFoundError: If an intermediate file the coordinator listed is gone
        """
        key_groups = defaultdict(list)
        records = 0

        for filepath in self.task.intermediate_files:
            with open(filepath, 'rb') as f:
                kv_pairs: List[Tuple[str, int]] = pickle.load(f)
            for key, value in kv_pairs:
                key_groups[key].append(value)
            records += len(kv_pairs)

        logger.debug(f"Reduce task {self.task.task_id}: read {len(self.task.intermediate_files)} files, "
                     f"{records} records")
        return key_groups

    def _write_output(self, results: list) -> str:
        """
        Write final reduce output as 'key<TAB>value' lines

        Args:
            results: List of (key, value) tuples to write

        Returns:
            Path of the output partition
        """
        os.makedirs(self.task.output_path, exist_ok=True)
        output_file = os.path.join(self.task.output_path,
                                   output_file_name(self.task.partition_id, self.task.compress))
        tmp_path = os.path.join(self.task.output_path, f".{uuid.uuid4().hex}.tmp")

        opener = gzip.open if self.task.compress else open
        try:
            with opener(tmp_path, 'wt', encoding='utf-8') as f:
                for key, value in results:
                    f.write(f"{key}\t{value}\n")
            os.replace(tmp_path, output_file)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

        return output_file


def execute_reduce_task(task: ReduceTask) -> ReduceResult:
    """Run a reduce task from its description alone."""
    return ReduceExecutor(task).execute()
