#!/usr/bin/env python3
"""
Map Task Executor
Reads every record of one archive file, applies the analyzer, partitions
and combines the emitted pairs, and writes intermediate files
"""

import glob
import logging
import os
import pickle
import time
import uuid
import zlib
from collections import defaultdict
from typing import Dict, List, Tuple

from traitor.common.bounded import bound, combiner_function
from traitor.common.errors import ArchiveReadError
from traitor.common.metrics import JobMetrics, MapperCounter
from traitor.common.tasks import MapResult, MapTask
from traitor.worker.function_loader import FunctionLoader

logger = logging.getLogger(__name__)


def partition_for(key: str, num_reduce_tasks: int) -> int:
    """Reducer partition of a key; stable across processes and machines."""
    return zlib.crc32(key.encode('utf-8')) % num_reduce_tasks


def intermediate_file_name(task_id: int, partition_id: int) -> str:
    return f"map-{task_id:05d}-part-{partition_id:05d}.pickle"


def validate_emission(pair) -> Tuple[str, int]:
    """
    Check one analyzer emission

    Raises:
        TypeError: If the pair is not (str, int)
    """
    key, value = pair
    if not isinstance(key, str):
        raise TypeError(f"Emitted key must be str, got {type(key).__name__}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Emitted value must be int, got {type(value).__name__}")
    return key, bound(value)


class MapExecutor:
    """Executes a single map task"""

    def __init__(self, task: MapTask, analyze=None, read_records=None):
        """
        Initialize the map executor

        Args:
            task: The map task (one archive file)
            analyze: Analyzer callable; loaded from the task's job file if None
            read_records: Archive reader; loaded from the job file if None
        """
        self.task = task
        self.analyze = analyze
        self.read_records = read_records
        self.metrics = JobMetrics()

    def execute(self) -> MapResult:
        """
        Execute the map task

        Returns:
            MapResult; success is False only for failures worth retrying
        """
        start_time = time.time()
        task = self.task

        try:
            self._load_functions()

            file_error = ""
            try:
                intermediate = self._map_records()
            except (ArchiveReadError, OSError) as e:
                # The file's contribution is lost; the job carries on.
                file_error = str(e)
                intermediate = {}
                logger.warning(f"Map task {task.task_id}: skipping unreadable archive "
                               f"{task.input_path}: {e}")

            if task.use_combiner and intermediate:
                before = sum(len(v) for v in intermediate.values())
                intermediate = self._apply_combiner(intermediate)
                after = sum(len(v) for v in intermediate.values())
                logger.debug(f"Map task {task.task_id}: combiner reduced {before} pairs to {after}")

            files = self._write_intermediate_files(intermediate)

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Map task {task.task_id}: {self.metrics.get(MapperCounter.RECORDS_IN)} records, "
                        f"{len(files)} intermediate files in {execution_time}ms")
            return MapResult(
                task_id=task.task_id,
                success=True,
                intermediate_files=files,
                metrics=self.metrics,
                file_error=file_error,
                execution_time_ms=execution_time,
            )

        except Exception as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Map task {task.task_id} failed on {task.input_path}: {e}")
            return MapResult(
                task_id=task.task_id,
                success=False,
                metrics=self.metrics,
                error_message=str(e),
                execution_time_ms=execution_time,
            )

    def _load_functions(self):
        if self.analyze is not None and self.read_records is not None:
            return
        loader = FunctionLoader(self.task.job_file)
        if self.analyze is None:
            self.analyze = loader.get_analyze_function()
        if self.read_records is None:
            self.read_records = loader.get_record_reader()

    def _read_archive(self):
        """
        Records of the task's archive

        Any failure of the reader itself becomes an ArchiveReadError, so a
        job file's own read_records loses only the file it chokes on.
        """
        path = self.task.input_path
        try:
            yield from self.read_records(path)
        except ArchiveReadError:
            raise
        except Exception as e:
            raise ArchiveReadError(f"Cannot read archive {path}: {e}") from e

    def _map_records(self) -> Dict[int, List[Tuple[str, int]]]:
        """
        Run the analyzer over every record of the archive

        Returns:
            Dictionary mapping partition_id to list of (key, value) pairs

        Raises:
            ArchiveReadError: If the archive cannot be read
        """
        intermediate = defaultdict(list)
        num_reduce_tasks = self.task.num_reduce_tasks

        for record in self._read_archive():
            self.metrics.increment(MapperCounter.RECORDS_IN)

            try:
                pairs = [validate_emission(pair) for pair in (self.analyze(record) or ())]
            except Exception as e:
                self.metrics.increment(MapperCounter.EXCEPTIONS)
                url = getattr(record, 'url', '')
                logger.warning(f"Map task {self.task.task_id}: analyzer failed on record {url!r}: {e}")
                continue

            if not pairs:
                self.metrics.increment(MapperCounter.EMPTY_PAGE_TEXT)
                continue

            for key, value in pairs:
                intermediate[partition_for(key, num_reduce_tasks)].append((key, value))

        return intermediate

    def _apply_combiner(self, intermediate: dict) -> dict:
        """
        Pre-aggregate local map output with the bounded-sum combiner

        Args:
            intermediate: Dictionary mapping partition_id to list of (key, value) pairs

        Returns:
            Dictionary with same structure, one pair per key
        """
        combined = {}
        for partition, kv_pairs in intermediate.items():
            key_groups = defaultdict(list)
            for k, v in kv_pairs:
                key_groups[k].append(v)

            combined_pairs = []
            for key, values in key_groups.items():
                combined_pairs.extend(combiner_function(key, values))
            combined[partition] = combined_pairs

        return combined

    def _write_intermediate_files(self, intermediate: dict) -> List[str]:
        """
        Write each partition's pairs to its own pickle file

        Files are renamed into place, and files left by an earlier attempt of
        the same task are removed, so re-running a task never duplicates data.

        Returns:
            Paths of the written files
        """
        intermediate_dir = self.task.intermediate_dir
        os.makedirs(intermediate_dir, exist_ok=True)

        written = []
        for partition in sorted(intermediate):
            kv_pairs = intermediate[partition]
            if not kv_pairs:
                continue
            path = os.path.join(intermediate_dir, intermediate_file_name(self.task.task_id, partition))
            tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
            with open(tmp_path, 'wb') as f:
                pickle.dump(kv_pairs, f)
            os.replace(tmp_path, path)
            written.append(path)

        pattern = os.path.join(glob.escape(intermediate_dir), f"map-{self.task.task_id:05d}-part-*.pickle")
        for stale in glob.glob(pattern):
            if stale not in written:
                os.remove(stale)

        return written


def execute_map_task(task: MapTask) -> MapResult:
    """Run a map task from its description alone."""
    return MapExecutor(task).execute()


def partition_of_file(path: str) -> int:
    """Partition id encoded in an intermediate file name."""
    name = os.path.basename(path)
    return int(name.rsplit('-part-', 1)[1].split('.', 1)[0])
