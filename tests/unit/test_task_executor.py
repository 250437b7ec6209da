"""
Unit tests for TaskExecutor state tracking
"""

import os
from unittest.mock import patch

import pytest

from traitor.common.tasks import MapResult, MapTask, ReduceTask
from traitor.worker.task_executor import TaskExecutor, worker_status


@pytest.fixture
def executor():
    pool = TaskExecutor(max_workers=2)
    yield pool
    pool.shutdown()


def map_task(temp_dir, task_id=0, input_path='missing.arc.gz'):
    return MapTask(task_id=task_id, job_id='state-job', input_path=input_path,
                   intermediate_dir=os.path.join(temp_dir, 'intermediate'), num_reduce_tasks=1)


class TestTaskStates:

    def test_running_while_executing(self, executor, temp_dir):
        seen = []

        def fake_map(task):
            seen.append(executor.get_task_state(task.job_id, "map", task.task_id))
            seen.append(executor.active_task_count())
            return MapResult(task_id=task.task_id, success=True)

        with patch('traitor.worker.task_executor.execute_map_task', side_effect=fake_map):
            executor.run_map(map_task(temp_dir))

        assert seen == ["RUNNING", 1]

    def test_finished_tasks_are_forgotten(self, executor, temp_dir, make_archive):
        path = make_archive('a.arc.gz', [('http://a.example/', 'hello')])
        for task_id in range(5):
            assert executor.submit_map(map_task(temp_dir, task_id, input_path=path)).result(timeout=30).success

        assert executor.task_states == {}
        assert executor.get_task_state('state-job', "map", 0) == "UNKNOWN"
        assert executor.active_task_count() == 0

    def test_failed_reduce_is_forgotten(self, executor, temp_dir):
        task = ReduceTask(task_id=0, job_id='state-job', partition_id=0,
                          output_path=os.path.join(temp_dir, 'output'),
                          intermediate_files=['/nonexistent/map-00000-part-00000.pickle'])

        result = executor.run_reduce(task)

        assert not result.success
        assert executor.task_states == {}

    def test_state_cleared_when_execution_raises(self, executor, temp_dir):
        with patch('traitor.worker.task_executor.execute_map_task', side_effect=MemoryError("out of memory")):
            with pytest.raises(MemoryError):
                executor.run_map(map_task(temp_dir))

        assert executor.task_states == {}

    def test_worker_status_reports_free_slots(self, executor):
        status = worker_status(executor)
        assert status['active_tasks'] == 0
        assert status['available_slots'] == 2
        assert status['memory_rss'] > 0
