"""
Unit tests for the worker.proto message conversions
"""

from traitor.common import rpc
from traitor.common.metrics import JobMetrics, MapperCounter
from traitor.common.tasks import MapResult, MapTask, ReduceResult, ReduceTask


class TestTaskMessages:

    def test_map_task_without_job_file(self):
        task = MapTask(task_id=3, job_id='j', input_path='/in/a.arc.gz',
                       intermediate_dir='/out/_temporary/j', num_reduce_tasks=4, use_combiner=False)
        message = rpc.map_task_to_proto(task)

        assert message.job_file == ""
        assert rpc.map_task_from_proto(message) == task

    def test_map_task_survives_the_wire(self):
        task = MapTask(task_id=1, job_id='j', input_path='/in/a.arc.gz',
                       intermediate_dir='/tmp/i', num_reduce_tasks=2, job_file='/jobs/count.py')
        wire = rpc.map_task_to_proto(task).SerializeToString()
        assert rpc.map_task_from_proto(rpc.worker_pb2.MapTask.FromString(wire)) == task

    def test_reduce_task_keeps_file_order(self):
        task = ReduceTask(task_id=2, job_id='j', partition_id=2, output_path='/out',
                          intermediate_files=['/i/map-00001-part-00002.pickle', '/i/map-00000-part-00002.pickle'],
                          compress=True, overflow_policy='reject')
        assert rpc.reduce_task_from_proto(rpc.reduce_task_to_proto(task)) == task


class TestResultMessages:

    def test_map_result_counters(self):
        metrics = JobMetrics()
        metrics.increment(MapperCounter.RECORDS_IN, 5)
        metrics.increment(MapperCounter.EXCEPTIONS)
        result = MapResult(task_id=0, success=True, intermediate_files=['/i/map-00000-part-00000.pickle'],
                           metrics=metrics, file_error='Truncated ARC record', execution_time_ms=12)

        decoded = rpc.map_result_from_proto(rpc.map_result_to_proto(result))

        assert decoded.metrics.get(MapperCounter.RECORDS_IN) == 5
        assert decoded.metrics.get(MapperCounter.EXCEPTIONS) == 1
        assert decoded.file_error == 'Truncated ARC record'
        assert decoded.intermediate_files == result.intermediate_files
        assert decoded.execution_time_ms == 12

    def test_failed_reduce_result(self):
        result = ReduceResult(task_id=4, success=False, error_message='Sum for key overflows')
        assert rpc.reduce_result_from_proto(rpc.reduce_result_to_proto(result)) == result

    def test_worker_status(self):
        status = rpc.worker_pb2.WorkerStatus(worker_id='w', cpu_usage=1.5, memory_rss=1024,
                                             active_tasks=1, available_slots=3)
        assert rpc.worker_status_to_dict(status) == {
            'worker_id': 'w', 'cpu_usage': 1.5, 'memory_rss': 1024, 'active_tasks': 1, 'available_slots': 3,
        }
