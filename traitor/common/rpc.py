"""
gRPC helpers
Worker service messages, conversions between task dataclasses and
protobuf messages, and channel creation shared by the worker server and
the coordinator's remote worker pool.
"""

import os
import sys

import grpc

from traitor.common.metrics import JobMetrics
from traitor.common.tasks import MapResult, MapTask, ReduceResult, ReduceTask

# worker.proto is compiled on import; proto paths resolve against sys.path
PROTO_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
if PROTO_ROOT not in sys.path:
    sys.path.append(PROTO_ROOT)

worker_pb2, worker_pb2_grpc = grpc.protos_and_services("traitor/protos/worker.proto")

RUN_MAP_TASK = "RunMapTask"
RUN_REDUCE_TASK = "RunReduceTask"

MAX_MESSAGE_LENGTH = 100 * 1024 * 1024
CHANNEL_OPTIONS = [
    ('grpc.max_send_message_length', MAX_MESSAGE_LENGTH),
    ('grpc.max_receive_message_length', MAX_MESSAGE_LENGTH),
]


def map_task_to_proto(task: MapTask):
    return worker_pb2.MapTask(
        task_id=task.task_id,
        job_id=task.job_id,
        input_path=task.input_path,
        intermediate_dir=task.intermediate_dir,
        num_reduce_tasks=task.num_reduce_tasks,
        job_file=task.job_file or "",
        use_combiner=task.use_combiner,
    )


def map_task_from_proto(message) -> MapTask:
    return MapTask(
        task_id=message.task_id,
        job_id=message.job_id,
        input_path=message.input_path,
        intermediate_dir=message.intermediate_dir,
        num_reduce_tasks=message.num_reduce_tasks,
        job_file=message.job_file or None,
        use_combiner=message.use_combiner,
    )


def reduce_task_to_proto(task: ReduceTask):
    return worker_pb2.ReduceTask(
        task_id=task.task_id,
        job_id=task.job_id,
        partition_id=task.partition_id,
        output_path=task.output_path,
        intermediate_files=task.intermediate_files,
        job_file=task.job_file or "",
        compress=task.compress,
        overflow_policy=task.overflow_policy,
    )


def reduce_task_from_proto(message) -> ReduceTask:
    return ReduceTask(
        task_id=message.task_id,
        job_id=message.job_id,
        partition_id=message.partition_id,
        output_path=message.output_path,
        intermediate_files=list(message.intermediate_files),
        job_file=message.job_file or None,
        compress=message.compress,
        overflow_policy=message.overflow_policy,
    )


def map_result_to_proto(result: MapResult):
    return worker_pb2.MapResult(
        task_id=result.task_id,
        success=result.success,
        intermediate_files=result.intermediate_files,
        counters=result.metrics.to_dict(),
        file_error=result.file_error,
        error_message=result.error_message,
        execution_time_ms=result.execution_time_ms,
    )


def map_result_from_proto(message) -> MapResult:
    return MapResult(
        task_id=message.task_id,
        success=message.success,
        intermediate_files=list(message.intermediate_files),
        metrics=JobMetrics(dict(message.counters)),
        file_error=message.file_error,
        error_message=message.error_message,
        execution_time_ms=message.execution_time_ms,
    )


def reduce_result_to_proto(result: ReduceResult):
    return worker_pb2.ReduceResult(
        task_id=result.task_id,
        success=result.success,
        output_file=result.output_file,
        keys_written=result.keys_written,
        error_message=result.error_message,
        execution_time_ms=result.execution_time_ms,
    )


def reduce_result_from_proto(message) -> ReduceResult:
    return ReduceResult(
        task_id=message.task_id,
        success=message.success,
        output_file=message.output_file,
        keys_written=message.keys_written,
        error_message=message.error_message,
        execution_time_ms=message.execution_time_ms,
    )


def worker_status_to_dict(message) -> dict:
    return {
        'worker_id': message.worker_id,
        'cpu_usage': message.cpu_usage,
        'memory_rss': message.memory_rss,
        'active_tasks': message.active_tasks,
        'available_slots': message.available_slots,
    }


def open_worker_channel(worker_host: str, timeout: float = 10):
    """
    Open a channel to a worker and wait for it to become ready

    Args:
        worker_host: Host address in format 'host:port' (e.g., 'worker-1:50052')
        timeout: Connection timeout in seconds (default: 10)

    Returns:
        grpc.Channel ready for calls

    Raises:
        ConnectionError: If the worker cannot be reached in time
    """
    channel = grpc.insecure_channel(worker_host, options=CHANNEL_OPTIONS)
    try:
        grpc.channel_ready_future(channel).result(timeout=timeout)
    except grpc.FutureTimeoutError:
        channel.close()
        raise ConnectionError(f"Failed to connect to worker at {worker_host} within {timeout}s")
    return channel


def get_worker_stub(worker_host: str, timeout: float = 10):
    """
    Get a WorkerService stub for a worker

    Returns:
        Tuple of (stub, channel); the caller closes the channel

    Raises:
        ConnectionError: If the worker cannot be reached in time
    """
    channel = open_worker_channel(worker_host, timeout=timeout)
    return worker_pb2_grpc.WorkerServiceStub(channel), channel
