"""
Worker server for the Traitor job.
Runs map and reduce tasks sent by a coordinator over gRPC. Workers and
the coordinator share the filesystem holding inputs, intermediate data
and output.
"""

import argparse
import logging
import os
import uuid
from concurrent import futures

import grpc

from traitor.common import rpc
from traitor.common.bounded import OverflowPolicy
from traitor.worker.task_executor import TaskExecutor, worker_status

logger = logging.getLogger(__name__)


class WorkerServicer(rpc.worker_pb2_grpc.WorkerServiceServicer):
    """Implementation of the worker gRPC service."""

    def __init__(self, executor: TaskExecutor, worker_id: str):
        self.executor = executor
        self.worker_id = worker_id

    def RunMapTask(self, request, context):
        """Execute a map task and reply with its result."""
        if not request.input_path or not request.intermediate_dir or request.num_reduce_tasks < 1:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT,
                          "Map task needs an input path, an intermediate directory and at least one partition")
        task = rpc.map_task_from_proto(request)
        logger.info(f"Worker {self.worker_id}: received map task {task.task_id} ({task.input_path})")
        return rpc.map_result_to_proto(self.executor.run_map(task))

    def RunReduceTask(self, request, context):
        """Execute a reduce task and reply with its result."""
        policies = [p.value for p in OverflowPolicy]
        if not request.output_path or request.partition_id < 0 or request.overflow_policy not in policies:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT,
                          f"Reduce task needs an output path, a partition and one of {policies}")
        task = rpc.reduce_task_from_proto(request)
        logger.info(f"Worker {self.worker_id}: received reduce task {task.task_id}")
        return rpc.reduce_result_to_proto(self.executor.run_reduce(task))

    def Heartbeat(self, request, context):
        """Report worker load."""
        status = worker_status(self.executor)
        return rpc.worker_pb2.WorkerStatus(
            worker_id=self.worker_id,
            cpu_usage=status['cpu_usage'],
            memory_rss=int(status['memory_rss']),
            active_tasks=status['active_tasks'],
            available_slots=status['available_slots'],
        )


class WorkerServer:
    """Worker server that executes tasks for a coordinator."""

    def __init__(self, max_workers: int = 4, worker_id: str = None):
        self.worker_id = worker_id or str(uuid.uuid4())
        self.max_workers = max_workers
        self.task_executor = TaskExecutor(max_workers=max_workers)
        self.port = None

        # The gRPC pool runs tasks inline, so it bounds concurrent tasks.
        self.server = grpc.server(
            futures.ThreadPoolExecutor(max_workers=max_workers),
            options=rpc.CHANNEL_OPTIONS,
        )
        rpc.worker_pb2_grpc.add_WorkerServiceServicer_to_server(
            WorkerServicer(self.task_executor, self.worker_id), self.server
        )

    def start(self, port: int = 50052, host: str = "[::]") -> int:
        """Start serving; returns the bound port (useful with port 0)."""
        addr = f"{host}:{port}"
        self.port = self.server.add_insecure_port(addr)
        if not self.port:
            raise RuntimeError(f"Could not bind worker server to {addr}")
        self.server.start()
        logger.info(f"Worker {self.worker_id} gRPC server started on {host}:{self.port}")
        return self.port

    def stop(self, grace: float = 0):
        """Stop the server and the task pool."""
        self.server.stop(grace).wait()
        self.task_executor.shutdown()
        logger.info(f"Worker {self.worker_id} stopped")

    def wait(self):
        self.server.wait_for_termination()


def main(argv=None):
    """Start the worker process"""
    parser = argparse.ArgumentParser(description="Traitor MapReduce worker")
    parser.add_argument('--host', default=os.environ.get('TRAITOR_WORKER_HOST', '[::]'))
    parser.add_argument('--port', type=int, default=int(os.environ.get('TRAITOR_WORKER_PORT', 50052)))
    parser.add_argument('--max-workers', type=int, default=4,
                        help='Number of tasks this worker runs concurrently')
    parser.add_argument('--worker-id', default=os.environ.get('TRAITOR_WORKER_ID'))
    parser.add_argument('--log-level', default='INFO')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    server = WorkerServer(max_workers=args.max_workers, worker_id=args.worker_id)
    server.start(port=args.port, host=args.host)
    try:
        server.wait()
    except KeyboardInterrupt:
        server.stop(0)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
