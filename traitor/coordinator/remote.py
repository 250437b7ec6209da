"""
Remote worker pool.
Sends map and reduce tasks to worker servers over gRPC, round-robin.
"""

import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List

import grpc

from traitor.common import rpc
from traitor.common.tasks import MapResult, MapTask, ReduceResult, ReduceTask
from traitor.worker.task_executor import WorkerPool

logger = logging.getLogger(__name__)


class GrpcWorkerPool(WorkerPool):
    """Dispatches tasks to a fixed set of worker servers."""

    def __init__(self, worker_addresses: List[str], task_timeout: float,
                 slots_per_worker: int = 4, connect_timeout: float = 10):
        """
        Args:
            worker_addresses: 'host:port' of every worker
            task_timeout: RPC deadline for one task, in seconds
            slots_per_worker: Tasks in flight per worker
            connect_timeout: Seconds to wait for each worker channel
        """
        if not worker_addresses:
            raise ValueError("At least one worker address is required")
        self.worker_addresses = list(worker_addresses)
        self.task_timeout = task_timeout
        self.stubs = {}
        self.channels: Dict[str, grpc.Channel] = {}
        try:
            for address in self.worker_addresses:
                self.stubs[address], self.channels[address] = rpc.get_worker_stub(address, timeout=connect_timeout)
        except ConnectionError:
            for channel in self.channels.values():
                channel.close()
            raise
        self._next_worker = itertools.cycle(self.worker_addresses)
        self._lock = threading.Lock()
        self.executor = ThreadPoolExecutor(
            max_workers=slots_per_worker * len(self.worker_addresses),
            thread_name_prefix="traitor-rpc",
        )
        logger.info(f"Connected to {len(self.worker_addresses)} workers: {', '.join(self.worker_addresses)}")

    def _pick_worker(self) -> str:
        with self._lock:
            return next(self._next_worker)

    def _call(self, method: str, request):
        address = self._pick_worker()
        try:
            return getattr(self.stubs[address], method)(request, timeout=self.task_timeout)
        except grpc.RpcError as e:
            logger.error(f"gRPC error running {method} on {address}: {e.details()}")
            raise RuntimeError(f"Worker {address} failed {method}: {e.details()}") from e

    def _run_map(self, task: MapTask) -> MapResult:
        return rpc.map_result_from_proto(self._call(rpc.RUN_MAP_TASK, rpc.map_task_to_proto(task)))

    def _run_reduce(self, task: ReduceTask) -> ReduceResult:
        return rpc.reduce_result_from_proto(self._call(rpc.RUN_REDUCE_TASK, rpc.reduce_task_to_proto(task)))

    def submit_map(self, task: MapTask) -> Future:
        return self.executor.submit(self._run_map, task)

    def submit_reduce(self, task: ReduceTask) -> Future:
        return self.executor.submit(self._run_reduce, task)

    def heartbeat(self) -> Dict[str, dict]:
        """Load reported by each worker; unreachable workers are left out."""
        statuses = {}
        for address, stub in self.stubs.items():
            try:
                status = stub.Heartbeat(rpc.worker_pb2.HeartbeatRequest(), timeout=5)
                statuses[address] = rpc.worker_status_to_dict(status)
            except grpc.RpcError as e:
                logger.warning(f"Heartbeat to {address} failed: {e.details()}")
        return statuses

    def shutdown(self):
        self.executor.shutdown(wait=True)
        for channel in self.channels.values():
            channel.close()
