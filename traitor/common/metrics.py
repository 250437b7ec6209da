"""
Job counters and run report.
Map tasks keep their own JobMetrics; the coordinator merges them once
the map phase is over.
"""

import json
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional

from traitor.common.bounded import saturating_add


class MapperCounter(Enum):
    """Counters incremented by the record mapper"""
    RECORDS_IN = "RECORDS_IN"
    EMPTY_PAGE_TEXT = "EMPTY_PAGE_TEXT"
    EXCEPTIONS = "EXCEPTIONS"


class JobCounter(Enum):
    """Counters maintained by the coordinator"""
    FILES_ACCEPTED = "FILES_ACCEPTED"
    FILES_LOST = "FILES_LOST"


@dataclass
class JobMetrics:
    """Monotonic counters for one map task, or for a whole job once merged."""

    counters: Dict[str, int] = field(default_factory=dict)

    def increment(self, counter, amount: int = 1):
        """Add a non-negative amount to a counter."""
        if amount < 0:
            raise ValueError("Counters are never decremented")
        name = counter.value if isinstance(counter, Enum) else str(counter)
        self.counters[name] = saturating_add(self.counters.get(name, 0), amount)

    def get(self, counter) -> int:
        name = counter.value if isinstance(counter, Enum) else str(counter)
        return self.counters.get(name, 0)

    def merge(self, other: "JobMetrics") -> "JobMetrics":
        """Return a new JobMetrics holding the sum of both; associative and commutative."""
        merged = JobMetrics(dict(self.counters))
        for name, value in other.counters.items():
            merged.counters[name] = saturating_add(merged.counters.get(name, 0), value)
        return merged

    @classmethod
    def merge_all(cls, metrics: List["JobMetrics"]) -> "JobMetrics":
        total = cls()
        for item in metrics:
            total = total.merge(item)
        return total

    def to_dict(self) -> dict:
        """Counter values, with every mapper counter present."""
        result = {c.value: 0 for c in MapperCounter}
        result.update(self.counters)
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "JobMetrics":
        return cls({str(k): int(v) for k, v in (data or {}).items()})


@dataclass
class JobReport:
    """Counters and phase timings of a single job run."""

    job_name: str
    input_path: str
    output_path: str
    num_reduce_tasks: int
    start_time: float = field(default_factory=time.time)
    end_time: float = 0.0
    map_phase_start: float = 0.0
    map_phase_end: float = 0.0
    reduce_phase_start: float = 0.0
    reduce_phase_end: float = 0.0
    num_map_tasks: int = 0
    status: str = ""
    error_message: str = ""
    counters: Dict[str, int] = field(default_factory=dict)
    lost_files: List[str] = field(default_factory=list)
    output_files: List[str] = field(default_factory=list)

    @property
    def total_time_seconds(self) -> float:
        """Total job execution time in seconds."""
        return self.end_time - self.start_time

    @property
    def map_phase_time_seconds(self) -> float:
        return self.map_phase_end - self.map_phase_start

    @property
    def reduce_phase_time_seconds(self) -> float:
        return self.reduce_phase_end - self.reduce_phase_start

    def to_dict(self) -> dict:
        """Convert the report to a dictionary."""
        return asdict(self)

    def save_to_file(self, filepath: str):
        """Save the report to a JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
