"""
Job configuration.
Defaults, JSON config file overrides and validation of a job before it
is submitted.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import List, Optional, Union, get_args, get_origin

from traitor.common.bounded import OverflowPolicy
from traitor.common.errors import ConfigurationError

logger = logging.getLogger(__name__)

ARC_SUFFIX = ".arc.gz"
DEFAULT_NUM_REDUCERS = 60
# 3600*60*60 ms, generous enough for the largest archive files
DEFAULT_TASK_TIMEOUT_MS = 3600 * 60 * 60
JOB_NAME = "Norvig Award - (13) - Evil Geniuses' Traitor"


@dataclass
class JobConfig:
    """Everything the coordinator needs to run one job"""
    input_path: str = ""
    output_path: str = ""
    num_reducers: int = DEFAULT_NUM_REDUCERS
    max_files: int = 0
    overwrite: bool = False
    compress: bool = False
    suffix: str = ARC_SUFFIX
    job_file: Optional[str] = None
    use_combiner: bool = True
    overflow_policy: str = OverflowPolicy.SATURATE.value
    task_timeout_ms: int = DEFAULT_TASK_TIMEOUT_MS
    max_retries: int = 3
    map_workers: int = 4
    discovery_workers: int = 1
    job_name: str = JOB_NAME

    @property
    def task_timeout_seconds(self) -> float:
        return self.task_timeout_ms / 1000.0

    def validate(self):
        """
        Check the configuration before submission.

        Raises:
            ConfigurationError: on a missing path, a value of the wrong type or
                an out-of-range value
        """
        for f in fields(self):
            check_field_type(f.name, getattr(self, f.name))
        if not self.input_path or not self.output_path:
            raise ConfigurationError("Both an input path and an output path are required")
        if self.num_reducers < 1:
            raise ConfigurationError(f"Number of reducers must be at least 1, got {self.num_reducers}")
        if self.max_files is not None and self.max_files < 0:
            raise ConfigurationError(f"maxfiles must not be negative, got {self.max_files}")
        if not self.suffix:
            raise ConfigurationError("Input file suffix must not be empty")
        if self.map_workers < 1 or self.discovery_workers < 1:
            raise ConfigurationError("Worker counts must be at least 1")
        if self.task_timeout_ms <= 0:
            raise ConfigurationError("Task timeout must be positive")
        try:
            OverflowPolicy(self.overflow_policy)
        except ValueError:
            choices = ", ".join(p.value for p in OverflowPolicy)
            raise ConfigurationError(
                f"Unknown overflow policy {self.overflow_policy!r} (expected one of: {choices})")
        if self.job_file and not os.path.exists(self.job_file):
            raise ConfigurationError(f"Job file not found: {self.job_file}")

    def with_overrides(self, **overrides) -> "JobConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def config_field_names() -> List[str]:
    return [f.name for f in fields(JobConfig)]


def _allowed_types(name: str) -> tuple:
    """Concrete types a JobConfig field accepts; Optional fields also take None."""
    declared = {f.name: f.type for f in fields(JobConfig)}[name]
    if get_origin(declared) is Union:
        return get_args(declared)
    return (declared,)


def check_field_type(name: str, value, source: str = "config"):
    """
    Raise ConfigurationError unless value matches the JobConfig field type.

    Strings are never coerced and bool does not count as int, so a config
    value of "false" cannot switch overwrite on.
    """
    allowed = _allowed_types(name)
    if isinstance(value, bool):
        ok = bool in allowed
    else:
        ok = isinstance(value, allowed)
    if not ok:
        expected = " or ".join("null" if t is type(None) else t.__name__ for t in allowed)
        raise ConfigurationError(f"{source}: {name} must be {expected}, got {value!r}")


def load_config_file(path: str, base: Optional[JobConfig] = None) -> JobConfig:
    """
    Apply a JSON config file on top of a base configuration.

    Args:
        path: Path to a JSON file holding a single object
        base: Configuration to override (defaults to JobConfig())

    Returns:
        New JobConfig with the file's values applied

    Raises:
        ConfigurationError: if the file is missing or malformed
    """
    base = base or JobConfig()
    logger.info(f"adding config parameters from '{path}'")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")

    known = set(config_field_names())
    overrides = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config parameter: {key}")
            continue
        check_field_type(key, value, source=path)
        overrides[key] = value

    return base.with_overrides(**overrides)
