#!/usr/bin/env python3
"""
Dynamic Function Loader for job files
Loads the user-provided module that defines the per-record analyzer and,
optionally, a replacement archive reader
"""

import hashlib
import importlib
import importlib.util
import os
import threading

from traitor.worker.archive import read_arc_records

DEFAULT_JOB_MODULE = "traitor.worker.default_job"


class FunctionLoader:
    """Dynamically loads analyze/read_records functions from a Python file"""

    _cache = {}
    _cache_lock = threading.Lock()

    def __init__(self, job_file: str = None):
        """
        Initialize the function loader

        Args:
            job_file: Path to the job's Python file, or None for the bundled analyzer
        """
        self.job_file = job_file
        self.module = None

    def load_module(self):
        """
        Load the job module, reusing an already loaded copy of the same file

        Returns:
            The loaded module object

        Raises:
            FileNotFoundError: If the job file doesn't exist
        """
        if not self.job_file:
            self.module = importlib.import_module(DEFAULT_JOB_MODULE)
            return self.module

        path = os.path.abspath(self.job_file)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Job file not found: {self.job_file}")

        with self._cache_lock:
            module = self._cache.get(path)
            if module is None:
                digest = hashlib.sha1(path.encode('utf-8')).hexdigest()[:12]
                spec = importlib.util.spec_from_file_location(f"traitor_job_{digest}", path)
                if spec is None or spec.loader is None:
                    raise RuntimeError(f"Failed to load job file: {self.job_file}")
                module = importlib.util.module_from_spec(spec)
                spec.loader.exec_module(module)
                self._cache[path] = module

        self.module = module
        return module

    def get_analyze_function(self):
        """
        Get the analyzer from the loaded module

        Returns:
            The analyze(record) callable

        Raises:
            AttributeError: If module doesn't define 'analyze'
        """
        if not self.module:
            self.load_module()

        if not hasattr(self.module, 'analyze'):
            raise AttributeError("Job module must define 'analyze'")
        return self.module.analyze

    def get_record_reader(self):
        """
        Get the archive reader

        Returns:
            The module's read_records(path) callable, or the ARC reader by default
        """
        if not self.module:
            self.load_module()

        return getattr(self.module, 'read_records', read_arc_records)

    @classmethod
    def clear_cache(cls):
        with cls._cache_lock:
            cls._cache.clear()
