"""
Exception types shared by the coordinator, the workers and the CLI.
Each one also subclasses the builtin error callers would expect.
"""


class TraitorError(Exception):
    """Base class for all job errors."""


class ConfigurationError(TraitorError, ValueError):
    """Job configuration is incomplete or invalid; raised before submission."""


class NotFoundError(TraitorError, FileNotFoundError):
    """Input root does not exist or cannot be read."""


class OutputExistsError(TraitorError, FileExistsError):
    """Output location exists and overwrite was not requested."""


class ArchiveReadError(TraitorError, IOError):
    """An archive file could not be opened or decoded."""


class BoundedSumOverflowError(TraitorError, OverflowError):
    """A key's sum left the int64 range under the 'reject' overflow policy."""

    def __init__(self, key, total):
        super().__init__(f"Sum for key {key!r} overflows int64: {total}")
        self.key = key
        self.total = total


class JobFailedError(TraitorError, RuntimeError):
    """A task failed after all retries or the job hit a fatal condition."""
