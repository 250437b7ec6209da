"""
Input discovery and sampling.
Finds archive files under an input root, keeps those with the required
suffix and stops accepting once the sampling cap is reached.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List, Optional

from traitor.common.errors import NotFoundError

logger = logging.getLogger(__name__)


class SampleLimit:
    """Bounded accept counter shared by every evaluation of one discovery pass."""

    def __init__(self, max_files: Optional[int] = 0):
        self.max_files = max_files or 0
        self.accepted = 0
        self.lock = threading.Lock()

    @property
    def unbounded(self) -> bool:
        return self.max_files <= 0

    def try_acquire(self) -> bool:
        """Take one slot; False once the cap has been reached."""
        with self.lock:
            if not self.unbounded and self.accepted >= self.max_files:
                return False
            self.accepted += 1
            return True


class InputSelector:
    """Selects the archive files a job will process"""

    def __init__(self, root: str, suffix: str = ".arc.gz", max_files: Optional[int] = 0):
        """
        Args:
            root: Directory (or single file) to scan
            suffix: Required file name ending
            max_files: Cap on accepted files; 0 or None means no cap
        """
        self.root = root
        self.suffix = suffix
        self.limit = SampleLimit(max_files)

    def accept(self, path: str) -> bool:
        """Filter predicate; safe to call from several threads."""
        if not path.endswith(self.suffix):
            return False
        return self.limit.try_acquire()

    def candidates(self) -> Iterator[str]:
        """
        Every file under the root, in a deterministic traversal order

        Raises:
            NotFoundError: If the root doesn't exist or can't be read
        """
        if not os.path.exists(self.root):
            raise NotFoundError(f"Input path does not exist: {self.root}")
        if not os.access(self.root, os.R_OK):
            raise NotFoundError(f"Input path is not readable: {self.root}")

        if os.path.isfile(self.root):
            yield self.root
            return

        def on_error(e: OSError):
            if os.path.abspath(e.filename or "") == os.path.abspath(self.root):
                raise NotFoundError(f"Cannot list input path {self.root}: {e}") from e
            logger.warning(f"Skipping unreadable directory {e.filename}: {e}")

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            dirnames.sort()
            for name in sorted(filenames):
                yield os.path.join(dirpath, name)

    def select(self, max_workers: int = 1) -> List[str]:
        """
        Run one discovery pass

        Args:
            max_workers: Threads evaluating the filter; the cap holds either way

        Returns:
            Accepted file paths in traversal order
        """
        paths = list(self.candidates())

        if max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                decisions = list(pool.map(self.accept, paths))
        else:
            decisions = [self.accept(p) for p in paths]

        accepted = [p for p, ok in zip(paths, decisions) if ok]
        logger.info(f"Selected {len(accepted)} of {len(paths)} files under {self.root} "
                    f"(suffix '{self.suffix}', cap {self.limit.max_files or 'none'})")
        return accepted
