"""
Host count job file.
Counts the archived pages of every host.
"""

from urllib.parse import urlparse


def analyze(record):
    """
    Emit (host, 1) for every page with a payload.

    Args:
        record: ArchiveRecord with header and payload

    Returns:
        List with a single (host, 1) tuple, or nothing for empty pages
    """
    if not record.payload.strip():
        return []
    host = urlparse(record.url).hostname
    if not host:
        return []
    return [(host, 1)]
