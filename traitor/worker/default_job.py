"""
Bundled analyzer used when no job file is given.
Counts occurrences of the word "traitor" in HTML/text pages, per host.
"""

import re
from urllib.parse import urlparse

TAG_RE = re.compile(rb"<[^>]*>")
WORD_RE = re.compile(r"\btraitors?\b", re.IGNORECASE)


def page_text(payload: bytes) -> str:
    """Strip the HTTP header block and markup from a raw payload."""
    _, sep, body = payload.partition(b"\r\n\r\n")
    if not sep:
        _, sep, body = payload.partition(b"\n\n")
    if not sep:
        body = payload
    return TAG_RE.sub(b" ", body).decode('utf-8', errors='ignore').strip()


def analyze(record):
    """
    Emit (host, count) when the page mentions traitors.

    Args:
        record: ArchiveRecord

    Returns:
        List of (key, count) pairs, empty for pages without text or matches
    """
    text = page_text(record.payload)
    if not text:
        return []

    count = len(WORD_RE.findall(text))
    if count == 0:
        return []

    host = urlparse(record.url).hostname or record.url
    return [(host, count)]
