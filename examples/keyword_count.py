"""
Keyword count job file.
Counts how often each of a few keywords appears across all pages.
"""

import re

KEYWORDS = ("traitor", "treason", "betrayal", "spy")
WORD_RE = re.compile(r"[a-z]+")


def analyze(record):
    """
    Emit (keyword, occurrences) for every keyword found on the page.

    Args:
        record: ArchiveRecord

    Yields:
        (keyword, count) tuples
    """
    words = WORD_RE.findall(record.text().lower())
    for keyword in KEYWORDS:
        count = words.count(keyword)
        if count:
            yield (keyword, count)
