"""
Traitor MapReduce job.
Scans web-archive files, runs a per-record analyzer and aggregates a
bounded 64-bit sum per key.
"""

__version__ = "0.3.0"
