"""
Pytest configuration and shared fixtures
"""

import gzip
import os
import shutil
import tempfile

import pytest

from traitor.worker.archive import write_arc_records
from traitor.worker.function_loader import FunctionLoader


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    dirpath = tempfile.mkdtemp()
    yield dirpath
    shutil.rmtree(dirpath)


@pytest.fixture(autouse=True)
def clear_job_module_cache():
    """Job files are rewritten between tests; drop loaded copies."""
    FunctionLoader.clear_cache()
    yield
    FunctionLoader.clear_cache()


def html_page(body: str) -> bytes:
    return (b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n\r\n"
            + f"<html><body>{body}</body></html>".encode('utf-8'))


@pytest.fixture
def make_archive(temp_dir):
    """Factory writing an .arc.gz file from (url, body) pairs"""
    def _make(name, pages, directory=None):
        directory = directory or os.path.join(temp_dir, 'input')
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, name)
        write_arc_records(path, [(url, html_page(body)) for url, body in pages])
        return path
    return _make


@pytest.fixture
def make_job_file(temp_dir):
    """Factory writing a job file with the given source"""
    def _make(source, name='job.py'):
        path = os.path.join(temp_dir, name)
        with open(path, 'w') as f:
            f.write(source)
        return path
    return _make


@pytest.fixture
def key_value_job(make_job_file):
    """
    Job file whose pages carry their emissions as 'key=value' lines.
    A page body of 'boom' makes the analyzer raise.
    """
    return make_job_file('''
import re

PAIR_RE = re.compile(r"([\\w.-]+)=(-?\\d+)")


def analyze(record):
    text = record.text()
    if "boom" in text:
        raise ValueError("bad page")
    return [(k, int(v)) for k, v in PAIR_RE.findall(text)]
''', name='kv_job.py')


@pytest.fixture
def read_output():
    """Reader returning all key/value lines of a job output directory as a dict"""
    return read_output_dir


def read_output_dir(output_dir):
    results = {}
    for name in sorted(os.listdir(output_dir)):
        if not name.startswith('part-r-'):
            continue
        path = os.path.join(output_dir, name)
        opener = gzip.open if name.endswith('.gz') else open
        with opener(path, 'rt', encoding='utf-8') as f:
            for line in f:
                key, value = line.rstrip('\n').split('\t')
                assert key not in results, f"duplicate key {key}"
                results[key] = int(value)
    return results
