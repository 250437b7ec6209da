"""
Unit tests for MapExecutor
"""

import os
import pickle

from traitor.common.bounded import INT64_MAX
from traitor.common.metrics import MapperCounter
from traitor.common.tasks import MapTask
from traitor.worker.archive import ArchiveRecord
from traitor.worker.map_executor import (
    MapExecutor,
    intermediate_file_name,
    partition_for,
    partition_of_file,
)


def make_task(temp_dir, input_path='unused.arc.gz', num_reduce_tasks=4, use_combiner=True, task_id=0):
    return MapTask(
        task_id=task_id,
        job_id='test-job',
        input_path=input_path,
        intermediate_dir=os.path.join(temp_dir, 'intermediate'),
        num_reduce_tasks=num_reduce_tasks,
        use_combiner=use_combiner,
    )


def records_from(*bodies):
    """Reader yielding one record per body"""
    def read_records(path):
        for i, body in enumerate(bodies):
            yield ArchiveRecord(header={'url': f'http://example.com/{i}'}, payload=body.encode('utf-8'))
    return read_records


def split_analyzer(record):
    """'key:value key:value' payloads; 'boom' raises"""
    text = record.text()
    if text == 'boom':
        raise RuntimeError("analyzer exploded")
    pairs = []
    for token in text.split():
        key, value = token.split(':')
        pairs.append((key, int(value)))
    return pairs


def load_intermediate(paths):
    pairs = []
    for path in paths:
        with open(path, 'rb') as f:
            pairs.extend(pickle.load(f))
    return pairs


class TestPartitioning:

    def test_partition_is_stable_and_in_range(self):
        for key in ['foo', 'bar', 'ünïcødé', '']:
            p = partition_for(key, 7)
            assert 0 <= p < 7
            assert partition_for(key, 7) == p

    def test_partition_round_trips_through_file_name(self):
        name = intermediate_file_name(12, 34)
        assert partition_of_file(os.path.join('/tmp', name)) == 34


class TestMapExecutorCounters:

    def test_counts_records_empty_pages_and_exceptions(self, temp_dir):
        executor = MapExecutor(
            make_task(temp_dir),
            analyze=split_analyzer,
            read_records=records_from('a:1', '', 'boom', 'b:2 a:3', '   '),
        )

        result = executor.execute()

        assert result.success
        assert result.metrics.get(MapperCounter.RECORDS_IN) == 5
        assert result.metrics.get(MapperCounter.EMPTY_PAGE_TEXT) == 2
        assert result.metrics.get(MapperCounter.EXCEPTIONS) == 1

    def test_bad_record_does_not_stop_later_records(self, temp_dir):
        executor = MapExecutor(
            make_task(temp_dir, num_reduce_tasks=1),
            analyze=split_analyzer,
            read_records=records_from('boom', 'boom', 'z:9'),
        )

        result = executor.execute()

        assert result.success
        assert load_intermediate(result.intermediate_files) == [('z', 9)]

    def test_invalid_emissions_count_as_exceptions(self, temp_dir):
        def analyze(record):
            return [("ok", 1), (42, 1)] if record.text() == 'bad-key' else [("ok", "one")]

        executor = MapExecutor(make_task(temp_dir), analyze=analyze,
                               read_records=records_from('bad-key', 'bad-value'))
        result = executor.execute()

        assert result.success
        assert result.metrics.get(MapperCounter.EXCEPTIONS) == 2
        assert result.intermediate_files == []

    def test_out_of_range_values_are_clamped(self, temp_dir):
        executor = MapExecutor(make_task(temp_dir, num_reduce_tasks=1, use_combiner=False),
                               analyze=lambda r: [('big', 10 ** 30)],
                               read_records=records_from('x'))
        result = executor.execute()
        assert load_intermediate(result.intermediate_files) == [('big', INT64_MAX)]


class TestMapExecutorOutput:

    def test_partitions_by_key(self, temp_dir):
        executor = MapExecutor(make_task(temp_dir, num_reduce_tasks=3, use_combiner=False),
                               analyze=split_analyzer,
                               read_records=records_from('a:1 b:1 c:1 d:1 e:1'))
        result = executor.execute()

        for path in result.intermediate_files:
            partition = partition_of_file(path)
            for key, _ in load_intermediate([path]):
                assert partition_for(key, 3) == partition

    def test_combiner_merges_local_values(self, temp_dir):
        executor = MapExecutor(make_task(temp_dir, num_reduce_tasks=1),
                               analyze=split_analyzer,
                               read_records=records_from('foo:5', 'foo:7', 'bar:1'))
        result = executor.execute()
        assert sorted(load_intermediate(result.intermediate_files)) == [('bar', 1), ('foo', 12)]

    def test_without_combiner_keeps_every_pair(self, temp_dir):
        executor = MapExecutor(make_task(temp_dir, num_reduce_tasks=1, use_combiner=False),
                               analyze=split_analyzer,
                               read_records=records_from('foo:5', 'foo:7'))
        result = executor.execute()
        assert sorted(load_intermediate(result.intermediate_files)) == [('foo', 5), ('foo', 7)]

    def test_rerun_overwrites_previous_attempt(self, temp_dir):
        task = make_task(temp_dir, num_reduce_tasks=2)
        reader = records_from('foo:5 bar:2')

        first = MapExecutor(task, analyze=split_analyzer, read_records=reader).execute()
        second = MapExecutor(task, analyze=split_analyzer, read_records=reader).execute()

        assert sorted(first.intermediate_files) == sorted(second.intermediate_files)
        assert sorted(load_intermediate(second.intermediate_files)) == [('bar', 2), ('foo', 5)]
        leftovers = [n for n in os.listdir(task.intermediate_dir) if n.endswith('.tmp')]
        assert leftovers == []

    def test_no_files_for_empty_archive(self, temp_dir):
        executor = MapExecutor(make_task(temp_dir), analyze=split_analyzer, read_records=records_from())
        result = executor.execute()
        assert result.success
        assert result.intermediate_files == []


class TestMapExecutorFileErrors:

    def test_unreadable_archive_is_a_file_error(self, temp_dir):
        bad = os.path.join(temp_dir, 'bad.arc.gz')
        with open(bad, 'wb') as f:
            f.write(b"not gzip")

        result = MapExecutor(make_task(temp_dir, input_path=bad), analyze=split_analyzer).execute()

        assert result.success
        assert result.file_error
        assert result.intermediate_files == []

    def test_partial_archive_contribution_is_discarded(self, temp_dir):
        from traitor.common.errors import ArchiveReadError

        def broken_reader(path):
            yield ArchiveRecord(header={'url': 'http://example.com/'}, payload=b'foo:1')
            raise ArchiveReadError("corrupt member")

        result = MapExecutor(make_task(temp_dir), analyze=split_analyzer, read_records=broken_reader).execute()

        assert result.success
        assert "corrupt member" in result.file_error
        assert result.intermediate_files == []
        assert result.metrics.get(MapperCounter.RECORDS_IN) == 1

    def test_custom_reader_failure_is_a_file_error(self, temp_dir):
        def strict_reader(path):
            yield ArchiveRecord(header={'url': 'http://example.com/'}, payload=b'foo:1')
            raise ValueError("unexpected record type")

        result = MapExecutor(make_task(temp_dir), analyze=split_analyzer, read_records=strict_reader).execute()

        assert result.success
        assert "unexpected record type" in result.file_error
        assert result.intermediate_files == []

    def test_reader_failing_before_first_record(self, temp_dir):
        def eager_reader(path):
            raise KeyError(path)

        result = MapExecutor(make_task(temp_dir), analyze=split_analyzer, read_records=eager_reader).execute()

        assert result.success
        assert result.file_error.startswith("Cannot read archive")
        assert result.metrics.get(MapperCounter.RECORDS_IN) == 0

    def test_missing_job_file_fails_task(self, temp_dir):
        task = make_task(temp_dir)
        task.job_file = os.path.join(temp_dir, 'nope.py')
        result = MapExecutor(task).execute()
        assert not result.success
        assert 'not found' in result.error_message

    def test_loads_analyzer_from_job_file(self, temp_dir, make_archive, key_value_job):
        path = make_archive('a.arc.gz', [('http://example.com/', 'foo=5 bar=2'), ('http://example.com/2', 'foo=7')])
        task = make_task(temp_dir, input_path=path, num_reduce_tasks=1)
        task.job_file = key_value_job

        result = MapExecutor(task).execute()

        assert result.success
        assert sorted(load_intermediate(result.intermediate_files)) == [('bar', 2), ('foo', 12)]
