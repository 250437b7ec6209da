"""
Command line entry point for running the Traitor job.
"""

import argparse
import logging
import os
import sys

from traitor.common.config import JobConfig, load_config_file
from traitor.common.errors import ConfigurationError
from traitor.coordinator.coordinator import JobCoordinator
from traitor.coordinator.remote import GrpcWorkerPool

logger = logging.getLogger(__name__)

PATH_FIELDS = ("input_path", "output_path", "job_file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="traitor",
        description="Run the Traitor analysis over a directory of web-archive (.arc.gz) files.",
    )
    parser.add_argument('-in', '--in', dest='input_path', metavar='INPUTPATH',
                        help='Directory holding the archive files')
    parser.add_argument('-out', '--out', dest='output_path', metavar='OUTPUTPATH',
                        help='Directory for the part-r-NNNNN output files')
    parser.add_argument('-conf', '--conf', dest='config_file', metavar='CONFFILE',
                        help='JSON file with extra job parameters')
    parser.add_argument('-overwrite', '--overwrite', dest='overwrite', action='store_true', default=None,
                        help='Delete the output path first if it exists')
    parser.add_argument('-maxfiles', '--maxfiles', dest='max_files', type=int, metavar='MAXFILES',
                        help='Process at most this many archive files')
    parser.add_argument('-numreducers', '--numreducers', dest='num_reducers', type=int,
                        metavar='NUMBER_OF_REDUCERS', help='Number of reduce tasks (default: 60)')
    parser.add_argument('-compress', '--compress', dest='compress', action='store_true', default=None,
                        help='Gzip the output partitions')
    parser.add_argument('--job-file', dest='job_file',
                        help='Python file defining analyze(record) (default: bundled traitor analyzer)')
    parser.add_argument('--suffix', dest='suffix', help='Input file name suffix (default: .arc.gz)')
    parser.add_argument('--overflow-policy', dest='overflow_policy', choices=['saturate', 'reject', 'drop'],
                        help='What to do with sums outside the int64 range (default: saturate)')
    parser.add_argument('--workers', dest='workers',
                        help='Comma separated worker addresses (host:port); runs locally if omitted')
    parser.add_argument('--map-workers', dest='map_workers', type=int,
                        help='Local pool size when running without remote workers')
    parser.add_argument('--metrics-out', dest='metrics_out', help='Write the job report as JSON here')
    parser.add_argument('--log-level', dest='log_level', default='INFO')
    return parser


def build_config(args) -> JobConfig:
    """Defaults, then the config file, then explicit command line flags."""
    config = JobConfig()
    if args.config_file:
        config = load_config_file(args.config_file, config)
    config = config.with_overrides(
        input_path=args.input_path,
        output_path=args.output_path,
        overwrite=args.overwrite,
        max_files=args.max_files,
        num_reducers=args.num_reducers,
        compress=args.compress,
        job_file=args.job_file,
        suffix=args.suffix,
        overflow_policy=args.overflow_policy,
        map_workers=args.map_workers,
    )
    # Workers resolve relative paths against their own working directory
    return config.with_overrides(**{
        name: os.path.abspath(getattr(config, name))
        for name in PATH_FIELDS if getattr(config, name)
    })


def print_counters(result):
    print(f"Job status: {result.status.value}")
    for name, value in sorted(result.counters.items()):
        print(f"  {name}={value}")
    if result.lost_files:
        print(f"Lost files: {len(result.lost_files)}")
    if result.error_message:
        print(f"Error: {result.error_message}")


def main(argv=None) -> int:
    """
    Run the job

    Returns:
        0 if the job succeeds, 1 if not; malformed arguments exit with 2
    """
    parser = build_parser()
    args, unknown = parser.parse_known_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    for arg in unknown:
        logger.warning(f"Unsupported argument: {arg}")

    try:
        config = build_config(args)
        config.validate()
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        parser.exit(2, f"{parser.prog}: error: {e}\n")

    pool = None
    if args.workers:
        addresses = [a.strip() for a in args.workers.split(',') if a.strip()]
        try:
            pool = GrpcWorkerPool(addresses, task_timeout=config.task_timeout_seconds)
        except ConnectionError as e:
            logger.error(str(e))
            return 1

    try:
        result = JobCoordinator(config, pool=pool).run()
    finally:
        if pool is not None:
            pool.shutdown()

    print_counters(result)
    if args.metrics_out:
        result.report.save_to_file(args.metrics_out)
        logger.info(f"Job report written to {args.metrics_out}")

    return result.exit_code


if __name__ == '__main__':
    sys.exit(main())
