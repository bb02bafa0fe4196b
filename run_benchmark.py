#!/usr/bin/env python3
"""
Reactive Query Latency Benchmark - CLI Tool

Installs a fixed scores dataset, issues randomized inserts/updates/deletes at
a fixed rate, and measures how quickly each change is observed by a change
notification backend. Press Ctrl+C to stop and print the report (press it
twice to force quit).

Usage Examples:
    # List available backends
    python run_benchmark.py --list-backends

    # Run against trigger notifications until Ctrl+C
    python run_benchmark.py notify-full

    # Run the polling backend for 60 seconds and save measurements
    python run_benchmark.py poll results.json --duration 60

    # Reuse an installed dataset and render charts
    python run_benchmark.py notify-changed --skip-install --charts-dir charts
"""

import argparse
import logging
import random
import signal
import sys

from config import (
    BENCHMARK_CONFIG, DATABASE_CONFIG, get_connection_string, get_controller_options,
    get_dataset_settings, get_feed_config, get_mutation_rates, print_config, validate_config,
)
from core.aggregator import MeasurementAggregator, MeasurementWorker
from core.backend import ChangeFeedFactory
from core.controller import RunController
from core.workload import build_mutation_specs
import backends  # noqa: F401  (registers change feeds)
from utils.dataset import install_dataset, reset_dataset, verify_dataset
from utils.db_connection import ScoreStore, check_connection, silence_psycopg_logging
from utils.metrics import print_report, save_measurements

logger = logging.getLogger(__name__)


class BenchmarkCLI:
    """Main CLI handler for the latency benchmark"""

    def __init__(self):
        self.controller = None
        self._interrupted = False

    def list_backends(self):
        print("\n📋 Available Backends:")
        print("=" * 60)
        for feed_type in ChangeFeedFactory.list_feeds():
            print(f"  • {feed_type.value}")
        print("=" * 60)

    def _handle_interrupt(self, signum, frame):
        if self._interrupted:
            return
        self._interrupted = True
        # A second Ctrl+C kills the process.
        signal.signal(signal.SIGINT, signal.SIG_DFL)
        if self.controller is not None:
            self.controller.request_stop()

    def run(self, backend_name, output_file=None, duration=None, skip_install=False,
            charts_dir=None):
        """
        Run one benchmark.

        Returns:
            Process exit code
        """
        issues = validate_config()
        if issues:
            for issue in issues:
                logger.error(f"Configuration issue: {issue}")
            return 1

        feed = ChangeFeedFactory.create(backend_name, get_feed_config())
        settings = get_dataset_settings()
        conninfo = get_connection_string()
        seed = BENCHMARK_CONFIG['random_seed']

        if not check_connection(conninfo):
            return 1

        if skip_install:
            reset_dataset(conninfo, settings)
            if not verify_dataset(conninfo, settings):
                logger.error("Installed dataset does not match the configured settings; rerun without --skip-install")
                return 1
        else:
            print("Installing data...")
            install_dataset(conninfo, settings, seed=random.Random(seed).uniform(-1, 1))
            print('Data installed!')

        store = ScoreStore(conninfo,
                           min_size=DATABASE_CONFIG['pool_min_size'],
                           max_size=DATABASE_CONFIG['pool_max_size'])
        if BENCHMARK_CONFIG['measurement_process']:
            sink = MeasurementWorker(use_process=True)
        else:
            sink = MeasurementAggregator()

        self.controller = RunController(
            settings, feed, store,
            build_mutation_specs(settings, get_mutation_rates()),
            sink=sink,
            options=get_controller_options(),
            rng=random.Random(seed),
        )

        signal.signal(signal.SIGINT, self._handle_interrupt)
        print('Beginning test queries...')
        try:
            report = self.controller.run(duration=duration)
        finally:
            store.close()

        if output_file:
            save_measurements(report, output_file)
        print_report(report)

        if charts_dir:
            from utils.charts import render_charts
            render_charts(report, charts_dir)
        return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Reactive query latency benchmark',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('backend', nargs='?',
                        help='Change notification backend (see --list-backends)')
    parser.add_argument('output', nargs='?',
                        help='Output file for raw measurements (JSON format)')
    parser.add_argument('--list-backends', action='store_true',
                        help='List all available backends')
    parser.add_argument('--show-config', action='store_true',
                        help='Show current configuration')
    parser.add_argument('--duration', type=float,
                        help='Stop automatically after this many seconds')
    parser.add_argument('--skip-install', action='store_true',
                        help='Reuse the installed dataset')
    parser.add_argument('--charts-dir', type=str,
                        help='Directory for PNG charts of the run')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    silence_psycopg_logging()

    cli = BenchmarkCLI()

    if args.list_backends:
        cli.list_backends()
        return 0

    if args.show_config:
        print_config()
        return 0

    if not args.backend:
        parser.error("the backend argument is required")

    try:
        ChangeFeedFactory.resolve(args.backend)
    except ValueError as e:
        parser.error(str(e))

    return cli.run(
        backend_name=args.backend,
        output_file=args.output,
        duration=args.duration,
        skip_install=args.skip_install,
        charts_dir=args.charts_dir,
    )


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n⚠️  Benchmark interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
