"""
Run controller: owns the lifecycle of one benchmark run.

Start:    subscribe every observed class, start memory sampling, start the
          mutation scheduler.
Run:      sample memory and print a progress line every second.
Shutdown: stop scheduling, cancel sampling, drain submitted statements, fetch
          the final measurements and build the report. Idempotent.
"""

import gc
import logging
import random
import sys
import threading
import time
import tracemalloc
from typing import Any, Callable, Dict, List, Optional

import psutil

from core.aggregator import MeasurementAggregator, RunReport
from core.backend import ChangeFeed, build_reactive_query
from core.correlator import ChangeCorrelator
from core.generator import MutationGenerator
from core.ledger import PendingChangeLedger
from core.scheduler import RateScheduler
from core.workload import DatasetSettings, MutationSpec, OperationKind, RunState

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = {
    'sample_interval': 1.0,
    'stale_threshold_ms': 5000,
    'histogram_buckets': 50,
    'recency_window': 1000,
    'recent_insert_margin': 1000,
    'max_attempts': 1000,
    'max_workers': 10,
    'trace_memory': True,
    'measurement_timeout': 30.0,
}


class RunController:
    """
    Coordinates generator, scheduler, correlator and measurement sink.

    Usage:
        controller = RunController(settings, feed, store, specs, sink=MeasurementWorker())
        report = controller.run(duration=60)
    """

    def __init__(
        self,
        settings: DatasetSettings,
        feed: ChangeFeed,
        store,
        specs: List[MutationSpec],
        sink=None,
        options: Optional[Dict[str, Any]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.perf_counter,
        progress_stream=sys.stdout,
    ):
        self.settings = settings
        self.feed = feed
        self.store = store
        self.specs = specs
        self.sink = sink if sink is not None else MeasurementAggregator()
        self.options = {**DEFAULT_OPTIONS, **(options or {})}
        self.clock = clock
        self.progress_stream = progress_stream

        self.state = RunState()
        self.ledger = PendingChangeLedger(clock=clock)
        self.generator = MutationGenerator(
            settings, self.ledger, self.state, rng=rng,
            recency_window=self.options['recency_window'],
            recent_insert_margin=self.options['recent_insert_margin'],
            max_attempts=self.options['max_attempts'],
        )
        self.correlator = ChangeCorrelator(settings, self.ledger, self.state, self.sink, clock=clock)
        self.scheduler = RateScheduler(
            specs, self.generator, store, self.ledger, self.state,
            on_error=self.fail, max_workers=self.options['max_workers'],
        )
        self.feed.on_error = self.fail

        self.start_time: Optional[float] = None
        self.fatal_error: Optional[BaseException] = None
        self.report: Optional[RunReport] = None
        self._stop_requested = threading.Event()
        self._stop_sampling = threading.Event()
        self._sampler: Optional[threading.Thread] = None
        self._shutdown_lock = threading.Lock()
        self._started_tracing = False
        self._process = psutil.Process()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Start the run.

        Raises:
            Exception: Subscription or backend start failures (fatal)
        """
        if hasattr(self.sink, 'start'):
            self.sink.start()
        if self.options['trace_memory'] and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._started_tracing = True

        self.start_time = self.clock()
        self.correlator.mark_start(self.start_time)

        for class_id in self.settings.observed_classes():
            query = build_reactive_query(self.settings, class_id)
            self.feed.subscribe(query, self.correlator.listener_for(class_id))
        self.feed.start()
        logger.info(f"Subscribed {self.settings.reactive_queries_count} reactive queries "
                    f"({self.feed.get_feed_info()['type']})")

        self.sample()
        self._sampler = threading.Thread(target=self._run_sampler, name='memory-sampler', daemon=True)
        self._sampler.start()

        self.scheduler.start()

    def request_stop(self):
        """Ask the run to stop; safe to call from signal handlers and other threads."""
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def fail(self, error: BaseException):
        """Record a fatal error (the first one wins) and stop the run."""
        if self.fatal_error is None:
            self.fatal_error = error
            logger.error(f"Fatal error, stopping run: {error}")
        self.request_stop()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a stop is requested or the timeout elapses."""
        return self._stop_requested.wait(timeout)

    def shutdown(self) -> RunReport:
        """
        Stop the run and build the report.

        Repeated calls return the same report.
        """
        with self._shutdown_lock:
            if self.report is not None:
                return self.report
            self._stop_requested.set()

            self._stop_sampling.set()
            if self._sampler is not None:
                self._sampler.join()
            self.scheduler.stop()

            duration = self.clock() - self.start_time if self.start_time is not None else 0.0
            if hasattr(self.sink, 'request_measurements'):
                measurements = self.sink.request_measurements(self.options['measurement_timeout'])
            else:
                measurements = self.sink.get_measurements()

            self._close_quietly('change feed', self.feed.stop)
            if hasattr(self.sink, 'stop'):
                self._close_quietly('measurement worker', self.sink.stop)
            if self._started_tracing:
                tracemalloc.stop()
                self._started_tracing = False

            discarded = self.ledger.clear()
            if discarded:
                logger.info(f"Discarded {discarded} unconfirmed changes")

            self.report = RunReport.build(
                measurements, self.state.snapshot(), duration,
                bucket_count=self.options['histogram_buckets'],
                feed_info=self.feed.get_feed_info(),
            )
            return self.report

    def run(self, duration: Optional[float] = None) -> RunReport:
        """
        Start, wait for a stop request (or `duration` seconds), then shut down.

        Raises:
            Exception: The run's fatal error, after shutdown completed
        """
        try:
            self.start()
        except Exception as e:
            self.fail(e)
        else:
            self.wait(duration)
        report = self.shutdown()
        if self.fatal_error is not None:
            raise self.fatal_error
        return report

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _run_sampler(self):
        interval = self.options['sample_interval']
        while not self._stop_sampling.wait(interval):
            self.sample()

    def elapsed(self) -> float:
        return self.clock() - self.start_time

    def sample(self):
        """Record one memory sample and refresh the progress line."""
        gc.collect()
        rss_mb = self._process.memory_info().rss / 1024 / 1024
        if tracemalloc.is_tracing():
            used_mb = tracemalloc.get_traced_memory()[0] / 1024 / 1024
        else:
            used_mb = rss_mb

        elapsed = self.elapsed()
        self.sink.record_memory_sample(elapsed, rss_mb, used_mb)
        self._print_progress(elapsed)

    def progress(self, elapsed: float) -> Dict[str, Any]:
        return {
            'elapsed': elapsed,
            'unconfirmed': {kind: self.state.get_unconfirmed(kind) for kind in OperationKind},
            'changes': self.ledger.count(),
            'stale_changes': self.ledger.count_stale(self.options['stale_threshold_ms']),
        }

    def format_progress(self, elapsed: float) -> str:
        progress = self.progress(elapsed)
        unconfirmed = progress['unconfirmed']
        stale_seconds = self.options['stale_threshold_ms'] / 1000
        return (
            f"\r {int(elapsed)} seconds elapsed... ("
            f"{unconfirmed[OperationKind.INSERT]} unconfirmed inserts, "
            f"{unconfirmed[OperationKind.UPDATE]} unconfirmed updates, "
            f"{unconfirmed[OperationKind.DELETE]} unconfirmed deletes, "
            f"{progress['changes']} unconfirmed changes, "
            f"{progress['stale_changes']} unconfirmed changes > {stale_seconds:g}s)"
        )

    def _print_progress(self, elapsed: float):
        if self.progress_stream is None:
            return
        self.progress_stream.write(self.format_progress(elapsed))
        self.progress_stream.flush()

    def _close_quietly(self, name: str, close: Callable[[], None]):
        try:
            close()
        except Exception as e:
            logger.error(f"Error stopping {name}: {e}")
