"""
Measurement aggregation for reactive query benchmarks.

Time series collected during a run:
- heapTotal:     [elapsed_seconds, MB] sampled every second
- heapUsed:      [elapsed_seconds, MB] sampled every second
- responseTimes: [elapsed_seconds, latency_ms] per correlated notification

Measurements can be kept in a separate process (MeasurementWorker) so the
stored samples do not count towards the measured process memory.
"""

import logging
import multiprocessing
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

SERIES = ('heapTotal', 'heapUsed', 'responseTimes')


@dataclass
class ResponseTimeSummary:
    """Summary statistics over all response-time samples"""
    count: int
    mean: Optional[float]
    stdev: Optional[float]
    histogram: List[Tuple[float, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'mean': self.mean,
            'stdev': self.stdev,
            'histogram': [[lower, count] for lower, count in self.histogram],
        }


def summarize_response_times(latencies: List[float], bucket_count: int = 50) -> ResponseTimeSummary:
    """
    Compute mean, population standard deviation and a fixed-bucket histogram.

    Args:
        latencies: Response times in milliseconds
        bucket_count: Number of equal-width histogram buckets

    Returns:
        ResponseTimeSummary; histogram entries are (bucket_lower_bound, count)
    """
    if bucket_count < 1:
        raise ValueError(f"bucket_count must be positive, got {bucket_count}")
    if not latencies:
        return ResponseTimeSummary(count=0, mean=None, stdev=None)

    values = np.array(latencies, dtype=float)
    counts, edges = np.histogram(values, bins=bucket_count)
    return ResponseTimeSummary(
        count=len(values),
        mean=float(np.mean(values)),
        stdev=float(np.std(values)),
        histogram=[(float(edges[i]), int(counts[i])) for i in range(len(counts))],
    )


class MeasurementAggregator:
    """Append-only time series buffers"""

    def __init__(self):
        self.measurements: Dict[str, List[List[float]]] = {name: [] for name in SERIES}

    def record(self, series: str, value):
        if series not in self.measurements:
            raise ValueError(f"Unknown message type: {series}")
        self.measurements[series].append(list(value))

    def record_memory_sample(self, elapsed: float, heap_total_mb: float, heap_used_mb: float):
        self.record('heapTotal', (elapsed, heap_total_mb))
        self.record('heapUsed', (elapsed, heap_used_mb))

    def record_response_time(self, elapsed: float, latency_ms: float):
        self.record('responseTimes', (elapsed, latency_ms))

    def get_measurements(self) -> Dict[str, List[List[float]]]:
        return {name: [list(sample) for sample in samples]
                for name, samples in self.measurements.items()}

    def summarize(self, bucket_count: int = 50) -> ResponseTimeSummary:
        return summarize_response_times(
            [sample[1] for sample in self.measurements['responseTimes']], bucket_count
        )


def _serve(inbox, outbox):
    """Worker loop: store samples until asked for them or told to stop."""
    aggregator = MeasurementAggregator()
    while True:
        message = inbox.get()
        message_type = message['type']
        if message_type == 'get':
            outbox.put(aggregator.get_measurements())
        elif message_type == 'stop':
            return
        else:
            aggregator.record(message_type, message['value'])


class MeasurementWorker:
    """
    Measurement sink living in another execution context.

    Recording is fire-and-forget; the run controller asks for the final
    measurements with `request_measurements()`.

    Usage:
        worker = MeasurementWorker()
        worker.start()
        worker.record_response_time(1.5, 12.3)
        measurements = worker.request_measurements()
        worker.stop()
    """

    def __init__(self, use_process: bool = True):
        self.use_process = use_process
        if use_process:
            self._inbox = multiprocessing.Queue()
            self._outbox = multiprocessing.Queue()
        else:
            self._inbox = queue.Queue()
            self._outbox = queue.Queue()
        self._runner = None

    @property
    def alive(self) -> bool:
        return self._runner is not None and self._runner.is_alive()

    def start(self):
        if self.use_process:
            self._runner = multiprocessing.Process(
                target=_serve, args=(self._inbox, self._outbox),
                name='measurement-worker', daemon=True,
            )
        else:
            self._runner = threading.Thread(
                target=_serve, args=(self._inbox, self._outbox),
                name='measurement-worker', daemon=True,
            )
        self._runner.start()

    def _post(self, message_type: str, value):
        self._inbox.put_nowait({'type': message_type, 'value': list(value)})

    def record_memory_sample(self, elapsed: float, heap_total_mb: float, heap_used_mb: float):
        self._post('heapTotal', (elapsed, heap_total_mb))
        self._post('heapUsed', (elapsed, heap_used_mb))

    def record_response_time(self, elapsed: float, latency_ms: float):
        self._post('responseTimes', (elapsed, latency_ms))

    def request_measurements(self, timeout: Optional[float] = 30.0) -> Dict[str, List[List[float]]]:
        """
        Ask the worker for everything recorded so far.

        Raises:
            TimeoutError: If the worker does not answer in time
        """
        self._inbox.put({'type': 'get'})
        try:
            return self._outbox.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("Measurement worker did not return measurements") from None

    def stop(self, timeout: float = 5.0):
        if self._runner is None:
            return
        if self._runner.is_alive():
            self._inbox.put({'type': 'stop'})
            self._runner.join(timeout)
        if self.use_process and self._runner.is_alive():
            logger.warning("Measurement worker did not exit, terminating")
            self._runner.terminate()
        self._runner = None


@dataclass
class RunReport:
    """Final measurements and statistics of a run"""
    measurements: Dict[str, List[List[float]]]
    run_state: Dict[str, Any]
    response_times: ResponseTimeSummary
    duration_seconds: float
    feed_info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, measurements: Dict[str, List[List[float]]], run_state: Dict[str, Any],
              duration_seconds: float, bucket_count: int = 50,
              feed_info: Optional[Dict[str, Any]] = None) -> 'RunReport':
        latencies = [sample[1] for sample in measurements.get('responseTimes', [])]
        return cls(
            measurements=measurements,
            run_state=run_state,
            response_times=summarize_response_times(latencies, bucket_count),
            duration_seconds=duration_seconds,
            feed_info=feed_info or {},
        )

    def to_output(self) -> Dict[str, List[List[float]]]:
        """The JSON document written to the output file."""
        return {name: self.measurements.get(name, []) for name in SERIES}
