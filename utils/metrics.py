"""
Report printing and persistence for reactive query benchmarks.
"""
import json
import logging
from typing import List, Sequence, Tuple

import numpy as np

from core.aggregator import RunReport

logger = logging.getLogger(__name__)


def save_measurements(report: RunReport, filepath: str) -> bool:
    """
    Save the raw time series to a JSON file.

    Failures are logged and do not abort the report.

    Returns:
        True if the file was written
    """
    try:
        with open(filepath, 'w') as f:
            json.dump(report.to_output(), f, indent=2)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Unable to save output to {filepath}: {e}")
        return False

    print(f"💾 Measurements saved to: {filepath}")
    return True


def format_histogram(histogram: Sequence[Tuple[float, int]], width: int = 40) -> List[str]:
    """Render (lower_bound, count) buckets as text bars."""
    if not histogram:
        return []
    peak = max(count for _, count in histogram) or 1
    lines = []
    for lower, count in histogram:
        bar = '█' * int(round(width * count / peak))
        lines.append(f"  {lower:10.2f} ms | {bar} {count}")
    return lines


def series_stats(samples: Sequence[Sequence[float]]) -> dict:
    """Min / mean / max over the value column of a time series."""
    if not samples:
        return {}
    values = np.array([sample[1] for sample in samples], dtype=float)
    return {
        'samples': len(values),
        'min': float(np.min(values)),
        'mean': float(np.mean(values)),
        'max': float(np.max(values)),
    }


def print_report(report: RunReport):
    """
    Print the final summary block.
    """
    summary = report.response_times

    print("\n" + "=" * 70)
    print(f"Reactive Query Latency: {report.feed_info.get('type', 'unknown')}")
    print("=" * 70)

    print(f"Duration:        {report.duration_seconds:.1f}s")
    print("\nFinal Runtime Status:")
    for key, value in report.run_state.items():
        print(f"  {key}: {value}")

    if summary.count == 0:
        print("\n❌ No response times collected")
    else:
        print(f"\nResponse Times ({summary.count} samples):")
        print(f"  Mean:    {summary.mean:8.2f} ms")
        print(f"  StdDev:  {summary.stdev:8.2f} ms")
        print("\nResponse Times Histogram:")
        for line in format_histogram(summary.histogram):
            print(line)

    for name, unit in (('heapTotal', 'MB'), ('heapUsed', 'MB')):
        stats = series_stats(report.measurements.get(name, []))
        if stats:
            print(f"\n{name} ({unit}): min {stats['min']:.1f}, mean {stats['mean']:.1f}, "
                  f"max {stats['max']:.1f} over {stats['samples']} samples")

    print("=" * 70 + "\n")
