"""
PNG charts of a run's time series.
"""
import logging
from pathlib import Path
from typing import List

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from core.aggregator import RunReport

logger = logging.getLogger(__name__)

SERIES_CAPTIONS = {
    'heapTotal': ('heapTotal (MB)', 'MB'),
    'heapUsed': ('heapUsed (MB)', 'MB'),
    'responseTimes': ('responseTimes (ms)', 'ms'),
}


def render_charts(report: RunReport, output_dir: str) -> List[Path]:
    """
    Write one chart per time series plus the response time histogram.

    Returns:
        Paths of the written files
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    written = []

    for name, (caption, unit) in SERIES_CAPTIONS.items():
        samples = report.measurements.get(name, [])
        if not samples:
            continue
        fig, ax = plt.subplots(figsize=(10, 4))
        ax.plot([s[0] for s in samples], [s[1] for s in samples],
                marker='.' if name == 'responseTimes' else None,
                linestyle='none' if name == 'responseTimes' else '-')
        ax.set_title(caption)
        ax.set_xlabel('elapsed (s)')
        ax.set_ylabel(unit)
        ax.grid(alpha=0.3)
        path = out / f"{name}.png"
        fig.savefig(path, dpi=100, bbox_inches='tight')
        plt.close(fig)
        written.append(path)

    histogram = report.response_times.histogram
    if histogram:
        lowers = [lower for lower, _ in histogram]
        counts = [count for _, count in histogram]
        width = lowers[1] - lowers[0] if len(lowers) > 1 else 1.0
        fig, ax = plt.subplots(figsize=(10, 4))
        ax.bar(lowers, counts, width=width, align='edge', edgecolor='black')
        ax.set_title('responseTimes histogram')
        ax.set_xlabel('ms')
        ax.set_ylabel('count')
        path = out / 'responseTimes_histogram.png'
        fig.savefig(path, dpi=100, bbox_inches='tight')
        plt.close(fig)
        written.append(path)

    logger.info(f"Wrote {len(written)} charts to {out}")
    return written
