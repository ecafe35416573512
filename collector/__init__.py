"""
Collector module for the MTR exporter.
Runs mtr against every target, derives per-hop statistics and detects path changes.
"""

from collector.errors import TraceError, ProbeExecutionError, MalformedOutput
from collector.raw_parser import parse_raw_output
from collector.statistics import compute_statistics
from collector.tracer import MtrTracer
from collector.detector import ChangeDetector, diff_routes
from collector.scheduler import Scheduler, MetricSink

__all__ = [
    'TraceError',
    'ProbeExecutionError',
    'MalformedOutput',
    'parse_raw_output',
    'compute_statistics',
    'MtrTracer',
    'ChangeDetector',
    'diff_routes',
    'Scheduler',
    'MetricSink',
]
