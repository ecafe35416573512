"""
In-memory metric store for the MTR exporter.

This module keeps the labeled counters and latency summaries fed by the
collector, and renders them in the Prometheus text exposition format.
The collector thread is the only writer; HTTP handlers read concurrently,
so every family is guarded by the store's lock.
"""

import math
from collections import deque
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from collector.scheduler import MetricSink
from models import ChangeEvent, DestinationChange, RouteChange, Trace, TraceFailure, UNKNOWN_ADDRESS


NAMESPACE = "mtr"
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

HOP_LABELS = ("alias", "server", "hop_id", "hop_ip")
QUANTILES = (0.5, 0.9, 0.99)


class SlidingWindowBuffer:
    """
    Fixed-size sliding window of observations.

    When the buffer is full the oldest observation is evicted.
    """

    def __init__(self, maxlen: int = 500):
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self.maxlen = maxlen
        self.buffer = deque(maxlen=maxlen)

    def append(self, value: float) -> None:
        self.buffer.append(value)

    def quantile(self, q: float) -> Optional[float]:
        """
        Nearest-rank quantile of the current window.

        Returns:
            The q-quantile, or None if the buffer is empty
        """
        if not self.buffer:
            return None
        ordered = sorted(self.buffer)
        # tolerance keeps 0.9 * 100 from rounding up to rank 91
        rank = max(math.ceil(q * len(ordered) - 1e-9), 1)
        return ordered[rank - 1]

    def __len__(self) -> int:
        return len(self.buffer)

    def __iter__(self):
        return iter(self.buffer)


def escape_label_value(value: str) -> str:
    """Escape a label value for the text exposition format."""
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def format_labels(names: Sequence[str], values: Sequence[str], extra: Iterable[Tuple[str, str]] = ()) -> str:
    """
    Render a label set as `{name="value",...}`.

    Args:
        names: Label names
        values: Label values, in the same order as names
        extra: Additional (name, value) pairs appended after the others

    Returns:
        The label block, or an empty string when there are no labels
    """
    pairs = list(zip(names, values)) + list(extra)
    if not pairs:
        return ""
    inner = ",".join(f'{name}="{escape_label_value(value)}"' for name, value in pairs)
    return "{" + inner + "}"


def format_value(value: float) -> str:
    """Render a sample value, spelling out NaN and infinities."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(float(value))


class CounterVec:
    """
    A family of monotonic counters partitioned by label values.

    Attributes:
        name: Full metric name
        help: One-line description
        label_names: Label names, in order
    """

    metric_type = "counter"

    def __init__(self, name: str, help: str, label_names: Sequence[str]):
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._values: Dict[Tuple[str, ...], float] = {}

    def add(self, label_values: Sequence[str], amount: float = 1.0) -> None:
        """
        Increase the counter of one label set.

        Args:
            label_values: Values for label_names, in order
            amount: Non-negative increment (default: 1.0)

        Raises:
            ValueError: If amount is negative or the label count is wrong
        """
        if amount < 0:
            raise ValueError("counters can only increase")
        key = self._key(label_values)
        self._values[key] = self._values.get(key, 0.0) + amount

    def inc(self, label_values: Sequence[str]) -> None:
        """Increase the counter of one label set by one."""
        self.add(label_values, 1.0)

    def get(self, label_values: Sequence[str]) -> float:
        """
        Current value of one label set.

        Returns:
            The counter value, 0.0 if it was never incremented
        """
        return self._values.get(self._key(label_values), 0.0)

    def _key(self, label_values: Sequence[str]) -> Tuple[str, ...]:
        key = tuple(str(value) for value in label_values)
        if len(key) != len(self.label_names):
            raise ValueError(
                f"{self.name} expects {len(self.label_names)} label values, got {len(key)}"
            )
        return key

    def samples(self) -> List[str]:
        """Exposition lines for every label set, sorted by label values."""
        return [
            f"{self.name}{format_labels(self.label_names, key)} {format_value(value)}"
            for key, value in sorted(self._values.items())
        ]

    def clear(self) -> None:
        self._values.clear()


class SummaryVec:
    """
    A family of summaries with quantiles over a sliding window of observations.
    """

    metric_type = "summary"

    def __init__(
        self,
        name: str,
        help: str,
        label_names: Sequence[str],
        quantiles: Sequence[float] = QUANTILES,
        window: int = 500
    ):
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self.quantiles = tuple(quantiles)
        self.window = window
        # {labels: [window, count, sum]}
        self._series: Dict[Tuple[str, ...], list] = {}

    def observe(self, label_values: Sequence[str], value: float) -> None:
        """
        Record one observation for a label set.

        Args:
            label_values: Values for label_names, in order
            value: Observed value

        Raises:
            ValueError: If the label count is wrong
        """
        key = tuple(str(v) for v in label_values)
        if len(key) != len(self.label_names):
            raise ValueError(
                f"{self.name} expects {len(self.label_names)} label values, got {len(key)}"
            )
        series = self._series.get(key)
        if series is None:
            series = [SlidingWindowBuffer(maxlen=self.window), 0, 0.0]
            self._series[key] = series
        series[0].append(value)
        series[1] += 1
        series[2] += value

    def get_count(self, label_values: Sequence[str]) -> int:
        """Total observations of a label set, including evicted ones."""
        series = self._series.get(tuple(str(v) for v in label_values))
        return series[1] if series else 0

    def get_quantile(self, label_values: Sequence[str], q: float) -> Optional[float]:
        """
        Quantile over the current window of a label set.

        Returns:
            The q-quantile, or None if the label set has no observations
        """
        series = self._series.get(tuple(str(v) for v in label_values))
        return series[0].quantile(q) if series else None

    def samples(self) -> List[str]:
        """Quantile, _sum and _count lines for every label set."""
        lines = []
        for key, (window, count, total) in sorted(self._series.items()):
            for q in self.quantiles:
                value = window.quantile(q)
                labels = format_labels(self.label_names, key, [("quantile", repr(q))])
                lines.append(f"{self.name}{labels} {format_value(value if value is not None else math.nan)}")
            labels = format_labels(self.label_names, key)
            lines.append(f"{self.name}_sum{labels} {format_value(total)}")
            lines.append(f"{self.name}_count{labels} {format_value(count)}")
        return lines

    def clear(self) -> None:
        self._series.clear()


class MetricStore(MetricSink):
    """
    Thread-safe store of all exported metric families.

    Besides the counters it keeps the most recent successful Trace per alias,
    served by the JSON API.
    """

    def __init__(self, version: str = "0.0.0", summary_window: int = 500):
        """
        Initialize an empty store.

        Args:
            version: Exporter version reported by mtr_exporter_build_info
            summary_window: Observations kept per latency summary (default: 500)
        """
        self.version = version
        self._lock = Lock()
        self._latest: Dict[str, Trace] = {}

        self.sent = CounterVec(f"{NAMESPACE}_sent", "packets sent", HOP_LABELS)
        self.received = CounterVec(f"{NAMESPACE}_received", "packets received", HOP_LABELS)
        self.dropped = CounterVec(f"{NAMESPACE}_dropped", "packets dropped", HOP_LABELS)
        self.lost = CounterVec(f"{NAMESPACE}_lost", "packets lost", HOP_LABELS)
        self.latency = SummaryVec(
            f"{NAMESPACE}_latency",
            "packet latency in microseconds",
            HOP_LABELS,
            window=summary_window
        )
        self.route_changes = CounterVec(
            f"{NAMESPACE}_route_changes", "route changes", ("alias", "server", "hop_id")
        )
        self.destination_changes = CounterVec(
            f"{NAMESPACE}_destination_changes",
            "Number of times the destination IP has changed",
            ("alias", "server", "previous", "current")
        )
        self.failed = CounterVec(f"{NAMESPACE}_failed", "MTR runs failed", ("alias", "server"))

        self._families = [
            self.sent,
            self.received,
            self.dropped,
            self.lost,
            self.latency,
            self.route_changes,
            self.destination_changes,
            self.failed,
        ]

    def record_trace(self, trace: Trace) -> None:
        with self._lock:
            for hop in trace.hops:
                labels = (trace.alias, trace.target, str(hop.index), hop.label_address)
                self.sent.add(labels, hop.sent)
                self.received.add(labels, hop.received)
                self.dropped.add(labels, hop.dropped)
                self.lost.add(labels, hop.loss_fraction * hop.sent)
                if hop.received > 0:
                    self.latency.observe(labels, hop.mean)
            self._latest[trace.alias] = trace

    def record_failure(self, failure: TraceFailure) -> None:
        with self._lock:
            self.failed.inc((failure.alias, failure.target))

    def record_change(self, event: ChangeEvent) -> None:
        with self._lock:
            if isinstance(event, RouteChange):
                self.route_changes.inc((event.alias, event.target, str(event.hop_index)))
            elif isinstance(event, DestinationChange):
                self.destination_changes.inc((
                    event.alias,
                    event.target,
                    event.previous if event.previous is not None else UNKNOWN_ADDRESS,
                    event.current if event.current is not None else UNKNOWN_ADDRESS,
                ))
            else:
                raise TypeError(f"Unknown change event: {event!r}")

    def latest_traces(self) -> List[Trace]:
        """Return the most recent successful trace of every alias, sorted by alias."""
        with self._lock:
            return [self._latest[alias] for alias in sorted(self._latest)]

    def get_trace_count(self) -> int:
        with self._lock:
            return len(self._latest)

    def render(self) -> str:
        """
        Render every metric family in the Prometheus text exposition format.
        """
        lines = [
            "# HELP mtr_exporter_build_info A metric with a constant '1' value labeled by version.",
            "# TYPE mtr_exporter_build_info gauge",
            f"mtr_exporter_build_info{format_labels(('version',), (self.version,))} 1.0",
        ]
        with self._lock:
            for family in self._families:
                lines.append(f"# HELP {family.name} {family.help}")
                lines.append(f"# TYPE {family.name} {family.metric_type}")
                lines.extend(family.samples())
        return "\n".join(lines) + "\n"

    def clear(self) -> None:
        """
        Drop all recorded values.

        Useful for testing or resetting the exporter state.
        """
        with self._lock:
            for family in self._families:
                family.clear()
            self._latest.clear()
