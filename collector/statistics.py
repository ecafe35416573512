"""
Per-hop statistics derived from mtr packet samples.

All latency values are integer microseconds as reported by `mtr --raw`.
"""

import math
from typing import List

from models import Hop


def _interarrival_jitter(jitter: int, delta: int) -> int:
    """One step of the RFC 3550 Appendix A.8 running jitter estimate."""
    return jitter + delta - ((jitter + 8) >> 4)


def compute_statistics(hop: Hop, sent: int) -> Hop:
    """
    Fill in the derived fields of a hop from its latency samples.

    The hop is updated in place and returned. Hops without any reply only get
    their packet counters; every latency and jitter field keeps its zero default.

    Args:
        hop: Hop with its final list of latency samples
        sent: Number of probes sent to every hop (mtr -c)

    Returns:
        The same Hop instance
    """
    samples: List[int] = hop.latency_samples

    hop.sent = sent
    hop.received = len(samples)
    hop.dropped = max(sent - hop.received, 0)
    hop.loss_fraction = hop.dropped / sent if sent > 0 else 0.0

    if hop.received == 0:
        return hop

    hop.mean = sum(samples) / hop.received
    hop.best = min(samples)
    hop.worst = max(samples)

    # The estimate starts from zero for every trace
    jitter = 0
    deltas = []
    for previous, current in zip(samples, samples[1:]):
        delta = abs(current - previous)
        deltas.append(delta)
        jitter = _interarrival_jitter(jitter, delta)

    hop.interarrival_jitter = jitter
    hop.worst_jitter = max(deltas, default=0)
    hop.mean_jitter = sum(deltas) / len(deltas) if deltas else 0.0

    # NOTE: divides by the mean latency, not by the sample count
    squared = sum((sample - hop.mean) ** 2 for sample in samples)
    hop.standard_deviation = math.sqrt(squared / hop.mean) if hop.mean > 0 else 0.0

    return hop
