"""
Route and destination change detection.

Compares each successful trace with the previous one for the same alias and
reports where the path moved.
"""

import logging
from typing import Dict, List, Optional

from models import ChangeEvent, DestinationChange, RouteChange, RouteState, Trace


logger = logging.getLogger(__name__)


def diff_routes(previous: List[Optional[str]], current: List[Optional[str]]) -> List[int]:
    """
    Find the hop indices at which two routes diverge.

    Routes of different length diverge once, at the length of the shorter one.
    Routes of equal length are compared hop by hop, leaving out the final hop:
    a differing destination is reported as a destination change instead.

    Args:
        previous: Hop addresses of the earlier trace
        current: Hop addresses of the newer trace

    Returns:
        Divergence indices in ascending order (empty if the routes match)

    Examples:
        >>> diff_routes(["a", "b", "c"], ["a", "b", "c", "d", "e"])
        [3]
        >>> diff_routes(["a", "b", "c"], ["a", "x", "d"])
        [1]
    """
    shortest = min(len(previous), len(current))
    if len(previous) != len(current):
        return [shortest]
    return [i for i in range(shortest - 1) if previous[i] != current[i]]


class ChangeDetector:
    """
    Per-alias memory of the last observed route and destination.

    Only the aggregating thread calls observe(); the state is never shared
    with the worker threads, so it carries no lock.

    Attributes:
        _states: Dictionary mapping alias to its last RouteState
    """

    def __init__(self):
        """Initialize a detector with no history."""
        self._states: Dict[str, RouteState] = {}

    def route_state(self, alias: str) -> Optional[RouteState]:
        """Return the stored state for an alias, or None if never observed."""
        return self._states.get(alias)

    def observe(self, trace: Trace) -> List[ChangeEvent]:
        """
        Compare a successful trace with the stored state and replace it.

        The first trace of an alias only seeds its state.

        Args:
            trace: Newly aggregated successful trace

        Returns:
            Change events, destination change first, then route changes by index
        """
        route = trace.route
        destination = trace.destination
        previous = self._states.get(trace.alias)
        events: List[ChangeEvent] = []

        if previous is not None:
            if previous.destination != destination:
                events.append(DestinationChange(
                    alias=trace.alias,
                    target=trace.target,
                    previous=previous.destination,
                    current=destination
                ))
            for index in diff_routes(previous.route, route):
                events.append(RouteChange(
                    alias=trace.alias,
                    target=trace.target,
                    hop_index=index
                ))

        self._states[trace.alias] = RouteState(route=route, destination=destination)

        for event in events:
            logger.warning(f"Path change for {trace.alias} ({trace.target}): {event!r}")

        return events

    def reset(self) -> None:
        """Forget all stored routes."""
        self._states.clear()
