"""
Pydantic data models for the MTR exporter.

These models describe the targets read from configuration, the hops and
traces produced by one mtr run, and the change events raised when a
target's path moves between cycles.
"""

from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


# Label used for hops that never replied
UNKNOWN_ADDRESS = "???"


class Host(BaseModel):
    """
    A configured trace target.

    Attributes:
        name: Hostname or address handed to mtr
        alias: Stable logical label, used as the aggregation key
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Target hostname or address")
    alias: str = Field(..., min_length=1, description="Logical label for the target")


class Hop(BaseModel):
    """
    One router hop observed during a trace.

    Latency values are in microseconds. The derived fields stay at zero until
    compute_statistics() has run, and stay at zero for hops that never replied.
    """
    index: int = Field(..., ge=0, description="Hop number, starting at 0")
    address: Optional[str] = Field(None, description="Hop IP address")
    hostname: Optional[str] = Field(None, description="Reverse DNS name")
    latency_samples: List[int] = Field(default_factory=list, description="Per-packet RTT in microseconds")

    sent: int = 0
    received: int = 0
    dropped: int = 0
    loss_fraction: float = 0.0
    mean: float = 0.0
    best: int = 0
    worst: int = 0
    standard_deviation: float = 0.0
    mean_jitter: float = 0.0
    worst_jitter: int = 0
    interarrival_jitter: int = 0  # RFC 3550 A.8 shortcut

    @property
    def label_address(self) -> str:
        return self.address if self.address is not None else UNKNOWN_ADDRESS


class Trace(BaseModel):
    """
    A successful mtr run against one target.

    Attributes:
        target: Configured hostname or address
        alias: Logical label of the target
        hops: Hops ordered by index
    """
    target: str
    alias: str
    hops: List[Hop] = Field(default_factory=list)

    @property
    def route(self) -> List[Optional[str]]:
        """Ordered hop addresses."""
        return [hop.address for hop in self.hops]

    @property
    def destination(self) -> Optional[str]:
        """Address of the final hop, or None for an empty trace."""
        if not self.hops:
            return None
        return self.hops[-1].address


class TraceFailure(BaseModel):
    """Report of a trace that could not be completed."""
    target: str
    alias: str
    error: str


class RouteState(BaseModel):
    """Last successfully observed route and destination for one alias."""
    route: List[Optional[str]] = Field(default_factory=list)
    destination: Optional[str] = None


class RouteChange(BaseModel):
    """The route diverged from the previous trace at hop_index."""
    alias: str
    target: str
    hop_index: int = Field(..., ge=0)


class DestinationChange(BaseModel):
    """The final hop address differs from the previous trace."""
    alias: str
    target: str
    previous: Optional[str]
    current: Optional[str]


ChangeEvent = Union[RouteChange, DestinationChange]


class CycleReport(BaseModel):
    """Outcome of one collection cycle."""
    traces: List[Trace] = Field(default_factory=list)
    failures: List[TraceFailure] = Field(default_factory=list)
    events: List[ChangeEvent] = Field(default_factory=list)
