"""
Exceptions raised while tracing a single target.

Both kinds are recovered per target by the scheduler: they count as a failed
trace for that cycle and never abort the cycle for other targets.
"""


class TraceError(Exception):
    """Base class for per-target trace failures."""
    pass


class ProbeExecutionError(TraceError):
    """Raised when mtr could not be run, timed out, or exited abnormally."""
    pass


class MalformedOutput(TraceError):
    """Raised when mtr output does not match the raw protocol."""
    pass
