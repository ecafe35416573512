"""
Tracer module - runs mtr against a single target.

This module wraps the `mtr --raw` invocation, hands its output to the raw
parser and computes per-hop statistics for the resulting trace.
"""

import logging
import subprocess
from typing import List, Optional, Sequence

from collector.errors import MalformedOutput, ProbeExecutionError
from collector.raw_parser import parse_raw_output
from collector.statistics import compute_statistics
from models import Host, Trace


logger = logging.getLogger(__name__)


class MtrTracer:
    """
    Runs mtr in raw mode and turns its output into a Trace.

    Attributes:
        mtr_binary: Path or name of the mtr executable
        cycles: Number of probes sent to each hop (mtr -c)
        args: Extra arguments appended after the target
        timeout: Seconds to wait for mtr before giving up (None waits forever)
    """

    def __init__(
        self,
        mtr_binary: str = "mtr",
        cycles: int = 1,
        args: Sequence[str] = (),
        timeout: Optional[float] = 60
    ):
        """
        Initialize MtrTracer.

        Args:
            mtr_binary: mtr executable (default: "mtr")
            cycles: Probes per hop (default: 1)
            args: Extra mtr arguments (default: none)
            timeout: Per-trace timeout in seconds (default: 60)
        """
        if cycles <= 0:
            raise ValueError("cycles must be positive")
        self.mtr_binary = mtr_binary
        self.cycles = cycles
        self.args = tuple(args)
        self.timeout = timeout

    def build_command(self, target: str) -> List[str]:
        """
        Build the mtr command line for a target.

        Example:
            ["mtr", "--raw", "-c", "1", "example.com", "-n"]
        """
        return [self.mtr_binary, "--raw", "-c", str(self.cycles), target, *self.args]

    def _execute(self, target: str) -> bytes:
        cmd = self.build_command(target)
        logger.debug(f"Executing: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                check=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeExecutionError(
                f"mtr to {target} timed out after {self.timeout}s"
            ) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise ProbeExecutionError(
                f"mtr to {target} exited with status {e.returncode}: {stderr}"
            ) from e
        except OSError as e:
            raise ProbeExecutionError(f"could not run {self.mtr_binary}: {e}") from e

        return result.stdout

    def run(self, host: Host) -> Trace:
        """
        Trace one target and compute its per-hop statistics.

        Args:
            host: Configured target

        Returns:
            Trace with hops ordered by index

        Raises:
            ProbeExecutionError: If mtr could not run or failed
            MalformedOutput: If the output is unparsable or contains no hops
        """
        output = self._execute(host.name)
        hops = parse_raw_output(output)
        if not hops:
            raise MalformedOutput(f"mtr to {host.name} reported no hops")

        for hop in hops:
            compute_statistics(hop, self.cycles)

        return Trace(target=host.name, alias=host.alias, hops=hops)
