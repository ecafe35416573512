"""
Parser for the output of `mtr --raw`.

mtr's raw mode prints one record per line, fields separated by spaces:

    h <hop> <ip address>     address of a hop
    d <hop> <hostname>       resolved DNS name of a hop
    p <hop> <microseconds>   one packet round-trip time

Other record types (x, t, ...) are ignored, as are fields after the packet
time of a p record. Records are separated by newline characters only.
"""

import ipaddress
import logging
from typing import List, Set

from collector.errors import MalformedOutput
from models import Hop


logger = logging.getLogger(__name__)

# mtr refuses a max-ttl above 255
MAX_HOPS = 256


def _parse_int(value: str, what: str, line_no: int) -> int:
    """Parse a non-negative decimal integer field."""
    if not (value.isascii() and value.isdigit()):
        raise MalformedOutput(f"line {line_no}: invalid {what} {value!r}")
    return int(value)


def _declared_hop(hops: List[Hop], declared: Set[int], index: int, line_no: int) -> Hop:
    """
    Look up a hop that already has an address record.

    Returns:
        The hop at index

    Raises:
        MalformedOutput: If no h record for index has been seen yet
    """
    if index not in declared:
        raise MalformedOutput(
            f"line {line_no}: hop {index} referenced before its address was declared"
        )
    return hops[index]


def parse_raw_output(raw: bytes) -> List[Hop]:
    """
    Decode raw mtr output into an ordered list of hops.

    Hops are extended with empty placeholders when an `h` record skips ahead,
    so the returned indices are always contiguous from 0. A final line without
    a trailing newline is still processed.

    Args:
        raw: Bytes written by `mtr --raw` to stdout

    Returns:
        List of Hop objects ordered by index, derived statistics not yet computed

    Raises:
        MalformedOutput: If the output cannot be decoded or a record is invalid
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedOutput(f"output is not valid UTF-8: {e}") from e

    hops: List[Hop] = []
    declared: Set[int] = set()

    for line_no, line in enumerate(text.split("\n"), start=1):
        line = line.strip()
        if not line:
            continue

        parts = line.split(maxsplit=2)
        kind = parts[0]
        if kind not in ("h", "d", "p"):
            continue

        if len(parts) < 3:
            raise MalformedOutput(f"line {line_no}: truncated record {line!r}")

        index = _parse_int(parts[1], "hop number", line_no)
        if index >= MAX_HOPS:
            raise MalformedOutput(f"line {line_no}: hop number {index} out of range")
        value = parts[2]

        if kind == "h":
            try:
                address = str(ipaddress.ip_address(value))
            except ValueError as e:
                raise MalformedOutput(f"line {line_no}: {e}") from e
            while len(hops) <= index:
                hops.append(Hop(index=len(hops)))
            hops[index].address = address
            declared.add(index)
        elif kind == "d":
            _declared_hop(hops, declared, index, line_no).hostname = value
        else:
            sample = _parse_int(value.split()[0], "packet time", line_no)
            _declared_hop(hops, declared, index, line_no).latency_samples.append(sample)

    logger.debug(f"Parsed {len(hops)} hops from {len(raw)} bytes of mtr output")
    return hops
