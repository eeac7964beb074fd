"""Address space helpers for node pool subnets.

Both functions are pure: identical inputs always produce the identical result,
so a retried reconcile never settles on a different range for the same state.
"""

from __future__ import annotations

from typing import Iterable, List

from .config import Network
from .exceptions import AllocationExhausted, InvalidRequest


def find_free(parent: Network, prefix_length: int, used: Iterable[Network]) -> Network:
    """Return the lowest ``/prefix_length`` block in ``parent`` overlapping nothing in ``used``.

    Candidates are scanned in ascending order of base address.  When a
    candidate collides with a used range the scan jumps to the first aligned
    candidate past that range instead of stepping one block at a time.

    Parameters
    ----------
    parent:
        Range every candidate must lie in.
    prefix_length:
        Prefix length of the requested block.  Must not be shorter than the
        parent's own prefix.
    used:
        Ranges already taken.  Ranges of a different address family are
        ignored.

    Raises
    ------
    InvalidRequest
        If ``prefix_length`` cannot be carved out of ``parent``.
    AllocationExhausted
        If every candidate overlaps a used range.
    """

    if not parent.prefixlen <= prefix_length <= parent.max_prefixlen:
        raise InvalidRequest(
            f"cannot allocate a /{prefix_length} block inside {parent}"
        )

    taken = sorted(
        (
            (int(net.network_address), int(net.broadcast_address))
            for net in used
            if net.version == parent.version
        ),
    )
    block_size = 1 << (parent.max_prefixlen - prefix_length)
    last = int(parent.broadcast_address)
    base = int(parent.network_address)

    while base + block_size - 1 <= last:
        end = base + block_size - 1
        blocker = None
        for start, stop in taken:
            if start <= end and base <= stop:
                blocker = stop if blocker is None else max(blocker, stop)
        if blocker is None:
            return type(parent)((base, prefix_length))
        # next aligned base strictly after the colliding range
        base = (blocker // block_size + 1) * block_size

    raise AllocationExhausted(
        f"no free /{prefix_length} block left in {parent}"
    )


def split_evenly(block: Network, n: int) -> List[Network]:
    """Split ``block`` into ``n`` equally sized, contiguous sub-ranges.

    The result is ordered by base address, so index ``i`` always refers to the
    same sub-range; callers map availability zone ``i`` onto it.

    Raises
    ------
    InvalidRequest
        If ``n`` is not a power of two or ``block`` is too small to be split
        ``n`` ways.
    """

    if n < 1 or n & (n - 1):
        raise InvalidRequest(f"cannot split {block} into {n} parts: not a power of two")
    extra_bits = n.bit_length() - 1
    if block.prefixlen + extra_bits > block.max_prefixlen:
        raise InvalidRequest(f"{block} is too small to be split into {n} parts")
    return list(block.subnets(prefixlen_diff=extra_bits))
