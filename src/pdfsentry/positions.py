"""
Line/column lookup for offsets into a scan surface.

The offset table is built once per surface (O(n)) and each lookup is a
binary search over it (O(log n)). Every rule collection scanning the same
surface shares the same table.
"""

from __future__ import annotations

from bisect import bisect_right
from typing import NamedTuple


class Position(NamedTuple):
    line: int
    column: int


def build_offset_table(content: str) -> list[int]:
    """
    Return the start offset of every line in *content*.

    Index 0 is always 0; each subsequent entry is the offset just past a
    ``\\n``. Empty content yields ``[0]``.
    """
    offsets = [0]
    index = content.find("\n")
    while index != -1:
        offsets.append(index + 1)
        index = content.find("\n", index + 1)
    return offsets


def resolve_position(offsets: list[int], offset: int) -> Position:
    """
    Resolve *offset* to a 1-based (line, column) using *offsets*.

    Finds the greatest line start <= *offset*. Offsets past the end of the
    content land on the last line rather than raising.

    Raises:
        ValueError: *offset* is negative or *offsets* is empty.
    """
    if offset < 0:
        raise ValueError(f"offset must be non-negative, got {offset}")
    if not offsets:
        raise ValueError("offset table is empty")

    line_index = bisect_right(offsets, offset) - 1
    return Position(line=line_index + 1, column=offset - offsets[line_index] + 1)
