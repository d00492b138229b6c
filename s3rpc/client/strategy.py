"""
Upload strategy selection.

An upload either goes up in one request (SinglePart) or is split into
parts of a fixed size (MultiPart). The choice depends only on the payload
size and the configured chunk size, so it is decided up front rather than
inside the transfer code.
"""

from dataclasses import dataclass
from typing import Iterator, Union


@dataclass(frozen=True)
class SinglePart:
    name = "single_part"


@dataclass(frozen=True)
class MultiPart:
    part_size: int

    name = "multi_part"

    def __post_init__(self):
        if self.part_size <= 0:
            raise ValueError("part_size must be positive")

    def count(self, size: int) -> int:
        return max(1, -(-size // self.part_size))

    def parts(self, size: int) -> Iterator[tuple[int, int, int]]:
        """
        Yield ``(part_number, start, end)`` byte ranges covering ``size``.

        Part numbers start at 1 and increase with the offset; the last part
        holds the remainder.
        """
        for index in range(self.count(size)):
            start = index * self.part_size
            yield index + 1, start, min(start + self.part_size, size)


TransferStrategy = Union[SinglePart, MultiPart]


def select_strategy(size: int, chunk_size: int) -> TransferStrategy:
    """Single request below ``chunk_size`` bytes, multipart at or above it."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if size < chunk_size:
        return SinglePart()
    return MultiPart(part_size=chunk_size)
