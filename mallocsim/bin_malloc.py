"""A best-fit allocator whose free slots are sorted into size bins."""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

from mallocsim.memory import PAGE_SIZE, WORD_SIZE, SystemMemory
from mallocsim.simple_malloc import METADATA_SIZE, NULL, check_request

BIN_COUNT = 12


def bin_index(size: int) -> int:
    """Return the bin for a slot of ``size`` bytes.

    Sizes up to 1000 fall into ten bins of 100 bytes each, 1001 to 2000
    into bin 10, and anything larger into bin 11.
    """
    if size < 1:
        raise ValueError(f"slot size must be positive: {size}")
    if size <= 1000:
        return (size - 1) // 100
    if size <= 2000:
        return 10
    return 11


class BinAllocator:
    """Best-fit malloc searching the bins from the request's own bin upward."""

    def __init__(self, memory: SystemMemory) -> None:
        self.memory = memory
        self._bins: List[int] = [NULL] * BIN_COUNT

    def initialize(self) -> None:
        """Empty every bin."""
        self._bins = [NULL] * BIN_COUNT

    def _size(self, slot: int) -> int:
        return self.memory.read_word(slot)

    def _next(self, slot: int) -> int:
        return self.memory.read_word(slot + WORD_SIZE)

    def _set_next(self, slot: int, value: int) -> None:
        self.memory.write_word(slot + WORD_SIZE, value)

    def _walk(self, index: int) -> Iterator[Tuple[int, int]]:
        prev, slot = NULL, self._bins[index]
        while slot != NULL:
            yield prev, slot
            prev, slot = slot, self._next(slot)

    def _add(self, slot: int) -> None:
        if self._next(slot) != NULL:
            raise ValueError(f"slot {slot:#x} is already in a free list")
        index = bin_index(self._size(slot))
        self._set_next(slot, self._bins[index])
        self._bins[index] = slot

    def _remove(self, slot: int, prev: int, index: int) -> None:
        following = self._next(slot)
        if prev != NULL:
            self._set_next(prev, following)
        else:
            self._bins[index] = following
        self._set_next(slot, NULL)

    def _best_fit(self, size: int) -> Optional[Tuple[int, int, int]]:
        best: Optional[Tuple[int, int, int]] = None
        min_diff: Optional[int] = None
        for index in range(bin_index(size), BIN_COUNT):
            for prev, slot in self._walk(index):
                slot_size = self._size(slot)
                if slot_size >= size and (min_diff is None or slot_size - size < min_diff):
                    best = (index, prev, slot)
                    min_diff = slot_size - size
            if min_diff == 0:
                break
        return best

    def malloc(self, size: int) -> int:
        """Allocate ``size`` bytes and return the object's address."""
        check_request(size)
        while (found := self._best_fit(size)) is None:
            metadata = self.memory.mmap(PAGE_SIZE)
            self.memory.write_word(metadata, PAGE_SIZE - METADATA_SIZE)
            self.memory.write_word(metadata + WORD_SIZE, NULL)
            self._add(metadata)

        index, prev, metadata = found
        address = metadata + METADATA_SIZE
        remaining = self._size(metadata) - size
        self._remove(metadata, prev, index)
        if remaining > METADATA_SIZE:
            self.memory.write_word(metadata, size)
            rest = address + size
            self.memory.write_word(rest, remaining - METADATA_SIZE)
            self.memory.write_word(rest + WORD_SIZE, NULL)
            self._add(rest)
        return address

    def free(self, address: int) -> None:
        """Put the object at ``address`` back into its bin."""
        self._add(address - METADATA_SIZE)

    def finalize(self) -> None:
        """Forget every bin at the end of a challenge; pages stay mapped."""
        self._bins = [NULL] * BIN_COUNT