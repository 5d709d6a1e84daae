"""A first-fit allocator over a single singly linked free list.

Every object or free slot is preceded by two words of metadata: its size
(not counting the metadata) and, for free slots, the address of the next
free slot.
"""

from __future__ import annotations

from typing import Iterator, Tuple

from mallocsim.memory import PAGE_SIZE, WORD_SIZE, SystemMemory

NULL = 0
METADATA_SIZE = 2 * WORD_SIZE
MAX_REQUEST = PAGE_SIZE - METADATA_SIZE

# Stand-in address for the zero-sized dummy slot; never part of mapped memory.
_DUMMY = WORD_SIZE


def check_request(size: int) -> None:
    """Reject sizes that no page-sized region could ever satisfy."""
    if not 1 <= size <= MAX_REQUEST:
        raise ValueError(f"allocation size must be in [1, {MAX_REQUEST}]: {size}")


class SimpleAllocator:
    """First-fit malloc that grows one page at a time and never returns memory."""

    def __init__(self, memory: SystemMemory) -> None:
        self.memory = memory
        self._head = NULL
        self._dummy_next = NULL

    def initialize(self) -> None:
        """Reset the free list to hold only the dummy slot."""
        self._head = _DUMMY
        self._dummy_next = NULL

    def _size(self, slot: int) -> int:
        return 0 if slot == _DUMMY else self.memory.read_word(slot)

    def _next(self, slot: int) -> int:
        return self._dummy_next if slot == _DUMMY else self.memory.read_word(slot + WORD_SIZE)

    def _set_next(self, slot: int, value: int) -> None:
        if slot == _DUMMY:
            self._dummy_next = value
        else:
            self.memory.write_word(slot + WORD_SIZE, value)

    def _walk(self) -> Iterator[Tuple[int, int]]:
        prev, slot = NULL, self._head
        while slot != NULL:
            yield prev, slot
            prev, slot = slot, self._next(slot)

    def _add(self, slot: int) -> None:
        if self._next(slot) != NULL:
            raise ValueError(f"slot {slot:#x} is already in the free list")
        self._set_next(slot, self._head)
        self._head = slot

    def _remove(self, slot: int, prev: int) -> None:
        following = self._next(slot)
        if prev != NULL:
            self._set_next(prev, following)
        else:
            self._head = following
        self._set_next(slot, NULL)

    def malloc(self, size: int) -> int:
        """Allocate ``size`` bytes and return the object's address."""
        check_request(size)
        while True:
            found = next(
                ((prev, slot) for prev, slot in self._walk() if self._size(slot) >= size),
                None,
            )
            if found is not None:
                break
            metadata = self.memory.mmap(PAGE_SIZE)
            self.memory.write_word(metadata, PAGE_SIZE - METADATA_SIZE)
            self.memory.write_word(metadata + WORD_SIZE, NULL)
            self._add(metadata)

        prev, metadata = found
        address = metadata + METADATA_SIZE
        remaining = self._size(metadata) - size
        self._remove(metadata, prev)
        if remaining > METADATA_SIZE:
            self.memory.write_word(metadata, size)
            rest = address + size
            self.memory.write_word(rest, remaining - METADATA_SIZE)
            self.memory.write_word(rest + WORD_SIZE, NULL)
            self._add(rest)
        return address

    def free(self, address: int) -> None:
        """Put the object at ``address`` back on the free list."""
        self._add(address - METADATA_SIZE)

    def finalize(self) -> None:
        """Forget the free list at the end of a challenge; pages stay mapped."""
        self._head = NULL
        self._dummy_next = NULL