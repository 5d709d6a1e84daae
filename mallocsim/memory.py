"""Simulated system memory that hands out and takes back whole pages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, TextIO, Tuple

PAGE_SIZE = 4096
WORD_SIZE = 8
_BASE_ADDRESS = 0x1000_0000
_WORD_LIMIT = 1 << (8 * WORD_SIZE)


@dataclass
class Stats:
    """Counters gathered while a challenge runs."""

    begin_time: float = 0.0
    end_time: float = 0.0
    mmap_size: int = 0
    munmap_size: int = 0
    allocated_size: int = 0
    freed_size: int = 0


class SystemMemory:
    """A flat address space backed by pages obtained through ``mmap``.

    Addresses are plain integers. Pages are zero-filled when mapped, and any
    access outside a mapped page raises ``ValueError``.
    """

    def __init__(self, trace: Optional[TextIO] = None) -> None:
        self.trace = trace
        self.stats = Stats()
        self._pages: dict[int, bytearray] = {}
        self._next_address = _BASE_ADDRESS

    def mmap(self, size: int) -> int:
        """Map ``size`` bytes (a multiple of the page size) and return the address."""
        if size <= 0 or size % PAGE_SIZE:
            raise ValueError(f"mmap size must be a positive multiple of {PAGE_SIZE}: {size}")
        address = self._next_address
        self._next_address += size
        for base in range(address, address + size, PAGE_SIZE):
            self._pages[base] = bytearray(PAGE_SIZE)
        self.stats.mmap_size += size
        if self.trace is not None:
            self.trace.write(f"m {address} {size}\n")
        return address

    def munmap(self, address: int, size: int) -> None:
        """Return the pages in ``[address, address + size)`` to the system."""
        if size <= 0 or size % PAGE_SIZE:
            raise ValueError(f"munmap size must be a positive multiple of {PAGE_SIZE}: {size}")
        if address % PAGE_SIZE:
            raise ValueError(f"munmap address must be page aligned: {address:#x}")
        bases = range(address, address + size, PAGE_SIZE)
        missing = [base for base in bases if base not in self._pages]
        if missing:
            raise ValueError(f"page {missing[0]:#x} is not mapped")
        for base in bases:
            del self._pages[base]
        self.stats.munmap_size += size
        if self.trace is not None:
            self.trace.write(f"u {address} {size}\n")

    def _chunks(self, address: int, size: int) -> Iterator[Tuple[bytearray, int, int]]:
        end = address + size
        while address < end:
            base = address - address % PAGE_SIZE
            page = self._pages.get(base)
            if page is None:
                raise ValueError(f"address {address:#x} is not mapped")
            offset = address - base
            length = min(PAGE_SIZE - offset, end - address)
            yield page, offset, length
            address += length

    def _spans(self, address: int, size: int) -> List[Tuple[bytearray, int, int]]:
        if address < 0:
            raise ValueError(f"address {address:#x} is not mapped")
        return list(self._chunks(address, size))

    def read_word(self, address: int) -> int:
        """Read an unsigned little-endian machine word."""
        data = b"".join(
            bytes(page[offset:offset + length])
            for page, offset, length in self._spans(address, WORD_SIZE)
        )
        return int.from_bytes(data, "little")

    def write_word(self, address: int, value: int) -> None:
        """Write an unsigned little-endian machine word."""
        if not 0 <= value < _WORD_LIMIT:
            raise ValueError(f"value does not fit in a word: {value}")
        data = value.to_bytes(WORD_SIZE, "little")
        position = 0
        for page, offset, length in self._spans(address, WORD_SIZE):
            page[offset:offset + length] = data[position:position + length]
            position += length

    def fill(self, address: int, size: int, value: int) -> None:
        """Set ``size`` bytes starting at ``address`` to the byte ``value``."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"fill value must be a byte: {value}")
        for page, offset, length in self._spans(address, size):
            page[offset:offset + length] = bytes([value]) * length

    def read_byte(self, address: int) -> int:
        """Read one byte."""
        ((page, offset, _),) = self._spans(address, 1)
        return page[offset]