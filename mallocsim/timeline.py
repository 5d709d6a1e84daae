"""Turn an allocation trace into a timeline of resident memory."""

from __future__ import annotations

import argparse
import sys
from collections import deque
from typing import Deque, Dict, Iterator, Optional, Sequence, TextIO

_INT64_MAX = (1 << 63) - 1
_INT64_MIN = -(1 << 63)
_UINT64 = 1 << 64


def _to_int64(value: int) -> int:
    value %= _UINT64
    return value - _UINT64 if value > _INT64_MAX else value


def _read_hex(tokens: Deque[str]) -> Optional[int]:
    if not tokens:
        return None
    try:
        value = int(tokens[0], 16)
    except ValueError:
        return None
    tokens.popleft()
    return _to_int64(value)


class Timeline:
    """Accumulates allocation statistics from ``a``/``f``/``r`` trace records.

    Each recorded operation is also written, in decimal, to ``trace``.
    """

    def __init__(self, trace: Optional[TextIO] = None) -> None:
        self.trace = trace
        self._sizes: Dict[int, int] = {}
        self.peak_size = 0
        self.resident_size = 0
        self.allocation_size_accumulated = 0
        self.free_size_accumulated = 0
        self.range_begin = _INT64_MAX
        self.range_end = _INT64_MIN
        self.count = 0
        self._last_resident_size = 0

    def _trace_op(self, op: str, addr: int, size: int) -> None:
        if self.trace is not None:
            self.trace.write(f"{op} {addr} {size}\n")
        self.range_begin = min(self.range_begin, addr)
        self.range_end = max(self.range_end, addr + size)

    def record_alloc(self, addr: int, size: int) -> None:
        """Record an allocation; an address already live keeps its first size."""
        self._sizes.setdefault(addr, size)
        self.resident_size += size
        self.allocation_size_accumulated += size
        self.peak_size = max(self.peak_size, self.resident_size)
        self._trace_op("a", addr, size)

    def record_free(self, addr: int) -> bool:
        """Record a free; return False if ``addr`` was never allocated."""
        size = self._sizes.pop(addr, None)
        if size is None:
            return False
        self.resident_size -= size
        self.free_size_accumulated += size
        self._trace_op("f", addr, size)
        return True

    def _free(self, addr: int) -> Iterator[str]:
        if not self.record_free(addr):
            yield f"Addr 0x{addr % _UINT64:X} is being freed but not allocated"

    def process(self, text: str) -> Iterator[str]:
        """Consume trace records from ``text`` and yield one output line per record.

        Raises ``ValueError`` on an unknown operation or a truncated record.
        """
        tokens: Deque[str] = deque(text.split())
        while tokens:
            token = tokens.popleft()
            op, rest = token[0], token[1:]
            if rest:
                tokens.appendleft(rest)
            addr = _read_hex(tokens)
            if addr is None:
                break
            if op == "a":
                size = _read_hex(tokens)
                if size is None:
                    raise ValueError("Failed to read size for alloc")
                self.record_alloc(addr, size)
            elif op == "r":
                size = _read_hex(tokens)
                old_addr = _read_hex(tokens) if size is not None else None
                if size is None or old_addr is None:
                    raise ValueError("Failed to read size and old_addr for realloc")
                if old_addr:
                    yield from self._free(old_addr)
                self.record_alloc(addr, size)
            elif op == "f":
                yield from self._free(addr)
            else:
                raise ValueError(f"Unknown op: {op} at count {self.count}")
            yield (
                f"{self.count}\t{self.resident_size}\t{self.allocation_size_accumulated}\t"
                f"{self.resident_size - self._last_resident_size}\t{self.free_size_accumulated}"
            )
            self._last_resident_size = self.resident_size
            self.count += 1

    def summary(self) -> str:
        """Return the closing report."""
        return (
            f"count: {self.count}\n"
            f"peak_size: {self.peak_size}\n"
            f"resident_size at last: {self.resident_size}\n"
            f"allocation_size_accumlated: {self.allocation_size_accumulated}\n"
            f"range_begin: {self.range_begin}\n"
            f"range_end: {self.range_end}\n"
            f"range_size: {self.range_end - self.range_begin}\n"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Read a trace from stdin, print the timeline and write the decoded trace file."""
    parser = argparse.ArgumentParser(description="Convert an allocation trace into a timeline.")
    parser.add_argument("--output", default="trace.txt", help="decoded trace file")
    args = parser.parse_args(argv)
    try:
        trace = open(args.output, "w")
    except OSError:
        print("Failed to open trace file")
        return 1
    with trace:
        timeline = Timeline(trace)
        try:
            for line in timeline.process(sys.stdin.read()):
                print(line)
        except ValueError as error:
            print(error)
            return 1
    sys.stderr.write(timeline.summary())
    return 0