"""Text records written by the allocation-tracing hook."""

from __future__ import annotations

_UINT64_LIMIT = 1 << 64


def format_hex(value: int) -> str:
    """Format an unsigned 64-bit value as upper-case hex without leading zeros."""
    if not 0 <= value < _UINT64_LIMIT:
        raise ValueError(f"value does not fit in 64 unsigned bits: {value}")
    return f"{value:X}"


def malloc_record(address: int, size: int) -> str:
    """Record an allocation of ``size`` bytes at ``address``."""
    return f"a {format_hex(address)} {format_hex(size)}\n"


def free_record(address: int) -> str:
    """Record the release of ``address``."""
    return f"f {format_hex(address)}\n"


def realloc_record(new_address: int, size: int, old_address: int) -> str:
    """Record a reallocation from ``old_address`` to ``new_address``."""
    return f"r {format_hex(new_address)} {format_hex(size)} {format_hex(old_address)}\n"


def trace_file_name(token: int) -> str:
    """Name of the trace file for a process identified by ``token``."""
    return f"trace_{format_hex(token)}.txt"