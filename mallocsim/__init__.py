"""Simulated heap allocators, an allocation benchmark and allocation-trace tools."""

__version__ = "0.1.0"
__all__ = ["memory", "simple_malloc", "bin_malloc", "challenge", "timeline", "tracefmt"]