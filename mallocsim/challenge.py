"""The malloc challenge: drive two allocators with the same workload and compare them."""

from __future__ import annotations

import argparse
import math
import random
import sys
import time
from dataclasses import dataclass, replace
from typing import Callable, List, NamedTuple, Optional, Protocol, Sequence, TextIO, Tuple

from mallocsim.bin_malloc import BinAllocator
from mallocsim.memory import Stats, SystemMemory
from mallocsim.simple_malloc import SimpleAllocator

ALIGNMENT = 8
FIRST_CHALLENGE_INDEX = 1
LAST_CHALLENGE_INDEX = 5
CHALLENGE_SIZES: Tuple[Tuple[int, int], ...] = (
    (128, 128),
    (16, 16),
    (16, 128),
    (256, 4000),
    (8, 4000),
)
TRACE_WARNING = (
    "!!! WARNING - MALLOC_TRACE is enabled.\n"
    "The result will be different compare to normal builds.\n"
)

_LAMBDA = 1.0
_THRESHOLD = 6.0


class Allocator(Protocol):
    def initialize(self) -> None: ...

    def malloc(self, size: int) -> int: ...

    def free(self, address: int) -> None: ...

    def finalize(self) -> None: ...


AllocatorFactory = Callable[[SystemMemory], Allocator]


class _Object(NamedTuple):
    address: int
    size: int
    tag: int


def _exponential_tau(rng: random.Random) -> float:
    u = rng.random()
    if u <= 0.0:
        return _THRESHOLD
    return min(-_LAMBDA * math.log(u), _THRESHOLD)


def object_size(rng: random.Random, min_size: int, max_size: int) -> int:
    """Draw an 8-byte aligned size in ``[min_size, max_size]`` from an exponential law."""
    if min_size > max_size:
        raise ValueError(f"min_size {min_size} exceeds max_size {max_size}")
    if min_size % ALIGNMENT:
        raise ValueError(f"min_size must be a multiple of {ALIGNMENT}: {min_size}")
    tau = _exponential_tau(rng)
    result = int((max_size - min_size) * tau / _THRESHOLD) + min_size
    return result // ALIGNMENT * ALIGNMENT


def object_lifetime(rng: random.Random, min_epoch: int, max_epoch: int) -> int:
    """Draw a lifetime in ``[min_epoch, max_epoch]`` from an exponential law."""
    if min_epoch > max_epoch:
        raise ValueError(f"min_epoch {min_epoch} exceeds max_epoch {max_epoch}")
    tau = _exponential_tau(rng)
    return int((max_epoch - min_epoch) * tau / _THRESHOLD + min_epoch)


@dataclass(frozen=True)
class ChallengeConfig:
    """Shape of the workload run by each challenge."""

    cycles: int = 10
    epochs_per_cycle: int = 100
    objects_per_epoch_small: int = 100
    objects_per_epoch_large: int = 2000
    never_free_ratio: float = 0.04
    seed: int = 12
    write_traces: bool = False

    @classmethod
    def traced(cls) -> "ChallengeConfig":
        """The smaller workload used when trace files are written."""
        return cls(
            epochs_per_cycle=10,
            objects_per_epoch_small=25,
            objects_per_epoch_large=50,
            write_traces=True,
        )


@dataclass
class ChallengeResult:
    """The statistics of one challenge run."""

    stats: Stats

    @property
    def time_ms(self) -> int:
        return int((self.stats.end_time - self.stats.begin_time) * 1000)

    @property
    def utilization_percentage(self) -> int:
        mapped = self.stats.mmap_size - self.stats.munmap_size
        if mapped == 0:
            return 0
        in_use = self.stats.allocated_size - self.stats.freed_size
        return int(100.0 * in_use / mapped)


def run_challenge(
    allocator_factory: AllocatorFactory,
    min_size: int,
    max_size: int,
    config: ChallengeConfig,
    rng: random.Random,
    trace: Optional[TextIO] = None,
) -> ChallengeResult:
    """Run one challenge and return its statistics.

    Raises ``RuntimeError`` if an allocated object is found overwritten.
    """
    epochs = config.epochs_per_cycle
    memory = SystemMemory(trace)
    allocator = allocator_factory(memory)
    # The last bucket holds objects that are never freed.
    buckets: List[List[_Object]] = [[] for _ in range(epochs + 1)]
    allocator.initialize()
    stats = memory.stats
    stats.mmap_size = stats.munmap_size = 0
    stats.allocated_size = stats.freed_size = 0
    stats.begin_time = time.time()
    tag = 0
    for _cycle in range(config.cycles):
        for epoch in range(epochs):
            count = config.objects_per_epoch_large if epoch == 0 else config.objects_per_epoch_small
            for _ in range(count):
                size = object_size(rng, min_size, max_size)
                lifetime = object_lifetime(rng, 1, epochs)
                stats.allocated_size += size
                address = allocator.malloc(size)
                if trace is not None:
                    trace.write(f"a {address} {size}\n")
                memory.fill(address, size, tag)
                obj = _Object(address, size, tag)
                # Zero is skipped: it cannot be told apart from fresh pages.
                tag = (tag + 1) % 256 or 1
                if rng.random() < config.never_free_ratio:
                    buckets[epochs].append(obj)
                else:
                    buckets[(epoch + lifetime) % epochs].append(obj)

            for obj in buckets[epoch]:
                stats.freed_size += obj.size
                if (
                    memory.read_byte(obj.address) != obj.tag
                    or memory.read_byte(obj.address + obj.size - 1) != obj.tag
                ):
                    raise RuntimeError("An allocated object is broken!")
                if trace is not None:
                    trace.write(f"f {obj.address} {obj.size}\n")
                allocator.free(obj.address)
            buckets[epoch].clear()
    stats.end_time = time.time()
    allocator.finalize()
    return ChallengeResult(replace(stats))


def format_stats(index: int, simple_result: ChallengeResult, my_result: ChallengeResult) -> str:
    """Render the comparison table of one challenge."""
    if not FIRST_CHALLENGE_INDEX <= index <= LAST_CHALLENGE_INDEX:
        raise ValueError(
            f"challenge index must be in [{FIRST_CHALLENGE_INDEX}, {LAST_CHALLENGE_INDEX}]: {index}"
        )
    dashes = "-" * 15
    return (
        "====================================================\n"
        f"Challenge #{index}    | {'simple_malloc':>15} => {'my_malloc':>15}\n"
        f"{dashes:<16}+ {dashes:>15} => {dashes:>15}\n"
        f"{'Time [ms]':>16}| {simple_result.time_ms:>15} => {my_result.time_ms:>15}\n"
        f"{'Utilization [%] ':>16}| {simple_result.utilization_percentage:>15} => "
        f"{my_result.utilization_percentage:>15}\n"
    )


def format_score(results: Sequence[ChallengeResult]) -> str:
    """Render the score sheet line for the given per-challenge results."""
    data = "".join(f"{r.time_ms},{r.utilization_percentage}," for r in results)
    return (
        "\nChallenge done!\n"
        "Please copy & paste the following data in the score sheet!\n"
        f"{data}\n"
    )


def _run(
    factory: AllocatorFactory,
    min_size: int,
    max_size: int,
    config: ChallengeConfig,
    rng: random.Random,
    trace_name: str,
) -> ChallengeResult:
    if not config.write_traces:
        return run_challenge(factory, min_size, max_size, config, rng)
    with open(trace_name, "w") as trace:
        return run_challenge(factory, min_size, max_size, config, rng, trace)


def run_challenges(
    config: ChallengeConfig, out: TextIO
) -> List[Tuple[ChallengeResult, ChallengeResult]]:
    """Run every challenge with both allocators, writing the report to ``out``."""
    rng = random.Random(config.seed)
    if config.write_traces:
        out.write(TRACE_WARNING)

    # Warm-up run.
    run_challenge(SimpleAllocator, 128, 128, config, rng)

    results: List[Tuple[ChallengeResult, ChallengeResult]] = []
    for index, (min_size, max_size) in enumerate(CHALLENGE_SIZES, start=FIRST_CHALLENGE_INDEX):
        simple = _run(SimpleAllocator, min_size, max_size, config, rng, f"trace{index}_simple.txt")
        mine = _run(BinAllocator, min_size, max_size, config, rng, f"trace{index}_my.txt")
        out.write(format_stats(index, simple, mine))
        results.append((simple, mine))

    if config.write_traces:
        out.write(TRACE_WARNING)
    else:
        out.write(format_score([mine for _, mine in results]))
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Compare a simple and a binned malloc.")
    parser.add_argument("--trace", action="store_true", help="write trace files (smaller workload)")
    parser.add_argument("--seed", type=int, help="random seed")
    parser.add_argument("--cycles", type=int, help="number of cycles")
    parser.add_argument("--epochs", type=int, help="epochs per cycle")
    parser.add_argument("--small", type=int, help="objects per ordinary epoch")
    parser.add_argument("--large", type=int, help="objects per peak epoch")
    args = parser.parse_args(argv)

    config = ChallengeConfig.traced() if args.trace else ChallengeConfig()
    overrides = {
        "seed": args.seed,
        "cycles": args.cycles,
        "epochs_per_cycle": args.epochs,
        "objects_per_epoch_small": args.small,
        "objects_per_epoch_large": args.large,
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})

    print("Welcome to the malloc challenge!")
    print("size_of(uint8_t *) = 8")
    print("size_of(size_t) = 8")
    print("Running tests...")
    print("Finished!\n")
    run_challenges(config, sys.stdout)
    return 0