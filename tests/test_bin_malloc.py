import random

import pytest

from mallocsim.bin_malloc import BIN_COUNT, BinAllocator, bin_index
from mallocsim.memory import PAGE_SIZE, SystemMemory
from mallocsim.simple_malloc import MAX_REQUEST, METADATA_SIZE


@pytest.fixture
def memory():
    return SystemMemory()


@pytest.fixture
def allocator(memory):
    allocator = BinAllocator(memory)
    allocator.initialize()
    return allocator


def _run_workload(allocator, memory, seed):
    rng = random.Random(seed)
    live = {}
    tag = 1
    for _ in range(300):
        if live and rng.random() < 0.4:
            address = rng.choice(sorted(live))
            size, expected = live.pop(address)
            assert memory.read_byte(address) == expected
            assert memory.read_byte(address + size - 1) == expected
            allocator.free(address)
        else:
            size = rng.randrange(8, 4001, 8)
            address = allocator.malloc(size)
            memory.fill(address, size, tag)
            live[address] = (size, tag)
            tag = tag % 255 + 1
    return live


@pytest.mark.parametrize(
    "size, expected",
    [(1, 0), (100, 0), (101, 1), (1000, 9), (1001, 10), (2000, 10), (2001, 11), (4080, 11)],
)
def test_bin_index_boundaries(size, expected):
    assert bin_index(size) == expected


def test_bin_index_is_monotonic_and_bounded():
    indices = [bin_index(size) for size in range(1, 4081)]
    assert indices == sorted(indices)
    assert max(indices) == BIN_COUNT - 1


def test_bin_index_rejects_zero():
    with pytest.raises(ValueError):
        bin_index(0)


def test_first_malloc_maps_one_page(allocator, memory):
    address = allocator.malloc(128)
    assert address % PAGE_SIZE == METADATA_SIZE
    assert memory.stats.mmap_size == PAGE_SIZE


def test_best_fit_prefers_tightest_slot(allocator):
    large = allocator.malloc(200)
    allocator.malloc(8)
    small = allocator.malloc(120)
    allocator.malloc(8)
    allocator.free(small)
    allocator.free(large)
    assert allocator.malloc(112) == small


def test_exact_fit_is_reused(allocator, memory):
    first = allocator.malloc(120)
    allocator.malloc(8)
    allocator.free(first)
    assert allocator.malloc(120) == first
    assert memory.stats.mmap_size == PAGE_SIZE


def test_double_free_is_detected(allocator):
    first = allocator.malloc(128)
    second = allocator.malloc(128)
    allocator.free(second)
    allocator.free(first)
    with pytest.raises(ValueError):
        allocator.free(first)


def test_full_page_request_maps_new_page_next(allocator, memory):
    whole = allocator.malloc(MAX_REQUEST)
    assert whole % PAGE_SIZE == METADATA_SIZE
    allocator.malloc(8)
    assert memory.stats.mmap_size == 2 * PAGE_SIZE


@pytest.mark.parametrize("size", [0, MAX_REQUEST + 1])
def test_impossible_sizes_raise(allocator, size):
    with pytest.raises(ValueError):
        allocator.malloc(size)


def test_initialize_forgets_free_slots(allocator, memory):
    address = allocator.malloc(64)
    allocator.free(address)
    allocator.initialize()
    again = allocator.malloc(64)
    assert again // PAGE_SIZE != address // PAGE_SIZE
    assert memory.stats.mmap_size == 2 * PAGE_SIZE


def test_workload_keeps_objects_apart(allocator, memory):
    live = _run_workload(allocator, memory, seed=12)
    intervals = sorted((address, address + size) for address, (size, _) in live.items())
    for (_, end), (start, _) in zip(intervals, intervals[1:]):
        assert end + METADATA_SIZE <= start
    for address, (size, tag) in live.items():
        assert memory.read_byte(address) == tag
        assert memory.read_byte(address + size - 1) == tag
    assert memory.stats.mmap_size % PAGE_SIZE == 0
    assert memory.stats.munmap_size == 0