import io

import pytest

from mallocsim.memory import PAGE_SIZE, WORD_SIZE, SystemMemory


@pytest.fixture
def memory():
    return SystemMemory()


def test_mmap_returns_aligned_distinct_regions(memory):
    first = memory.mmap(PAGE_SIZE)
    second = memory.mmap(2 * PAGE_SIZE)
    assert first % PAGE_SIZE == 0
    assert second % PAGE_SIZE == 0
    assert second >= first + PAGE_SIZE
    assert memory.stats.mmap_size == 3 * PAGE_SIZE
    assert memory.stats.munmap_size == 0


@pytest.mark.parametrize("size", [0, 100, PAGE_SIZE + 8, -PAGE_SIZE])
def test_mmap_rejects_bad_sizes(memory, size):
    with pytest.raises(ValueError):
        memory.mmap(size)


def test_fresh_pages_are_zero(memory):
    address = memory.mmap(PAGE_SIZE)
    assert memory.read_word(address) == 0
    assert memory.read_byte(address + PAGE_SIZE - 1) == 0


def test_word_round_trip(memory):
    address = memory.mmap(PAGE_SIZE)
    memory.write_word(address + WORD_SIZE, 0xDEADBEEFCAFEF00D)
    assert memory.read_word(address + WORD_SIZE) == 0xDEADBEEFCAFEF00D
    assert memory.read_word(address) == 0


def test_word_across_page_boundary(memory):
    address = memory.mmap(2 * PAGE_SIZE)
    boundary = address + PAGE_SIZE - 3
    memory.write_word(boundary, (1 << 64) - 1)
    assert memory.read_word(boundary) == (1 << 64) - 1
    assert memory.read_byte(address + PAGE_SIZE + 4) == 0xFF
    assert memory.read_byte(address + PAGE_SIZE + 5) == 0


@pytest.mark.parametrize("value", [-1, 1 << 64])
def test_write_word_rejects_out_of_range(memory, value):
    address = memory.mmap(PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.write_word(address, value)


def test_fill_sets_only_the_range(memory):
    address = memory.mmap(2 * PAGE_SIZE)
    start = address + PAGE_SIZE - 10
    memory.fill(start, 20, 0x5A)
    assert memory.read_byte(start) == 0x5A
    assert memory.read_byte(start + 19) == 0x5A
    assert memory.read_byte(start - 1) == 0
    assert memory.read_byte(start + 20) == 0


def test_fill_rejects_non_byte(memory):
    address = memory.mmap(PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.fill(address, 8, 256)


def test_unmapped_access_raises(memory):
    address = memory.mmap(PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.read_byte(address + PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.read_word(address + PAGE_SIZE - 4)
    with pytest.raises(ValueError):
        memory.read_word(0)


def test_munmap_releases_pages(memory):
    address = memory.mmap(2 * PAGE_SIZE)
    memory.munmap(address + PAGE_SIZE, PAGE_SIZE)
    assert memory.stats.munmap_size == PAGE_SIZE
    memory.write_word(address, 7)
    assert memory.read_word(address) == 7
    with pytest.raises(ValueError):
        memory.read_byte(address + PAGE_SIZE)


def test_munmap_rejects_misaligned_and_unmapped(memory):
    address = memory.mmap(PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.munmap(address + 8, PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.munmap(address, 100)
    memory.munmap(address, PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.munmap(address, PAGE_SIZE)
    assert memory.stats.munmap_size == PAGE_SIZE


def test_trace_records_map_and_unmap():
    trace = io.StringIO()
    memory = SystemMemory(trace)
    address = memory.mmap(PAGE_SIZE)
    memory.munmap(address, PAGE_SIZE)
    assert trace.getvalue().splitlines() == [
        f"m {address} {PAGE_SIZE}",
        f"u {address} {PAGE_SIZE}",
    ]