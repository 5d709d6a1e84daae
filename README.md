# mallocsim

mallocsim is a small laboratory for heap allocators. It works on a simulated
address space held in Python, not on the memory of your process. On that
space it runs two free-list allocators and compares them on a set of
allocation workloads. It also has helpers for allocation traces: one writes
trace records, and another turns a trace into a timeline of memory usage.

## What is inside

- `mallocsim.memory`
  - `SystemMemory` is a simulated address space.
    - `mmap(size)` hands out zero-filled 4096-byte pages, and `munmap(address, size)` takes them back.
    - `read_word`, `write_word`, `read_byte` and `fill` give access to mapped bytes.
    - Any access outside a mapped page raises `ValueError`.
  - The mapped and unmapped totals are kept in its `stats` attribute, which is a `Stats` record.
  - If a trace stream is given, each call writes a line to it: `m <address> <size>` for a mapping and `u <address> <size>` for an unmapping.
- `mallocsim.simple_malloc`
  - `SimpleAllocator` keeps a single free list and allocates by first fit.
  - It grows by one page at a time.
- `mallocsim.bin_malloc`
  - `BinAllocator` sorts free slots into twelve size bins (see `bin_index`).
  - It looks for the best fit, starting at the request's own bin and moving upward.
- `mallocsim.challenge`
  - `run_challenge` runs one workload against one allocator and returns a `ChallengeResult`.
  - `object_size` and `object_lifetime` draw the random sizes and lifetimes.
  - `format_stats` and `format_score` build the report.
  - `run_challenges` runs the five standard workloads against both allocators.
- `mallocsim.timeline`
  - `Timeline` reads allocation trace records of three kinds: `a`, `f` and `r`.
  - It tracks the resident size, the running totals, the peak usage and the range of addresses touched.
- `mallocsim.tracefmt` builds trace records in the hexadecimal line format that `Timeline` reads:
  - `malloc_record` gives `a <addr> <size>`;
  - `free_record` gives `f <addr>`;
  - `realloc_record` gives `r <new> <size> <old>`;
  - `format_hex` and `trace_file_name` are the helpers behind them.

## Installation

```
pip install .
```

## Running the challenge

```
mallocsim-challenge
```

The challenge runs five workloads. They use these object sizes:

| Workload | Object size (bytes) |
|----------|---------------------|
| 1 | exactly 128 |
| 2 | exactly 16 |
| 3 | 16 to 128 |
| 4 | 256 to 4000 |
| 5 | 8 to 4000 |

Object sizes and lifetimes follow an exponential distribution.

- The first epoch of every cycle allocates a larger batch of objects.
- About 4% of the objects are never freed.
- Every object is filled with a tag byte. The tag is checked before the object is freed, and a broken object raises `RuntimeError`.

For each workload the report shows two figures for `SimpleAllocator` and for `BinAllocator`:

- the elapsed time in milliseconds;
- the utilisation, which is live bytes divided by bytes mapped.

At the end the report prints a score line of `time,utilisation,` pairs for `BinAllocator`.

Options:

- `--seed N`: set the random seed. The default is 12.
- `--cycles N`: set the number of cycles.
- `--epochs N`: set the number of epochs per cycle.
- `--small N`: set the number of objects in an ordinary epoch.
- `--large N`: set the number of objects in the first epoch of each cycle.
- `--trace`: use a smaller workload and write trace files to the current directory.
  - The files are named `trace<N>_simple.txt` and `trace<N>_my.txt`.
  - They hold decimal `a`, `f`, `m` and `u` lines.
  - In this mode a warning is printed and the score line is left out.

## Building a timeline from a trace

```
mallocsim-timeline --output decoded.txt < trace_1A2B.txt > timeline.dat
```

The input on standard input is a trace in the hexadecimal format made by `mallocsim.tracefmt`. The tool reads `a`, `f` and `r` records from it.

For each record the tool prints one tab-separated row with these fields:

1. the record count;
2. the resident size;
3. the bytes allocated so far;
4. the change in resident size;
5. the bytes freed so far.

A free of an address that was never allocated prints a notice and is otherwise ignored.

The tool writes each operation, in decimal, to the `--output` file. The default is `trace.txt`, so do not also read your input from a file of that name.

When it finishes, it writes a summary to standard error. The summary gives:

- the count;
- the peak size;
- the final resident size;
- the total allocated;
- the range of addresses touched.

An unknown operation or a truncated record stops the tool with exit status 1.

## Using the pieces from Python

```python
from mallocsim.memory import SystemMemory
from mallocsim.bin_malloc import BinAllocator

memory = SystemMemory(None)
allocator = BinAllocator(memory)
allocator.initialize()
address = allocator.malloc(128)
memory.fill(address, 128, 7)
assert memory.read_byte(address) == 7
allocator.free(address)
allocator.finalize()
```

## What it does not do

- mallocsim does not hook into real programs. It cannot record the allocations of a running process. `mallocsim.tracefmt` only builds the text of the records, and traces in that format have to come from elsewhere.
- The decimal trace files written by `mallocsim-challenge --trace` are not in the format that `mallocsim-timeline` reads.
- It draws no plots.
- Neither allocator ever returns pages with `munmap`.

## Running the tests

```
pip install .[test]
pytest
```