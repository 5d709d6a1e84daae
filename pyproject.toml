[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mallocsim"
version = "0.1.0"
description = "Simulated heap allocators, an allocation benchmark and tools for allocation traces"
requires-python = ">=3.10"
dependencies = []
keywords = ["malloc", "allocator", "free list", "best fit", "simulation", "trace", "benchmark"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mallocsim-challenge = "mallocsim.challenge:main"
mallocsim-timeline = "mallocsim.timeline:main"

[tool.hatch.build.targets.wheel]
packages = ["mallocsim"]

[tool.pytest.ini_options]
addopts = "-ra"
