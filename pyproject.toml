[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "atpnet"
version = "0.1.0"
description = "Reactor-style TCP networking: event loops, timers, thread pools and a multi-threaded TCP server"
requires-python = ">=3.10"
dependencies = []
keywords = ["reactor", "event-loop", "tcp", "server", "networking", "timing-wheel", "thread-pool"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["atpnet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
