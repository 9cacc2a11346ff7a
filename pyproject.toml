[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mqconsume"
version = "0.1.0"
description = "Consumer-side building blocks for a message queue client: queue allocation, offset stores, process queues, statistics and options."
requires-python = ">=3.10"
keywords = ["message-queue", "consumer", "offsets", "rebalance", "allocation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "sortedcontainers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mqconsume"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
