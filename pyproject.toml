[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hdrcodec"
version = "0.1.0"
description = "Encode and decode HdrHistogram V2 and V2 + DEFLATE histograms and interval logs"
requires-python = ">=3.10"
dependencies = []
keywords = ["hdrhistogram", "histogram", "serialization", "interval-log", "latency", "varint"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Topic :: System :: Benchmark",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hdrcodec"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
