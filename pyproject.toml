[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tstoolkit"
version = "0.1.0"
description = "MPEG transport stream utilities: packet inspection, statistics, PCR bitrate measurement, PCR smoothing and SEI latency timestamps"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "mpeg-ts",
    "transport-stream",
    "pcr",
    "smoothing",
    "broadcast",
    "video",
    "bitrate",
    "sei",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tstoolkit"]

[tool.hatch.build.targets.sdist]
include = ["tstoolkit", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
