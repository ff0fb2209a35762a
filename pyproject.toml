[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fethkit"
version = "0.1.0"
description = "Create, configure and do raw frame I/O on macOS feth (fake ethernet) interfaces"
requires-python = ">=3.10"
dependencies = []
keywords = ["feth", "macos", "networking", "ethernet", "bpf", "ioctl", "ifconfig", "arp", "icmp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[project.scripts]
fethctl = "fethkit.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["fethkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
