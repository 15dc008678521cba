[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "carina"
version = "0.1.0"
description = "Node-local storage management over LVM2, lsblk and bcache, with a capacity-aware node filter and scorer"
requires-python = ">=3.10"
dependencies = []
keywords = ["lvm", "lvm2", "bcache", "lsblk", "storage", "local-volume", "scheduler"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["carina"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
