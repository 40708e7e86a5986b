[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netavark"
version = "0.1.0"
description = "Container network setup on Linux: configuration types, an rtnetlink client, macvlan/ipvlan drivers and an external plugin interface"
requires-python = ">=3.12"
dependencies = []
keywords = [
    "containers",
    "networking",
    "netlink",
    "rtnetlink",
    "macvlan",
    "ipvlan",
    "network-namespace",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["netavark"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py312"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.12"
warn_unused_ignores = true
warn_redundant_casts = true
