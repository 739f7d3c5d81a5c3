[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnsproxy"
version = "0.1.0"
description = "A filtering UDP DNS proxy that blocks blacklisted domains and forwards the rest upstream"
requires-python = ">=3.10"
dependencies = []
keywords = ["dns", "proxy", "blacklist", "ad-blocking", "udp", "resolver"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
dnsproxy = "dnsproxy.proxy:main"

[tool.hatch.build.targets.wheel]
packages = ["dnsproxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
