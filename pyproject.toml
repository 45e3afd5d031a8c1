[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mtgproxy"
version = "2.0.0"
description = "Building blocks for an MTPROTO proxy: FakeTLS secrets, dialers with circuit breaking and DNS-over-HTTPS, and statsd/Prometheus metrics"
requires-python = ">=3.10"
keywords = ["mtproto", "proxy", "telegram", "faketls", "dns-over-https", "statsd", "prometheus", "circuit-breaker"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Networking",
]
dependencies = [
    "httpx",
    "dnspython",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mtgproxy"]

[tool.hatch.build.targets.sdist]
include = ["mtgproxy", "tests"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP", "SIM"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
check_untyped_defs = true
