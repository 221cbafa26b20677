[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netdrills"
version = "0.1.0"
description = "Small TCP and UDP building blocks: endpoints, stream I/O, sync and async clients, and demo servers"
requires-python = ">=3.10"
dependencies = []
keywords = ["tcp", "udp", "sockets", "networking", "client", "server", "asyncio"]
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
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
netdrills-client = "netdrills.clients:main"
netdrills-async-client = "netdrills.async_client:main"
netdrills-server = "netdrills.servers:main"
netdrills-tmsg = "netdrills.tmsg:main"

[tool.hatch.build.targets.wheel]
packages = ["netdrills"]

[tool.pytest.ini_options]
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
