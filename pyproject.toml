[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "containerkit"
version = "0.1.0"
description = "Container requests, readiness checks and Compose stack helpers for integration tests: MySQL, Neo4j and Couchbase setups."
requires-python = ">=3.10"
keywords = [
    "testing",
    "integration-tests",
    "docker",
    "docker-compose",
    "containers",
    "mysql",
    "neo4j",
    "couchbase",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
]
dependencies = [
    "pyyaml>=6.0",
    "requests>=2.28",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["containerkit"]

[tool.hatch.build.targets.sdist]
include = [
    "containerkit",
    "tests",
    "pyproject.toml",
    "README.md",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
