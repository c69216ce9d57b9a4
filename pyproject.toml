[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "servicemanager"
version = "0.1.0"
description = "Declarative setup, teardown and lookup of Pub/Sub, Cloud Storage and BigQuery resources from a YAML configuration"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["pubsub", "bigquery", "cloud-storage", "infrastructure", "configuration", "yaml", "wsgi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
servicemanager = "servicemanager.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["servicemanager"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
