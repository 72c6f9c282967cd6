[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cefbridge"
version = "0.1.0"
description = "Server side of an in-game browser bridge: protobuf packets, a peer socket and a game-server plugin layer"
requires-python = ">=3.10"
dependencies = []
keywords = ["game-server", "browser", "protobuf", "plugin", "networking"]
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
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cefbridge"]

[tool.hatch.build.targets.sdist]
include = ["cefbridge", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
