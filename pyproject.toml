[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "terracotta"
version = "0.2.0"
description = "Minecraft LAN multiplayer lobby over an EasyTier virtual network, driven from a local web page"
requires-python = ">=3.10"
keywords = ["minecraft", "lan", "multiplayer", "easytier", "room-code"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Games/Entertainment",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
terracotta = "terracotta.app:main"

[tool.hatch.build.targets.wheel]
packages = ["terracotta"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
