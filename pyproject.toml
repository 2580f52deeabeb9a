[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kanibuild"
version = "0.1.0"
description = "Building blocks for an image builder: layer cache keys, cross-stage dependencies, snapshot decisions, image references and push outputs"
requires-python = ">=3.10"
dependencies = []
keywords = ["container", "image", "build", "cache", "dockerfile", "registry"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kanibuild"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
