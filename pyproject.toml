[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "elfstage"
version = "0.1.0"
description = "Inspect ELF images and plan how a minimal loader would map, relocate and link them"
requires-python = ">=3.10"
dependencies = []
keywords = ["elf", "loader", "linker", "relocation", "got", "plt", "binary"]
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
    "Topic :: Software Development :: Disassemblers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
elfstage = "elfstage.linker:main"

[tool.hatch.build.targets.wheel]
packages = ["elfstage"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
