[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lightgpt"
version = "1.0.0"
description = "A small transformer inference toolkit: GGUF inspection, attention, quantization, sampling and streamed generation"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "transformer",
    "gguf",
    "inference",
    "quantization",
    "sampling",
    "attention",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
lightgpt-weights = "lightgpt.gguf:main"
lightgpt-attention = "lightgpt.attention:main"
lightgpt-chat = "lightgpt.chat:main"
lightgpt-interactive = "lightgpt.chat:interactive_main"

[tool.hatch.build.targets.wheel]
packages = ["lightgpt"]

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
