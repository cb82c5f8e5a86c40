[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "awgupdater"
version = "0.1.0"
description = "Self-update machinery for a VPN client: signed release lists, version comparison, verified downloads and MSI installation."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = [
    "updater",
    "signify",
    "ed25519",
    "blake2b",
    "authenticode",
    "msi",
    "software-update",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Software Distribution",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["awgupdater"]

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
