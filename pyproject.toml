[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fulcio"
version = "0.1.0"
description = "Building blocks for a code-signing certificate authority: legacy v1 API client, HTTP gateway header handling, serve settings and a hot-reloaded TLS key pair."
requires-python = ">=3.11"
keywords = ["certificate-authority", "code-signing", "x509", "oidc", "tls"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "requests>=2.28",
    "pyyaml>=6.0",
    "watchdog>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
    "cryptography>=41.0",
]

[tool.hatch.build.targets.wheel]
packages = ["fulcio"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
