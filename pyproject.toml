[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fulcio"
version = "0.1.0"
description = "OIDC issuer configuration, ID token handling and identity principals for a code-signing certificate authority"
requires-python = ">=3.10"
keywords = ["oidc", "jwt", "spiffe", "kubernetes", "code-signing"]
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
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "requests",
    "pyjwt",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["fulcio"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
