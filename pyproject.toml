[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ghfindings"
version = "1.0.0"
description = "Collect GitHub security findings for an organization and report on them as Excel, Markdown and CSV"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "github",
    "security",
    "code-scanning",
    "secret-scanning",
    "dependabot",
    "reporting",
    "xlsx",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: Software Development :: Quality Assurance",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
github-findings-manager = "ghfindings.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["ghfindings"]

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
