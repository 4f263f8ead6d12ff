"""File classification, priority scoring and token estimates."""

from __future__ import annotations

import math
import re
from pathlib import PurePosixPath

from crystal_mcp.scan.models import FileCategory

MIN_PRIORITY = 0
MAX_PRIORITY = 100

BASE_PRIORITY: dict[FileCategory, int] = {
    "config": 70,
    "source": 50,
    "docs": 40,
    "other": 30,
    "test": 20,
}
ENTRY_POINT_BONUS = 20
API_ROLE_BONUS = 25
SMALL_FILE_PENALTY = 10
LARGE_FILE_PENALTY = 15
SMALL_FILE_BYTES = 100
LARGE_FILE_BYTES = 50 * 1024

BYTES_PER_TOKEN_CODE = 3
BYTES_PER_TOKEN_PROSE = 4
_CODE_CATEGORIES: frozenset[FileCategory] = frozenset({"source", "test", "config"})

SOURCE_EXTENSIONS = frozenset(
    {
        ".py", ".pyi", ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".java", ".kt",
        ".go", ".rs", ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".rb", ".php",
        ".swift", ".scala", ".sh", ".bash", ".sql", ".vue", ".svelte", ".lua",
        ".dart", ".ex", ".exs", ".erl", ".hs", ".ml", ".r", ".m", ".pl",
        ".css", ".scss", ".less", ".html",
    }
)
CONFIG_EXTENSIONS = frozenset(
    {".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".xml", ".properties", ".env"}
)
DOCS_EXTENSIONS = frozenset({".md", ".mdx", ".rst", ".txt", ".adoc"})
CONFIG_FILE_NAMES = frozenset(
    {
        "dockerfile", "makefile", "procfile", "gemfile", "rakefile", "jenkinsfile",
        ".gitignore", ".dockerignore", ".editorconfig", ".npmrc", ".nvmrc",
        ".prettierrc", ".eslintrc", ".babelrc", ".env", ".env.example",
    }
)
DOCS_FILE_NAMES = frozenset({"license", "changelog", "authors", "contributing", "notice"})

ENTRY_POINT_NAMES = frozenset(
    {
        "package.json", "pyproject.toml", "setup.py", "setup.cfg", "cargo.toml",
        "go.mod", "pom.xml", "build.gradle", "tsconfig.json", "readme.md",
        "__main__.py", "__init__.py", "manage.py", "dockerfile", "makefile",
    }
)
ENTRY_POINT_STEMS = frozenset({"index", "main", "app", "server", "cli", "mod", "lib"})

_TEST_NAME_PATTERN = re.compile(
    r"(\.(test|spec)\.[^.]+$)|(^test_.+\.py$)|(_test\.(py|go)$)|(^conftest\.py$)"
)
_TEST_DIR_NAMES = frozenset({"test", "tests", "__tests__", "spec", "specs", "testing"})
_API_ROLE_PATTERN = re.compile(r"(api|route|controller|handler|service)", re.IGNORECASE)
_CONFIG_NAME_PATTERN = re.compile(r"\.(config|conf|rc)\.[^.]+$|^\.[^.]+rc$")


def classify_category(relative_path: str) -> FileCategory:
    """Classify a repository-relative POSIX path into a file category."""
    pure = PurePosixPath(relative_path)
    name = pure.name.lower()
    suffix = pure.suffix.lower()
    directories = {part.lower() for part in pure.parts[:-1]}

    if _TEST_NAME_PATTERN.search(name) or directories & _TEST_DIR_NAMES:
        return "test"
    if (
        suffix in CONFIG_EXTENSIONS
        or name in CONFIG_FILE_NAMES
        or _CONFIG_NAME_PATTERN.search(name)
    ):
        return "config"
    if suffix in DOCS_EXTENSIONS or pure.stem.lower() in DOCS_FILE_NAMES:
        return "docs"
    if suffix in SOURCE_EXTENSIONS:
        return "source"
    return "other"


def file_type_tag(relative_path: str) -> str:
    """Return the lower-case extension, or the file name for extensionless files."""
    pure = PurePosixPath(relative_path)
    suffix = pure.suffix.lower()
    if suffix:
        return suffix[1:]
    return pure.name.lower() or "unknown"


def is_entry_point(relative_path: str) -> bool:
    """Return True for manifest and conventional entry-point file names."""
    pure = PurePosixPath(relative_path)
    name = pure.name.lower()
    if name in ENTRY_POINT_NAMES:
        return True
    return pure.suffix.lower() in SOURCE_EXTENSIONS and pure.stem.lower() in ENTRY_POINT_STEMS


def has_api_role(relative_path: str) -> bool:
    """Return True when a directory or file name suggests an API/route/service role."""
    return any(_API_ROLE_PATTERN.search(part) for part in PurePosixPath(relative_path).parts)


def calculate_priority(relative_path: str, size: int, category: FileCategory) -> int:
    """Score a file in [0, 100]; higher is processed first."""
    priority = BASE_PRIORITY[category]
    if is_entry_point(relative_path):
        priority += ENTRY_POINT_BONUS
    if category != "test" and has_api_role(relative_path):
        priority += API_ROLE_BONUS
    if size < SMALL_FILE_BYTES:
        priority -= SMALL_FILE_PENALTY
    if size > LARGE_FILE_BYTES:
        priority -= LARGE_FILE_PENALTY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


def estimate_tokens(size: int, category: FileCategory) -> int:
    """Estimate token count from byte size using a per-category density."""
    if size <= 0:
        return 0
    ratio = BYTES_PER_TOKEN_CODE if category in _CODE_CATEGORIES else BYTES_PER_TOKEN_PROSE
    return math.ceil(size / ratio)
