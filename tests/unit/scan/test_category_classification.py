from __future__ import annotations

import pytest

from crystal_mcp.scan import classify_category, file_type_tag


@pytest.mark.parametrize(
    ("relative_path", "expected"),
    [
        ("src/app.ts", "source"),
        ("src/app.test.ts", "test"),
        ("tests/helpers.py", "test"),
        ("pkg/test_parser.py", "test"),
        ("internal/server_test.go", "test"),
        ("tsconfig.json", "config"),
        ("settings/app.config.js", "config"),
        ("Dockerfile", "config"),
        (".env", "config"),
        ("README.md", "docs"),
        ("LICENSE", "docs"),
        ("assets/logo.svg", "other"),
    ],
)
def test_classify_category(relative_path: str, expected: str) -> None:
    assert classify_category(relative_path) == expected


def test_test_classification_wins_over_config() -> None:
    assert classify_category("tests/fixtures/settings.json") == "test"


def test_file_type_tag_uses_extension_or_name() -> None:
    assert file_type_tag("src/App.TSX") == "tsx"
    assert file_type_tag("Makefile") == "makefile"
    assert file_type_tag("docs/guide.md") == "md"
