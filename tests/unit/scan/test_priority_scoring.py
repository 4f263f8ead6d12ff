from __future__ import annotations

from crystal_mcp.scan import calculate_priority, classify_category, estimate_tokens


def _score(relative_path: str, size: int) -> int:
    return calculate_priority(relative_path, size, classify_category(relative_path))


def test_small_config_api_source_and_test_scores() -> None:
    assert _score("a.config.json", 80) == 60
    assert _score("controllers/b.ts", 2000) == 75
    assert _score("c.test.ts", 500) == 20


def test_entry_point_names_receive_bonus() -> None:
    assert _score("src/main.py", 400) == 70
    assert _score("package.json", 400) == 90
    assert _score("src/helpers.py", 400) == 50


def test_api_role_bonus_skips_test_files() -> None:
    assert _score("api/users.py", 400) == 75
    assert _score("tests/api/test_users.py", 400) == 20


def test_large_file_penalty_applies() -> None:
    assert _score("src/helpers.py", 60 * 1024) == 35


def test_priority_is_clamped_to_range() -> None:
    assert calculate_priority("services/api/index.ts", 200, "source") == 95
    assert calculate_priority("api/package.json", 400, "config") == 100
    assert calculate_priority("tests/fixture.txt", 50, "test") == 10


def test_token_estimates_use_category_density() -> None:
    assert estimate_tokens(80, "config") == 27
    assert estimate_tokens(2000, "source") == 667
    assert estimate_tokens(500, "test") == 167
    assert estimate_tokens(400, "docs") == 100
    assert estimate_tokens(401, "other") == 101
    assert estimate_tokens(0, "source") == 0
