from __future__ import annotations

from pathlib import Path

import pytest

from crystal_mcp.config import CONFIG_FILE_NAME, ConfigOverrides, load_effective_config


def _config_file(root: Path, *lines: str) -> None:
    (root / CONFIG_FILE_NAME).write_text("\n".join(lines), encoding="utf-8")


def test_non_integer_value_names_the_field(tmp_path: Path) -> None:
    _config_file(tmp_path, "[scan]", 'max_file_bytes = "big"')

    with pytest.raises(ValueError, match="scan.max_file_bytes"):
        load_effective_config(tmp_path)


def test_non_positive_timeout_is_rejected(tmp_path: Path) -> None:
    _config_file(tmp_path, "[queue]", "default_claim_timeout_seconds = 0")

    with pytest.raises(ValueError, match="queue.default_claim_timeout_seconds"):
        load_effective_config(tmp_path)


def test_section_must_be_a_table(tmp_path: Path) -> None:
    _config_file(tmp_path, 'scan = "everything"')

    with pytest.raises(ValueError, match="section 'scan'"):
        load_effective_config(tmp_path)


def test_exclude_patterns_must_be_strings(tmp_path: Path) -> None:
    _config_file(tmp_path, "[scan]", "exclude_patterns = [1, 2]")

    with pytest.raises(ValueError, match="scan.exclude_patterns"):
        load_effective_config(tmp_path)


def test_override_above_cap_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="overrides.max_file_bytes"):
        load_effective_config(tmp_path, ConfigOverrides(max_file_bytes=10**12))
