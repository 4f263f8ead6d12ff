"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

DATA_DIR_NAME = ".context-crystal"
CONFIG_FILE_NAME = "context_crystal.toml"

MAX_FILE_BYTES_CAP = 16 * 1024 * 1024
MAX_CLAIM_TIMEOUT_SECONDS = 7 * 24 * 60 * 60

DEFAULT_MAX_FILE_BYTES = 1024 * 1024
DEFAULT_BINARY_SNIFF_BYTES = 512
DEFAULT_EXCLUDE_PATTERNS = (
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    "__pycache__/",
    ".venv/",
    "*.log",
    "*.tmp",
    ".DS_Store",
)
DEFAULT_CLAIM_TIMEOUT_SECONDS = 900
DEFAULT_SESSION_FRESHNESS_HOURS = 24
DEFAULT_LOCK_STALE_SECONDS = 10.0


@dataclass(slots=True, frozen=True)
class ScanConfig:
    """Repository scan settings."""

    max_file_bytes: int
    binary_sniff_bytes: int
    exclude_patterns: tuple[str, ...]
    respect_gitignore: bool


@dataclass(slots=True, frozen=True)
class QueueConfig:
    """Queue session and lease settings."""

    default_claim_timeout_seconds: int
    session_freshness_hours: int
    lock_stale_seconds: float


@dataclass(slots=True, frozen=True)
class CrystalConfig:
    """Fully merged configuration for one repository."""

    repo_root: Path
    data_dir: Path
    scan: ScanConfig
    queue: QueueConfig

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for tool responses."""
        return {
            "repo_root": str(self.repo_root),
            "data_dir": str(self.data_dir),
            "scan": {
                "max_file_bytes": self.scan.max_file_bytes,
                "binary_sniff_bytes": self.scan.binary_sniff_bytes,
                "exclude_patterns": list(self.scan.exclude_patterns),
                "respect_gitignore": self.scan.respect_gitignore,
            },
            "queue": {
                "default_claim_timeout_seconds": self.queue.default_claim_timeout_seconds,
                "session_freshness_hours": self.queue.session_freshness_hours,
                "lock_stale_seconds": self.queue.lock_stale_seconds,
            },
        }


@dataclass(slots=True, frozen=True)
class ConfigOverrides:
    """Optional startup overrides applied at highest precedence."""

    data_dir: Path | None = None
    max_file_bytes: int | None = None
    default_claim_timeout_seconds: int | None = None
    respect_gitignore: bool | None = None


def default_config(repo_root: Path) -> CrystalConfig:
    """Build default config for a given repository root."""
    resolved_root = repo_root.resolve()
    return CrystalConfig(
        repo_root=resolved_root,
        data_dir=resolved_root / DATA_DIR_NAME,
        scan=ScanConfig(
            max_file_bytes=DEFAULT_MAX_FILE_BYTES,
            binary_sniff_bytes=DEFAULT_BINARY_SNIFF_BYTES,
            exclude_patterns=DEFAULT_EXCLUDE_PATTERNS,
            respect_gitignore=True,
        ),
        queue=QueueConfig(
            default_claim_timeout_seconds=DEFAULT_CLAIM_TIMEOUT_SECONDS,
            session_freshness_hours=DEFAULT_SESSION_FRESHNESS_HOURS,
            lock_stale_seconds=DEFAULT_LOCK_STALE_SECONDS,
        ),
    )


def load_repo_config_file(repo_root: Path) -> dict[str, object]:
    """Load optional context_crystal.toml from repo root."""
    config_path = repo_root / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{CONFIG_FILE_NAME} must contain a top-level table.")
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, section: str, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{section}.{field}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Config field '{section}.{field}' must contain only strings.")
        output.append(item)
    return tuple(output)


def merge_config(
    base: CrystalConfig, repo_payload: dict[str, object], overrides: ConfigOverrides
) -> CrystalConfig:
    """Merge defaults, repo config, then startup overrides."""
    scan_payload = _get_table(repo_payload, "scan")
    queue_payload = _get_table(repo_payload, "queue")

    max_file_bytes = _optional_positive_int_with_cap(
        scan_payload.get("max_file_bytes"),
        "scan.max_file_bytes",
        base.scan.max_file_bytes,
        MAX_FILE_BYTES_CAP,
    )
    binary_sniff_bytes = _optional_positive_int_with_cap(
        scan_payload.get("binary_sniff_bytes"),
        "scan.binary_sniff_bytes",
        base.scan.binary_sniff_bytes,
        cap=64 * 1024,
    )
    exclude_patterns = base.scan.exclude_patterns
    if "exclude_patterns" in scan_payload:
        exclude_patterns = _tuple_of_strings(
            scan_payload["exclude_patterns"], "scan", "exclude_patterns"
        )
    respect_gitignore = base.scan.respect_gitignore
    if "respect_gitignore" in scan_payload:
        raw_respect = scan_payload["respect_gitignore"]
        if not isinstance(raw_respect, bool):
            raise ValueError("Config field 'scan.respect_gitignore' must be a boolean.")
        respect_gitignore = raw_respect

    claim_timeout = _optional_positive_int_with_cap(
        queue_payload.get("default_claim_timeout_seconds"),
        "queue.default_claim_timeout_seconds",
        base.queue.default_claim_timeout_seconds,
        MAX_CLAIM_TIMEOUT_SECONDS,
    )
    freshness_hours = _optional_positive_int_with_cap(
        queue_payload.get("session_freshness_hours"),
        "queue.session_freshness_hours",
        base.queue.session_freshness_hours,
        cap=24 * 30,
    )
    lock_stale_seconds = base.queue.lock_stale_seconds
    if "lock_stale_seconds" in queue_payload:
        raw_stale = queue_payload["lock_stale_seconds"]
        if isinstance(raw_stale, bool) or not isinstance(raw_stale, (int, float)) or raw_stale <= 0:
            raise ValueError("Config field 'queue.lock_stale_seconds' must be a positive number.")
        lock_stale_seconds = float(raw_stale)

    merged = CrystalConfig(
        repo_root=base.repo_root,
        data_dir=base.data_dir,
        scan=ScanConfig(
            max_file_bytes=max_file_bytes,
            binary_sniff_bytes=binary_sniff_bytes,
            exclude_patterns=exclude_patterns,
            respect_gitignore=respect_gitignore,
        ),
        queue=QueueConfig(
            default_claim_timeout_seconds=claim_timeout,
            session_freshness_hours=freshness_hours,
            lock_stale_seconds=lock_stale_seconds,
        ),
    )
    return apply_overrides(merged, overrides)


def apply_overrides(config: CrystalConfig, overrides: ConfigOverrides) -> CrystalConfig:
    """Apply startup overrides at highest precedence."""
    max_file_bytes = _optional_positive_int_with_cap(
        overrides.max_file_bytes,
        "overrides.max_file_bytes",
        config.scan.max_file_bytes,
        MAX_FILE_BYTES_CAP,
    )
    claim_timeout = _optional_positive_int_with_cap(
        overrides.default_claim_timeout_seconds,
        "overrides.default_claim_timeout_seconds",
        config.queue.default_claim_timeout_seconds,
        MAX_CLAIM_TIMEOUT_SECONDS,
    )
    respect_gitignore = (
        overrides.respect_gitignore
        if overrides.respect_gitignore is not None
        else config.scan.respect_gitignore
    )
    data_dir = overrides.data_dir or config.data_dir
    return CrystalConfig(
        repo_root=config.repo_root,
        data_dir=data_dir.resolve(),
        scan=ScanConfig(
            max_file_bytes=max_file_bytes,
            binary_sniff_bytes=config.scan.binary_sniff_bytes,
            exclude_patterns=config.scan.exclude_patterns,
            respect_gitignore=respect_gitignore,
        ),
        queue=QueueConfig(
            default_claim_timeout_seconds=claim_timeout,
            session_freshness_hours=config.queue.session_freshness_hours,
            lock_stale_seconds=config.queue.lock_stale_seconds,
        ),
    )


def load_effective_config(
    repo_root: Path, overrides: ConfigOverrides | None = None
) -> CrystalConfig:
    """Load effective config using merge order defaults -> repo config -> overrides."""
    resolved_root = repo_root.resolve()
    base = default_config(resolved_root)
    payload = load_repo_config_file(resolved_root)
    return merge_config(base, payload, overrides or ConfigOverrides())


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ValueError(f"Config field '{name}' must be <= {cap}.")
    return value
