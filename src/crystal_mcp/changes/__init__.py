"""Change detection package."""

from .detector import MANIFEST_FILE_NAME, ChangeDetector, sha256_file
from .models import (
    MANIFEST_VERSION,
    ChangeDetectionResult,
    ChangeRecord,
    ChangeStats,
    ChangeType,
    CoverageSummary,
    HashManifest,
    ManifestEntry,
    manifest_from_dict,
    manifest_to_dict,
)

__all__ = [
    "MANIFEST_FILE_NAME",
    "MANIFEST_VERSION",
    "ChangeDetectionResult",
    "ChangeDetector",
    "ChangeRecord",
    "ChangeStats",
    "ChangeType",
    "CoverageSummary",
    "HashManifest",
    "ManifestEntry",
    "manifest_from_dict",
    "manifest_to_dict",
    "sha256_file",
]
