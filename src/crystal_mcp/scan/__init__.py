"""Repository scanning and prioritization package."""

from .classify import (
    calculate_priority,
    classify_category,
    estimate_tokens,
    file_type_tag,
)
from .discovery import ScanProfile, build_ignore_spec, build_queue_item, scan_repository
from .models import FILE_CATEGORIES, FileCategory, QueueItem, queue_item_from_dict

__all__ = [
    "FILE_CATEGORIES",
    "FileCategory",
    "QueueItem",
    "ScanProfile",
    "build_ignore_spec",
    "build_queue_item",
    "calculate_priority",
    "classify_category",
    "estimate_tokens",
    "file_type_tag",
    "queue_item_from_dict",
    "scan_repository",
]
