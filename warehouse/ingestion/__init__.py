"""
Data Ingestion Module
"""
from .batch_loader import (
    BatchFileConfig,
    BatchLoader,
    FileFormat,
    LoadResult,
    LoadStatus,
    SchemaValidationError,
    create_batch_loader,
)

__all__ = [
    "BatchFileConfig",
    "BatchLoader",
    "FileFormat",
    "LoadResult",
    "LoadStatus",
    "SchemaValidationError",
    "create_batch_loader",
]
