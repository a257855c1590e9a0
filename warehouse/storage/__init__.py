"""
Storage Module
"""
from .models import (
    CLEANSED_SCHEMAS,
    DIMENSIONAL_SCHEMAS,
    RAW_SCHEMAS,
    SOURCE_TABLES,
    Layer,
    Table,
)
from .store import LayerStore, MissingTableError

__all__ = [
    "CLEANSED_SCHEMAS",
    "DIMENSIONAL_SCHEMAS",
    "RAW_SCHEMAS",
    "SOURCE_TABLES",
    "Layer",
    "Table",
    "LayerStore",
    "MissingTableError",
]
