"""
Data Quality Module
"""
from .validators import (
    DataValidator,
    ValidationCheck,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    create_cleansed_validator,
    create_dimensional_validator,
    create_warehouse_validator,
    collect_tables,
    table_ref,
)

__all__ = [
    "DataValidator",
    "ValidationCheck",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "create_cleansed_validator",
    "create_dimensional_validator",
    "create_warehouse_validator",
    "collect_tables",
    "table_ref",
]
