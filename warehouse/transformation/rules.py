"""
Standardization Rules

Immutable code -> canonical label lookup tables shared by every cleanser,
plus the polars expressions that apply them.
"""

from types import MappingProxyType
from typing import FrozenSet, Mapping

import polars as pl

UNKNOWN = "Unknown"

GENDER_LABELS: Mapping[str, str] = MappingProxyType({
    "F": "Female",
    "FEMALE": "Female",
    "M": "Male",
    "MALE": "Male",
})

MARITAL_STATUS_LABELS: Mapping[str, str] = MappingProxyType({
    "S": "Single",
    "M": "Married",
})

PRODUCT_LINE_LABELS: Mapping[str, str] = MappingProxyType({
    "M": "Mountain",
    "R": "Road",
    "S": "Other Sales",
    "T": "Touring",
})

# Matched case-sensitively on the trimmed value; anything else passes through.
COUNTRY_NAMES: Mapping[str, str] = MappingProxyType({
    "DE": "Germany",
    "US": "United States",
    "USA": "United States",
})

GENDERS: FrozenSet[str] = frozenset(GENDER_LABELS.values()) | {UNKNOWN}
MARITAL_STATUSES: FrozenSet[str] = frozenset(MARITAL_STATUS_LABELS.values()) | {UNKNOWN}
PRODUCT_LINES: FrozenSet[str] = frozenset(PRODUCT_LINE_LABELS.values()) | {UNKNOWN}

# Source-system prefix on ERP customer numbers
ERP_CUSTOMER_PREFIX = "NAS"
# Separator found inside ERP location customer numbers
LOCATION_ID_SEPARATOR = "-"

CATEGORY_ID_WIDTH = 5
CATEGORY_SEPARATOR = "-"
CATEGORY_ID_SEPARATOR = "_"


def map_code(
    column: str,
    labels: Mapping[str, str],
    default: str = UNKNOWN,
) -> pl.Expr:
    """
    Map a code column through a lookup table.

    The code is trimmed and upper-cased before the lookup; nulls and codes
    missing from the table become `default`.
    """
    return (
        pl.col(column)
        .cast(pl.Utf8)
        .fill_null("")
        .str.strip_chars()
        .str.to_uppercase()
        .replace_strict(dict(labels), default=default, return_dtype=pl.Utf8)
    )


def standardize_country(column: str = "country") -> pl.Expr:
    """Expand known country codes; blank or null becomes Unknown"""
    trimmed = pl.col(column).cast(pl.Utf8).str.strip_chars()
    return (
        pl.when(trimmed.is_null() | (trimmed == ""))
        .then(pl.lit(UNKNOWN))
        .otherwise(trimmed.replace(dict(COUNTRY_NAMES)))
    )


def strip_prefix(column: str, prefix: str) -> pl.Expr:
    """Remove a leading prefix when present"""
    return pl.col(column).cast(pl.Utf8).str.strip_prefix(prefix)


def remove_separator(column: str, separator: str) -> pl.Expr:
    return pl.col(column).cast(pl.Utf8).str.replace_all(separator, "", literal=True)
