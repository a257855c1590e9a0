"""
Data Cleaning Module

Raw -> cleansed transformations for the CRM and ERP extracts.
Handles:
- Deduplication (latest customer record wins)
- Code standardization (gender, marital status, product line, country)
- Composite key decomposition and validity range derivation for products
- Integer date parsing and amount / price reconciliation for sales lines
- Identifier normalization for the ERP lookups
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.storage.models import CLEANSED_SCHEMAS, Table, conform
from .rules import (
    CATEGORY_ID_SEPARATOR,
    CATEGORY_ID_WIDTH,
    CATEGORY_SEPARATOR,
    ERP_CUSTOMER_PREFIX,
    GENDER_LABELS,
    LOCATION_ID_SEPARATOR,
    MARITAL_STATUS_LABELS,
    PRODUCT_LINE_LABELS,
    map_code,
    remove_separator,
    standardize_country,
    strip_prefix,
)

logger = structlog.get_logger(__name__)

DATE_KEY_FORMAT = "%Y%m%d"
SALES_DATE_COLUMNS = ["order_date", "ship_date", "due_date"]


@dataclass
class CleaningStats:
    """Statistics from one cleansing pass"""
    table: str
    total_rows: int
    rows_after_cleaning: int
    duplicates_removed: int = 0
    rows_rejected: int = 0
    values_repaired: int = 0


class DataCleaner:
    """
    Cleanser for the six raw source tables.

    Every clean_* method consumes one raw table and returns the cleansed
    table conformed to its declared schema. Unmapped codes silently become
    "Unknown"; nothing here raises for imperfect data.

    Example:
        cleaner = DataCleaner(as_of=date(2024, 1, 1))
        customers = cleaner.clean_customers(raw_customers)
        stats = cleaner.stats["crm_customers"]
    """

    def __init__(
        self,
        as_of: Optional[date] = None,
        amount_tolerance: Optional[float] = None,
    ):
        settings = get_settings()
        self.as_of = as_of or date.today()
        self.amount_tolerance = (
            settings.data_quality.amount_tolerance if amount_tolerance is None else amount_tolerance
        )
        self.stats: Dict[str, CleaningStats] = {}
        self._cleaners: Dict[Table, Callable[[pl.DataFrame], pl.DataFrame]] = {
            Table.CRM_CUSTOMERS: self.clean_customers,
            Table.CRM_PRODUCTS: self.clean_products,
            Table.CRM_SALES: self.clean_sales,
            Table.ERP_DEMOGRAPHICS: self.clean_demographics,
            Table.ERP_LOCATIONS: self.clean_locations,
            Table.ERP_CATEGORIES: self.clean_categories,
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _record(self, table: Table, total_rows: int, df: pl.DataFrame, **counts) -> None:
        stats = CleaningStats(
            table=table.value,
            total_rows=total_rows,
            rows_after_cleaning=df.height,
            **counts,
        )
        self.stats[table.value] = stats
        logger.info(
            "Cleansed table",
            table=table.value,
            rows_in=stats.total_rows,
            rows_out=stats.rows_after_cleaning,
            duplicates_removed=stats.duplicates_removed,
            rows_rejected=stats.rows_rejected,
            values_repaired=stats.values_repaired,
        )

    def _trim_strings(self, df: pl.DataFrame, columns: Optional[List[str]] = None) -> pl.DataFrame:
        """Trim whitespace from string columns"""
        string_cols = columns or [
            col for col, dtype in zip(df.columns, df.dtypes)
            if dtype == pl.Utf8
        ]

        return df.with_columns([
            pl.col(col).cast(pl.Utf8).str.strip_chars().alias(col)
            for col in string_cols
            if col in df.columns
        ])

    @staticmethod
    def _date_expr(df: pl.DataFrame, column: str) -> pl.Expr:
        """Expression converting a loosely typed column to pl.Date"""
        dtype = df.schema[column]
        col = pl.col(column)
        if dtype == pl.Date:
            return col
        if isinstance(dtype, pl.Datetime):
            return col.dt.date()
        if dtype == pl.Utf8:
            # Accepts "YYYY-MM-DD" optionally followed by a time part
            return col.str.strip_chars().str.slice(0, 10).str.to_date("%Y-%m-%d", strict=False)
        return col.cast(pl.Date, strict=False)

    @staticmethod
    def _timestamp_expr(df: pl.DataFrame, column: str) -> pl.Expr:
        """
        Expression converting a loosely typed column to pl.Datetime.

        Text accepts "YYYY-MM-DD HH:MM:SS" (or the ISO "T" separator, with any
        fraction or offset ignored) and falls back to a bare "YYYY-MM-DD" at
        midnight.
        """
        dtype = df.schema[column]
        col = pl.col(column)
        if isinstance(dtype, pl.Datetime):
            return col
        if dtype == pl.Date:
            return col.cast(pl.Datetime)
        if dtype == pl.Utf8:
            text = col.str.strip_chars().str.replace("T", " ", literal=True)
            return pl.coalesce(
                text.str.slice(0, 19).str.to_datetime("%Y-%m-%d %H:%M:%S", strict=False),
                text.str.slice(0, 10).str.to_date("%Y-%m-%d", strict=False).cast(pl.Datetime),
            )
        return col.cast(pl.Datetime, strict=False)

    @staticmethod
    def _date_key_expr(column: str) -> pl.Expr:
        """
        YYYYMMDD integer -> pl.Date.

        Zero, anything not exactly eight digits long, and digit strings that
        are not calendar dates (20231301) all become null.
        """
        key = pl.col(column).cast(pl.Int64, strict=False)
        text = key.cast(pl.Utf8)
        return (
            pl.when((key != 0) & (text.str.len_chars() == 8))
            .then(text.str.to_date(DATE_KEY_FORMAT, strict=False))
            .otherwise(pl.lit(None, dtype=pl.Date))
            .alias(column)
        )

    def _keep_latest(self, df: pl.DataFrame, key: str, order_by: str) -> pl.DataFrame:
        """
        Keep one row per key: the one with the greatest `order_by` value.

        Nulls in `order_by` lose; remaining ties go to the row ingested first.
        """
        return (
            df.with_row_index("_ingest_order")
            .sort(
                [key, order_by, "_ingest_order"],
                descending=[False, True, False],
                nulls_last=True,
            )
            .unique(subset=[key], keep="first", maintain_order=True)
            .drop("_ingest_order")
        )

    def _derive_validity(
        self,
        df: pl.DataFrame,
        key: str,
        start: str,
        end: str,
        tie_breaker: str,
    ) -> pl.DataFrame:
        """
        Gap-fill validity ranges per key.

        Versions are ordered by start date; each one ends the day before its
        successor starts and the last one stays open. Versions sharing a start
        date collapse to the one with the greatest `tie_breaker` first, so
        starts within a key are strictly increasing.
        """
        df = (
            df.sort([key, start, tie_breaker], nulls_last=False)
            .unique(subset=[key, start], keep="last", maintain_order=True)
        )
        return df.with_columns(
            pl.col(start).shift(-1).over(key).dt.offset_by("-1d").alias(end)
        )

    # -------------------------------------------------------------------------
    # CRM
    # -------------------------------------------------------------------------

    def clean_customers(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Deduplicate customers, trim names and standardize codes.

        The latest record is chosen on the full creation timestamp; only the
        cleansed output is truncated to a date.
        """
        total = df.height
        df = df.with_columns(self._timestamp_expr(df, "create_date").alias("_created_at"))

        keyed = df.filter(pl.col("customer_id").is_not_null())
        rejected = total - keyed.height
        if rejected:
            logger.warning("Dropped customer rows without an id", rows=rejected)

        deduped = self._keep_latest(keyed, key="customer_id", order_by="_created_at")
        deduped = deduped.with_columns(pl.col("_created_at").dt.date().alias("create_date"))
        deduped = self._trim_strings(deduped, ["first_name", "last_name"])
        deduped = deduped.with_columns(
            map_code("marital_status", MARITAL_STATUS_LABELS).alias("marital_status"),
            map_code("gender", GENDER_LABELS).alias("gender"),
        )

        result = conform(deduped, CLEANSED_SCHEMAS[Table.CRM_CUSTOMERS])
        self._record(
            Table.CRM_CUSTOMERS,
            total,
            result,
            duplicates_removed=keyed.height - result.height,
            rows_rejected=rejected,
        )
        return result

    def clean_products(self, df: pl.DataFrame) -> pl.DataFrame:
        """Split composite keys, repair cost, map lines and derive validity ranges"""
        total = df.height
        composite = pl.col("product_number").cast(pl.Utf8)
        null_costs = df["cost"].null_count()

        df = df.with_columns(
            composite.str.slice(0, CATEGORY_ID_WIDTH)
            .str.replace_all(CATEGORY_SEPARATOR, CATEGORY_ID_SEPARATOR, literal=True)
            .alias("category_id"),
            composite.str.slice(CATEGORY_ID_WIDTH + 1).alias("product_number"),
            pl.col("cost").cast(pl.Float64).fill_null(0.0).alias("cost"),
            map_code("product_line", PRODUCT_LINE_LABELS).alias("product_line"),
            self._date_expr(df, "start_date").alias("start_date"),
        )

        df = self._derive_validity(
            df,
            key="product_number",
            start="start_date",
            end="end_date",
            tie_breaker="product_id",
        )
        collapsed = total - df.height
        if collapsed:
            logger.warning(
                "Collapsed product versions sharing a start date",
                rows=collapsed,
            )

        result = conform(df, CLEANSED_SCHEMAS[Table.CRM_PRODUCTS])
        self._record(
            Table.CRM_PRODUCTS,
            total,
            result,
            duplicates_removed=collapsed,
            values_repaired=null_costs,
        )
        return result

    def clean_sales(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Parse date keys and reconcile amount, quantity and price.

        An amount is replaced by quantity * |price| when it is missing or not
        positive, and when it differs from that product by more than
        `amount_tolerance` (0.005 by default, `QUALITY_AMOUNT_TOLERANCE`).
        Smaller differences are float noise and the amount is kept as is.

        Both repairs read the original amount and price: a repaired amount is
        never fed into the price repair of the same row.
        """
        total = df.height
        amount = pl.col("sales_amount").cast(pl.Float64)
        quantity = pl.col("quantity").cast(pl.Int64)
        price = pl.col("unit_price").cast(pl.Float64)

        expected_amount = quantity * price.abs()
        amount_invalid = (
            amount.is_null()
            | (amount <= 0)
            | ((amount - expected_amount).abs() > self.amount_tolerance)
        )
        price_invalid = price.is_null() | (price <= 0)
        nonzero_quantity = pl.when(quantity != 0).then(quantity)

        flags = df.select(
            amount_invalid.fill_null(False).sum().alias("amounts"),
            price_invalid.sum().alias("prices"),
        )

        df = df.with_columns(
            [self._date_key_expr(col) for col in SALES_DATE_COLUMNS]
            + [
                pl.when(amount_invalid)
                .then(expected_amount)
                .otherwise(amount)
                .round(2)
                .alias("sales_amount"),
                pl.when(price_invalid)
                .then(amount / nonzero_quantity)
                .otherwise(price)
                .round(2)
                .alias("unit_price"),
            ]
        )

        result = conform(df, CLEANSED_SCHEMAS[Table.CRM_SALES])
        self._record(
            Table.CRM_SALES,
            total,
            result,
            values_repaired=int(flags["amounts"][0] or 0) + int(flags["prices"][0] or 0),
        )
        return result

    # -------------------------------------------------------------------------
    # ERP
    # -------------------------------------------------------------------------

    def clean_demographics(self, df: pl.DataFrame) -> pl.DataFrame:
        """Strip the source prefix, null future birthdates, map gender"""
        total = df.height
        birthdate = self._date_expr(df, "birthdate")
        future = df.select((birthdate > self.as_of).sum()).item() or 0

        df = df.with_columns(
            strip_prefix("customer_number", ERP_CUSTOMER_PREFIX).alias("customer_number"),
            pl.when(birthdate > self.as_of)
            .then(pl.lit(None, dtype=pl.Date))
            .otherwise(birthdate)
            .alias("birthdate"),
            map_code("gender", GENDER_LABELS).alias("gender"),
        )

        result = conform(df, CLEANSED_SCHEMAS[Table.ERP_DEMOGRAPHICS])
        self._record(Table.ERP_DEMOGRAPHICS, total, result, values_repaired=int(future))
        return result

    def clean_locations(self, df: pl.DataFrame) -> pl.DataFrame:
        """Remove id separators and expand country codes"""
        total = df.height
        df = df.with_columns(
            remove_separator("customer_number", LOCATION_ID_SEPARATOR).alias("customer_number"),
            standardize_country("country").alias("country"),
        )

        result = conform(df, CLEANSED_SCHEMAS[Table.ERP_LOCATIONS])
        self._record(Table.ERP_LOCATIONS, total, result)
        return result

    def clean_categories(self, df: pl.DataFrame) -> pl.DataFrame:
        """Pass-through copy; untrimmed values are reported by the validator"""
        result = conform(df, CLEANSED_SCHEMAS[Table.ERP_CATEGORIES])
        self._record(Table.ERP_CATEGORIES, df.height, result)
        return result

    def clean_table(self, table: Table, df: pl.DataFrame) -> pl.DataFrame:
        """Dispatch to the cleanser of a source table"""
        cleaner = self._cleaners.get(Table(table))
        if cleaner is None:
            raise ValueError(f"No cleanser for table: {table}")
        return cleaner(df)


def clean_dataframe(
    df: pl.DataFrame,
    table: str,
    as_of: Optional[date] = None,
) -> pl.DataFrame:
    """
    Convenience function to cleanse one raw table.

    Args:
        df: Raw DataFrame
        table: Source table name, e.g. "crm_customers"
        as_of: Reference date for birthdate plausibility

    Returns:
        Cleansed DataFrame
    """
    return DataCleaner(as_of=as_of).clean_table(Table(table), df)
