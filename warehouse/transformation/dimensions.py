"""
Dimension Builder

Builds the conformed dimensions of the star schema from cleansed tables:
- Customer dimension: CRM customers enriched with ERP demographics and location
- Product dimension: current product versions enriched with ERP categories

Surrogate keys are dense, 1-based positions in a deterministic ordering, so
they are stable across runs as long as the cleansed input is unchanged.
"""

from typing import Optional

import polars as pl
import structlog

from warehouse.storage.models import DIMENSIONAL_SCHEMAS, Table, conform
from .rules import UNKNOWN

logger = structlog.get_logger(__name__)


class DimensionBuilder:
    """
    Surrogate key assignment and attribute conformance for the dimensions.

    Lookup tables are reduced to one row per join key (first occurrence)
    before joining, so a duplicated ERP record can never fan out a dimension.

    Example:
        builder = DimensionBuilder()
        dim_customers = builder.build_customers(customers, demographics, locations)
        dim_products = builder.build_products(products, categories)
    """

    @staticmethod
    def _first_per_key(df: pl.DataFrame, key: str, lookup: str) -> pl.DataFrame:
        keyed = df.filter(pl.col(key).is_not_null())
        unique = keyed.unique(subset=[key], keep="first", maintain_order=True)
        if unique.height < keyed.height:
            logger.warning(
                "Duplicate lookup keys ignored",
                lookup=lookup,
                key=key,
                rows=keyed.height - unique.height,
            )
        return unique

    @staticmethod
    def _assign_keys(df: pl.DataFrame, key_name: str, order_by: list) -> pl.DataFrame:
        """Dense 1-based surrogate keys following `order_by`"""
        return (
            df.sort(order_by, nulls_last=False, maintain_order=True)
            .with_row_index(key_name, offset=1)
            .with_columns(pl.col(key_name).cast(pl.Int64))
        )

    def build_customers(
        self,
        customers: pl.DataFrame,
        demographics: Optional[pl.DataFrame] = None,
        locations: Optional[pl.DataFrame] = None,
    ) -> pl.DataFrame:
        """
        Build the customer dimension.

        Args:
            customers: Cleansed CRM customers (one row per customer_id)
            demographics: Cleansed ERP demographics
            locations: Cleansed ERP locations

        Returns:
            One row per customer_id, keyed by customer_key in customer_id order.
            CRM gender wins unless it is Unknown, then the ERP gender is used.
        """
        dim = self._assign_keys(customers, "customer_key", ["customer_id"])

        if demographics is not None:
            demo = self._first_per_key(
                demographics.select(
                    "customer_number",
                    "birthdate",
                    pl.col("gender").alias("erp_gender"),
                ),
                "customer_number",
                Table.ERP_DEMOGRAPHICS.value,
            )
            dim = dim.join(demo, on="customer_number", how="left")
        else:
            dim = dim.with_columns(
                pl.lit(None, dtype=pl.Date).alias("birthdate"),
                pl.lit(None, dtype=pl.Utf8).alias("erp_gender"),
            )

        if locations is not None:
            loc = self._first_per_key(
                locations.select("customer_number", "country"),
                "customer_number",
                Table.ERP_LOCATIONS.value,
            )
            dim = dim.join(loc, on="customer_number", how="left")
        else:
            dim = dim.with_columns(pl.lit(None, dtype=pl.Utf8).alias("country"))

        dim = dim.with_columns(
            pl.when(pl.col("gender") != UNKNOWN)
            .then(pl.col("gender"))
            .otherwise(pl.col("erp_gender").fill_null(UNKNOWN))
            .alias("gender"),
            pl.col("country").fill_null(UNKNOWN).alias("country"),
        ).sort("customer_key")

        result = conform(dim, DIMENSIONAL_SCHEMAS[Table.DIM_CUSTOMERS])
        logger.info("Built customer dimension", rows=result.height)
        return result

    def build_products(
        self,
        products: pl.DataFrame,
        categories: Optional[pl.DataFrame] = None,
    ) -> pl.DataFrame:
        """
        Build the product dimension from current product versions.

        Only rows whose end_date is null survive; keys follow
        (start_date, product_number).
        """
        current = products.filter(pl.col("end_date").is_null())
        historical = products.height - current.height

        dim = self._assign_keys(current, "product_key", ["start_date", "product_number"])

        if categories is not None:
            cats = self._first_per_key(
                categories.select("category_id", "category", "subcategory", "maintenance"),
                "category_id",
                Table.ERP_CATEGORIES.value,
            )
            dim = dim.join(cats, on="category_id", how="left").sort("product_key")

        result = conform(dim, DIMENSIONAL_SCHEMAS[Table.DIM_PRODUCTS])
        logger.info(
            "Built product dimension",
            rows=result.height,
            historical_versions_excluded=historical,
        )
        return result


def build_customer_dimension(
    customers: pl.DataFrame,
    demographics: Optional[pl.DataFrame] = None,
    locations: Optional[pl.DataFrame] = None,
) -> pl.DataFrame:
    """Convenience wrapper around DimensionBuilder.build_customers"""
    return DimensionBuilder().build_customers(customers, demographics, locations)


def build_product_dimension(
    products: pl.DataFrame,
    categories: Optional[pl.DataFrame] = None,
) -> pl.DataFrame:
    """Convenience wrapper around DimensionBuilder.build_products"""
    return DimensionBuilder().build_products(products, categories)
