"""
Fact Resolver

Resolves the business keys of cleansed sales lines into dimension
surrogate keys. Resolution is left-outer on both sides: a line whose product
or customer is missing from the dimensions keeps a null key and is reported
by the referential integrity check, never dropped here.
"""

from dataclasses import dataclass

import polars as pl
import structlog

from warehouse.storage.models import DIMENSIONAL_SCHEMAS, Table, conform

logger = structlog.get_logger(__name__)


@dataclass
class ResolutionStats:
    """Outcome of one fact resolution pass"""
    total_rows: int
    unresolved_products: int
    unresolved_customers: int


class FactResolver:
    """
    Sales fact builder.

    Example:
        resolver = FactResolver()
        facts = resolver.resolve_sales(sales, dim_products, dim_customers)
        resolver.stats.unresolved_products
    """

    def __init__(self):
        self.stats: ResolutionStats = ResolutionStats(0, 0, 0)

    def resolve_sales(
        self,
        sales: pl.DataFrame,
        dim_products: pl.DataFrame,
        dim_customers: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Substitute surrogate keys for product_number and customer_id.

        Output keeps one row per sales line in source order.
        """
        product_keys = (
            dim_products.select("product_number", "product_key")
            .unique(subset=["product_number"], keep="first", maintain_order=True)
        )
        customer_keys = (
            dim_customers.select("customer_id", "customer_key")
            .unique(subset=["customer_id"], keep="first", maintain_order=True)
        )

        facts = (
            sales.with_row_index("_line")
            .join(product_keys, on="product_number", how="left")
            .join(customer_keys, on="customer_id", how="left")
            .sort("_line")
        )

        self.stats = ResolutionStats(
            total_rows=facts.height,
            unresolved_products=facts["product_key"].null_count(),
            unresolved_customers=facts["customer_key"].null_count(),
        )
        if self.stats.unresolved_products or self.stats.unresolved_customers:
            logger.warning(
                "Sales lines with unresolved dimension keys",
                unresolved_products=self.stats.unresolved_products,
                unresolved_customers=self.stats.unresolved_customers,
            )

        result = conform(facts, DIMENSIONAL_SCHEMAS[Table.FACT_SALES])
        logger.info("Resolved sales facts", rows=result.height)
        return result


def resolve_sales_facts(
    sales: pl.DataFrame,
    dim_products: pl.DataFrame,
    dim_customers: pl.DataFrame,
) -> pl.DataFrame:
    """Convenience wrapper around FactResolver.resolve_sales"""
    return FactResolver().resolve_sales(sales, dim_products, dim_customers)
