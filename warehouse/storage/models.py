"""
Table Models - Layered Star Schema

Declares every table of the warehouse as a polars schema, grouped by layer:

Raw layer (as extracted from CRM / ERP):
- crm_customers, crm_products, crm_sales
- erp_demographics, erp_locations, erp_categories

Cleansed layer: the same six tables with canonical types and enumerations.

Dimensional layer:
- dim_customers: conformed customer dimension
- dim_products: current product versions with category attributes
- fact_sales: sales order lines keyed by the two dimensions
"""

from enum import Enum
from typing import Dict, List

import polars as pl


class Layer(str, Enum):
    """Storage layers, in data-flow order"""
    RAW = "raw"
    CLEANSED = "cleansed"
    DIMENSIONAL = "dimensional"


class Table(str, Enum):
    """Table names shared by the raw and cleansed layers plus the star schema"""
    CRM_CUSTOMERS = "crm_customers"
    CRM_PRODUCTS = "crm_products"
    CRM_SALES = "crm_sales"
    ERP_DEMOGRAPHICS = "erp_demographics"
    ERP_LOCATIONS = "erp_locations"
    ERP_CATEGORIES = "erp_categories"
    DIM_CUSTOMERS = "dim_customers"
    DIM_PRODUCTS = "dim_products"
    FACT_SALES = "fact_sales"


SOURCE_TABLES: List[Table] = [
    Table.CRM_CUSTOMERS,
    Table.CRM_PRODUCTS,
    Table.CRM_SALES,
    Table.ERP_DEMOGRAPHICS,
    Table.ERP_LOCATIONS,
    Table.ERP_CATEGORIES,
]


# =============================================================================
# RAW LAYER
# =============================================================================

# Dates stay text in the raw layer (except the YYYYMMDD sales keys); the
# cleansers own the conversion.
RAW_SCHEMAS: Dict[Table, Dict[str, pl.DataType]] = {
    Table.CRM_CUSTOMERS: {
        "customer_id": pl.Int64,
        "customer_number": pl.Utf8,
        "first_name": pl.Utf8,
        "last_name": pl.Utf8,
        "marital_status": pl.Utf8,
        "gender": pl.Utf8,
        "create_date": pl.Utf8,
    },
    Table.CRM_PRODUCTS: {
        "product_id": pl.Int64,
        "product_number": pl.Utf8,
        "product_name": pl.Utf8,
        "cost": pl.Float64,
        "product_line": pl.Utf8,
        "start_date": pl.Utf8,
    },
    Table.CRM_SALES: {
        "order_number": pl.Utf8,
        "product_number": pl.Utf8,
        "customer_id": pl.Int64,
        "order_date": pl.Int64,
        "ship_date": pl.Int64,
        "due_date": pl.Int64,
        "sales_amount": pl.Float64,
        "quantity": pl.Int64,
        "unit_price": pl.Float64,
    },
    Table.ERP_DEMOGRAPHICS: {
        "customer_number": pl.Utf8,
        "birthdate": pl.Utf8,
        "gender": pl.Utf8,
    },
    Table.ERP_LOCATIONS: {
        "customer_number": pl.Utf8,
        "country": pl.Utf8,
    },
    Table.ERP_CATEGORIES: {
        "category_id": pl.Utf8,
        "category": pl.Utf8,
        "subcategory": pl.Utf8,
        "maintenance": pl.Utf8,
    },
}


# =============================================================================
# CLEANSED LAYER
# =============================================================================

CLEANSED_SCHEMAS: Dict[Table, Dict[str, pl.DataType]] = {
    Table.CRM_CUSTOMERS: {
        "customer_id": pl.Int64,
        "customer_number": pl.Utf8,
        "first_name": pl.Utf8,
        "last_name": pl.Utf8,
        "marital_status": pl.Utf8,
        "gender": pl.Utf8,
        "create_date": pl.Date,
    },
    Table.CRM_PRODUCTS: {
        "product_id": pl.Int64,
        "category_id": pl.Utf8,
        "product_number": pl.Utf8,
        "product_name": pl.Utf8,
        "cost": pl.Float64,
        "product_line": pl.Utf8,
        "start_date": pl.Date,
        "end_date": pl.Date,
    },
    Table.CRM_SALES: {
        "order_number": pl.Utf8,
        "product_number": pl.Utf8,
        "customer_id": pl.Int64,
        "order_date": pl.Date,
        "ship_date": pl.Date,
        "due_date": pl.Date,
        "sales_amount": pl.Float64,
        "quantity": pl.Int64,
        "unit_price": pl.Float64,
    },
    Table.ERP_DEMOGRAPHICS: {
        "customer_number": pl.Utf8,
        "birthdate": pl.Date,
        "gender": pl.Utf8,
    },
    Table.ERP_LOCATIONS: {
        "customer_number": pl.Utf8,
        "country": pl.Utf8,
    },
    Table.ERP_CATEGORIES: {
        "category_id": pl.Utf8,
        "category": pl.Utf8,
        "subcategory": pl.Utf8,
        "maintenance": pl.Utf8,
    },
}


# =============================================================================
# DIMENSIONAL LAYER
# =============================================================================

DIMENSIONAL_SCHEMAS: Dict[Table, Dict[str, pl.DataType]] = {
    Table.DIM_CUSTOMERS: {
        "customer_key": pl.Int64,
        "customer_id": pl.Int64,
        "customer_number": pl.Utf8,
        "first_name": pl.Utf8,
        "last_name": pl.Utf8,
        "country": pl.Utf8,
        "marital_status": pl.Utf8,
        "gender": pl.Utf8,
        "birthdate": pl.Date,
        "create_date": pl.Date,
    },
    Table.DIM_PRODUCTS: {
        "product_key": pl.Int64,
        "product_id": pl.Int64,
        "product_number": pl.Utf8,
        "product_name": pl.Utf8,
        "category_id": pl.Utf8,
        "category": pl.Utf8,
        "subcategory": pl.Utf8,
        "maintenance": pl.Utf8,
        "cost": pl.Float64,
        "product_line": pl.Utf8,
        "start_date": pl.Date,
    },
    Table.FACT_SALES: {
        "order_number": pl.Utf8,
        "product_key": pl.Int64,
        "customer_key": pl.Int64,
        "order_date": pl.Date,
        "ship_date": pl.Date,
        "due_date": pl.Date,
        "sales_amount": pl.Float64,
        "quantity": pl.Int64,
        "unit_price": pl.Float64,
    },
}


def empty_frame(schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    """Zero-row DataFrame with the given schema"""
    return pl.DataFrame(schema=schema)


def conform(df: pl.DataFrame, schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    """
    Project a frame onto a declared schema.

    Columns are selected in schema order and cast to the declared types;
    columns absent from the frame are added as nulls. Extra columns are dropped.
    """
    return df.select([
        (pl.col(name) if name in df.columns else pl.lit(None)).cast(dtype).alias(name)
        for name, dtype in schema.items()
    ])
