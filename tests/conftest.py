"""
Test Suite Configuration
"""
from datetime import date

import pytest
import polars as pl

from warehouse.config import Settings
from warehouse.storage.models import RAW_SCHEMAS, Layer, Table
from warehouse.storage.store import LayerStore


AS_OF = date(2024, 1, 1)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def as_of() -> date:
    """Reference date for birthdate plausibility"""
    return AS_OF


@pytest.fixture
def store() -> LayerStore:
    """In-memory layer store"""
    return LayerStore()


@pytest.fixture
def raw_customers_df() -> pl.DataFrame:
    """CRM customers: a duplicated id, padded names, lowercase codes, an id-less row"""
    return pl.DataFrame(
        {
            "customer_id": [7, 7, 8, 9, None],
            "customer_number": ["AW00000007", "AW00000007", "AW00000008", "AW00000009", "AW00000099"],
            "first_name": ["Jon", "  Jon ", "Eugene", " Ruben", "Ghost"],
            "last_name": ["Yang", "Yang  ", "Huang", "Torres", "Row"],
            "marital_status": ["S", "m", "S", None, "M"],
            "gender": ["M", "f", None, "M", "F"],
            "create_date": ["2020-01-01", "2021-06-01", "2021-01-02", "2021-01-03", None],
        },
        schema=RAW_SCHEMAS[Table.CRM_CUSTOMERS],
    )


@pytest.fixture
def raw_products_df() -> pl.DataFrame:
    """CRM products: two versions of P1, a null cost and an unmapped line"""
    return pl.DataFrame(
        {
            "product_id": [1, 2, 3],
            "product_number": ["CO-RF-P1", "CO-RF-P1", "AC-HE-HL-U509"],
            "product_name": ["Frame", "Frame", " Helmet "],
            "cost": [10.0, None, 34.0],
            "product_line": ["r", " R", "X"],
            "start_date": ["2020-01-01", "2021-01-01", "2019-07-01"],
        },
        schema=RAW_SCHEMAS[Table.CRM_PRODUCTS],
    )


@pytest.fixture
def raw_sales_df() -> pl.DataFrame:
    """CRM sales lines: one repairable amount, one bad date key, one orphan line"""
    return pl.DataFrame(
        {
            "order_number": ["SO1", "SO2", "SO3"],
            "product_number": ["P1", "HL-U509", "NOPE"],
            "customer_id": [7, 8, 404],
            "order_date": [20231201, 20231301, 20230105],
            "ship_date": [20231208, 20231210, 20230112],
            "due_date": [20231213, 20231215, 20230117],
            "sales_amount": [0.0, 34.99, 20.0],
            "quantity": [5, 1, 1],
            "unit_price": [20.0, 34.99, 20.0],
        },
        schema=RAW_SCHEMAS[Table.CRM_SALES],
    )


@pytest.fixture
def raw_demographics_df() -> pl.DataFrame:
    """ERP demographics: prefixed ids and a future birthdate"""
    return pl.DataFrame(
        {
            "customer_number": ["NASAW00000007", "AW00000008", "NASAW00000009"],
            "birthdate": ["1971-10-06", "2030-05-05", "1980-02-29"],
            "gender": ["Female", "Male", " "],
        },
        schema=RAW_SCHEMAS[Table.ERP_DEMOGRAPHICS],
    )


@pytest.fixture
def raw_locations_df() -> pl.DataFrame:
    """ERP locations: hyphenated ids and raw country codes"""
    return pl.DataFrame(
        {
            "customer_number": ["AW-00000007", "AW-00000008", "AW-00000009"],
            "country": ["DE", " USA ", ""],
        },
        schema=RAW_SCHEMAS[Table.ERP_LOCATIONS],
    )


@pytest.fixture
def raw_categories_df() -> pl.DataFrame:
    """ERP categories, one label padded"""
    return pl.DataFrame(
        {
            "category_id": ["CO_RF", "AC_HE"],
            "category": ["Components", "Accessories"],
            "subcategory": ["Road Frames", "Helmets "],
            "maintenance": ["Yes", "No"],
        },
        schema=RAW_SCHEMAS[Table.ERP_CATEGORIES],
    )


@pytest.fixture
def raw_tables(
    raw_customers_df,
    raw_products_df,
    raw_sales_df,
    raw_demographics_df,
    raw_locations_df,
    raw_categories_df,
) -> dict:
    """All six raw extracts keyed by table"""
    return {
        Table.CRM_CUSTOMERS: raw_customers_df,
        Table.CRM_PRODUCTS: raw_products_df,
        Table.CRM_SALES: raw_sales_df,
        Table.ERP_DEMOGRAPHICS: raw_demographics_df,
        Table.ERP_LOCATIONS: raw_locations_df,
        Table.ERP_CATEGORIES: raw_categories_df,
    }


@pytest.fixture
def loaded_store(store, raw_tables) -> LayerStore:
    """In-memory store with the raw layer populated"""
    for table, df in raw_tables.items():
        store.write(Layer.RAW, table, df)
    return store
