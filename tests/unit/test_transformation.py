"""
Unit Tests - Data Transformation
"""
from datetime import date

import pytest
import polars as pl

from warehouse.storage.models import CLEANSED_SCHEMAS, RAW_SCHEMAS, Table
from warehouse.transformation.cleaners import DataCleaner, clean_dataframe


class TestDataCleaner:
    """Tests for DataCleaner helpers"""

    def test_trim_strings(self):
        """Test string trimming"""
        cleaner = DataCleaner()
        df = pl.DataFrame({
            "name": ["  John  ", "Jane", "  Bob"],
            "city": [" Berlin ", "Paris", "Rome "],
        })

        result = cleaner._trim_strings(df)

        assert result["name"].to_list() == ["John", "Jane", "Bob"]
        assert result["city"].to_list() == ["Berlin", "Paris", "Rome"]

    def test_keep_latest_prefers_dated_rows(self):
        """Null dates lose; equal dates keep the first ingested row"""
        cleaner = DataCleaner()
        df = pl.DataFrame({
            "id": [1, 1, 1, 2, 2],
            "created": [date(2020, 1, 1), None, date(2020, 1, 1), date(2019, 1, 1), date(2018, 1, 1)],
            "tag": ["first", "undated", "second", "newer", "older"],
        })

        result = cleaner._keep_latest(df, key="id", order_by="created").sort("id")

        assert result["tag"].to_list() == ["first", "newer"]

    def test_date_key_parsing(self):
        """Zero, short and impossible keys become null"""
        df = pl.DataFrame({"order_date": [20231201, 0, 2023120, 20231301, 20240229]})

        result = df.select(DataCleaner._date_key_expr("order_date"))

        assert result["order_date"].to_list() == [
            date(2023, 12, 1),
            None,
            None,
            None,
            date(2024, 2, 29),
        ]


class TestCleanCustomers:
    """Tests for CRM customer cleansing"""

    def test_latest_record_wins(self, raw_customers_df):
        """Customer 7 keeps its 2021 record: married, female, trimmed"""
        result = DataCleaner().clean_customers(raw_customers_df)
        row = result.filter(pl.col("customer_id") == 7).row(0, named=True)

        assert row["marital_status"] == "Married"
        assert row["gender"] == "Female"
        assert row["first_name"] == "Jon"
        assert row["last_name"] == "Yang"
        assert row["create_date"] == date(2021, 6, 1)

    def test_same_day_latest_timestamp_wins(self):
        """Two records created on one day are ordered by time of day"""
        raw = pl.DataFrame(
            {
                "customer_id": [7, 7, 8],
                "customer_number": ["AW00000007", "AW00000007", "AW00000008"],
                "first_name": ["late", "early", "only"],
                "last_name": ["Yang", "Yang", "Huang"],
                "marital_status": ["M", "S", "S"],
                "gender": ["F", "M", "M"],
                "create_date": ["2023-06-01 17:00:00", "2023-06-01 08:00:00", "2023-06-02"],
            },
            schema=RAW_SCHEMAS[Table.CRM_CUSTOMERS],
        )

        result = DataCleaner().clean_customers(raw).sort("customer_id")

        assert result["first_name"].to_list() == ["late", "only"]
        assert result["create_date"].to_list() == [date(2023, 6, 1), date(2023, 6, 2)]

    def test_same_day_order_does_not_depend_on_ingestion(self):
        """The later timestamp wins even when it was ingested first"""
        raw = pl.DataFrame(
            {
                "customer_id": [7, 7],
                "customer_number": ["AW00000007", "AW00000007"],
                "first_name": ["early", "late"],
                "last_name": ["Yang", "Yang"],
                "marital_status": ["S", "M"],
                "gender": ["M", "F"],
                "create_date": ["2023-06-01T08:00:00", "2023-06-01T17:00:00"],
            },
            schema=RAW_SCHEMAS[Table.CRM_CUSTOMERS],
        )

        row = DataCleaner().clean_customers(raw).row(0, named=True)

        assert row["first_name"] == "late"
        assert row["marital_status"] == "Married"

    def test_one_row_per_customer(self, raw_customers_df):
        """Duplicates are dropped along with rows lacking an id"""
        cleaner = DataCleaner()
        result = cleaner.clean_customers(raw_customers_df)

        assert result["customer_id"].to_list() == [7, 8, 9]
        assert result["customer_id"].n_unique() == result.height
        assert cleaner.stats["crm_customers"].duplicates_removed == 1
        assert cleaner.stats["crm_customers"].rows_rejected == 1

    def test_unmapped_codes_become_unknown(self, raw_customers_df):
        """Null codes map to Unknown instead of raising"""
        result = DataCleaner().clean_customers(raw_customers_df).sort("customer_id")

        assert result["gender"].to_list() == ["Female", "Unknown", "Male"]
        assert result["marital_status"].to_list() == ["Married", "Single", "Unknown"]

    def test_schema(self, raw_customers_df):
        """Output matches the cleansed schema"""
        result = DataCleaner().clean_customers(raw_customers_df)
        assert result.schema == pl.Schema(CLEANSED_SCHEMAS[Table.CRM_CUSTOMERS])


class TestCleanProducts:
    """Tests for CRM product cleansing"""

    def test_validity_ranges(self, raw_products_df):
        """P1 starts 2020-01-01 and 2021-01-01: first version closes the day before"""
        result = DataCleaner().clean_products(raw_products_df)
        p1 = result.filter(pl.col("product_number") == "P1").sort("start_date")

        assert p1["end_date"].to_list() == [date(2020, 12, 31), None]

    def test_composite_key_split(self, raw_products_df):
        """Category prefix is split off and normalized"""
        result = DataCleaner().clean_products(raw_products_df).sort("product_id")

        assert result["category_id"].to_list() == ["CO_RF", "CO_RF", "AC_HE"]
        assert result["product_number"].to_list() == ["P1", "P1", "HL-U509"]

    def test_cost_and_line(self, raw_products_df):
        """Null cost becomes zero; lines are mapped case-insensitively"""
        result = DataCleaner().clean_products(raw_products_df).sort("product_id")

        assert result["cost"].to_list() == [10.0, 0.0, 34.0]
        assert result["product_line"].to_list() == ["Road", "Road", "Unknown"]

    def test_same_start_date_collapses(self):
        """Versions sharing a start date keep the highest product id"""
        raw = pl.DataFrame(
            {
                "product_id": [1, 2, 3],
                "product_number": ["AC-HE-X", "AC-HE-X", "AC-HE-X"],
                "product_name": ["a", "b", "c"],
                "cost": [1.0, 2.0, 3.0],
                "product_line": ["M", "M", "M"],
                "start_date": ["2020-01-01", "2020-01-01", "2020-06-01"],
            },
            schema=RAW_SCHEMAS[Table.CRM_PRODUCTS],
        )

        result = DataCleaner().clean_products(raw)

        assert result["product_id"].to_list() == [2, 3]
        assert result["end_date"].to_list() == [date(2020, 5, 31), None]


class TestCleanSales:
    """Tests for CRM sales cleansing"""

    def test_amount_repair(self):
        """{0, 5, 20} becomes {100, 5, 20}"""
        raw = pl.DataFrame(
            {
                "order_number": ["SO1"],
                "product_number": ["P1"],
                "customer_id": [7],
                "order_date": [20231201],
                "ship_date": [20231208],
                "due_date": [20231213],
                "sales_amount": [0.0],
                "quantity": [5],
                "unit_price": [20.0],
            },
            schema=RAW_SCHEMAS[Table.CRM_SALES],
        )

        row = DataCleaner().clean_sales(raw).row(0, named=True)

        assert row["sales_amount"] == 100.0
        assert row["quantity"] == 5
        assert row["unit_price"] == 20.0

    def test_price_repair_reads_original_amount(self):
        """Price is derived from the raw amount, not a repaired one"""
        raw = pl.DataFrame(
            {
                "order_number": ["SO1", "SO2"],
                "product_number": ["P1", "P1"],
                "customer_id": [7, 7],
                "order_date": [20231201, 20231201],
                "ship_date": [20231208, 20231208],
                "due_date": [20231213, 20231213],
                "sales_amount": [50.0, 30.0],
                "quantity": [2, 3],
                "unit_price": [None, -10.0],
            },
            schema=RAW_SCHEMAS[Table.CRM_SALES],
        )

        result = DataCleaner().clean_sales(raw)

        assert result["unit_price"].to_list() == [25.0, 10.0]
        # |price| is used for the expected amount, so -10 * 3 still matches 30
        assert result["sales_amount"].to_list() == [50.0, 30.0]

    def test_amount_within_tolerance_kept(self):
        """Only differences above amount_tolerance trigger a repair"""
        raw = pl.DataFrame(
            {
                "order_number": ["SO1", "SO2"],
                "product_number": ["P1", "P1"],
                "customer_id": [7, 7],
                "order_date": [20231201, 20231201],
                "ship_date": [20231208, 20231208],
                "due_date": [20231213, 20231213],
                "sales_amount": [30.003, 30.01],
                "quantity": [3, 3],
                "unit_price": [10.0, 10.0],
            },
            schema=RAW_SCHEMAS[Table.CRM_SALES],
        )

        cleaner = DataCleaner(amount_tolerance=0.005)
        result = cleaner.clean_sales(raw)

        assert result["sales_amount"].to_list() == [30.0, 30.0]
        assert cleaner.stats["crm_sales"].values_repaired == 1

    def test_invalid_date_key(self, raw_sales_df):
        """20231301 is not a calendar date"""
        result = DataCleaner().clean_sales(raw_sales_df)

        assert result["order_date"].to_list() == [date(2023, 12, 1), None, date(2023, 1, 5)]

    def test_row_count_preserved(self, raw_sales_df):
        """Sales lines are never dropped"""
        cleaner = DataCleaner()
        result = cleaner.clean_sales(raw_sales_df)

        assert result.height == raw_sales_df.height
        assert cleaner.stats["crm_sales"].values_repaired == 1


class TestCleanErp:
    """Tests for ERP cleansing"""

    def test_demographics(self, raw_demographics_df, as_of):
        """Prefix stripped, future birthdates nulled, gender mapped"""
        result = DataCleaner(as_of=as_of).clean_demographics(raw_demographics_df)

        assert result["customer_number"].to_list() == ["AW00000007", "AW00000008", "AW00000009"]
        assert result["birthdate"].to_list() == [date(1971, 10, 6), None, date(1980, 2, 29)]
        assert result["gender"].to_list() == ["Female", "Male", "Unknown"]

    def test_locations(self, raw_locations_df):
        """Separators removed and countries expanded"""
        result = DataCleaner().clean_locations(raw_locations_df)

        assert result["customer_number"].to_list() == ["AW00000007", "AW00000008", "AW00000009"]
        assert result["country"].to_list() == ["Germany", "United States", "Unknown"]

    def test_categories_pass_through(self, raw_categories_df):
        """Categories are copied unchanged, padding included"""
        result = DataCleaner().clean_categories(raw_categories_df)
        assert result.equals(raw_categories_df)


class TestCleanDataframe:
    """Tests for the module-level convenience function"""

    def test_dispatch_by_name(self, raw_locations_df):
        result = clean_dataframe(raw_locations_df, "erp_locations")
        assert result["country"][0] == "Germany"

    def test_unknown_table(self, raw_locations_df):
        with pytest.raises(ValueError):
            clean_dataframe(raw_locations_df, "dim_customers")
