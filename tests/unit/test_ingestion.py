"""
Unit Tests - Ingestion and Synthetic Extracts
"""
from datetime import date

import pytest
import polars as pl

from warehouse.data.generators import RawExtractGenerator
from warehouse.ingestion.batch_loader import (
    BatchFileConfig,
    BatchLoader,
    FileFormat,
    LoadStatus,
    SchemaValidationError,
)
from warehouse.storage.models import RAW_SCHEMAS, SOURCE_TABLES, Layer, Table
from warehouse.transformation.transformers import WarehousePipeline


FILES = {
    "crm_customers": "crm/customers.csv",
    "crm_products": "crm/products.csv",
    "crm_sales": "crm/sales.csv",
    "erp_demographics": "erp/demographics.csv",
    "erp_locations": "erp/locations.csv",
    "erp_categories": "erp/categories.csv",
}


class TestBatchLoader:
    """Tests for BatchLoader"""

    def test_load_csv_keeps_raw_values(self, tmp_path, store):
        path = tmp_path / "locations.csv"
        path.write_text("customer_number,country\nAW-00000007,  DE \nAW-00000008,\n")

        result = BatchLoader(store=store).load(BatchFileConfig(path, Table.ERP_LOCATIONS))
        raw = store.read(Layer.RAW, Table.ERP_LOCATIONS)

        assert result.status == LoadStatus.COMPLETED
        assert result.rows_loaded == 2
        assert result.file_hash is not None
        assert raw["country"].to_list() == ["  DE ", None]

    def test_declared_types(self, tmp_path, store):
        path = tmp_path / "sales.csv"
        path.write_text(
            "order_number,product_number,customer_id,order_date,ship_date,due_date,sales_amount,quantity,unit_price\n"
            "SO1,P1,7,20231201,20231208,20231213,100,5,20\n"
            "SO2,P1,7,0,20231208,20231213,,1,\n"
        )

        BatchLoader(store=store).load(BatchFileConfig(path, Table.CRM_SALES))
        raw = store.read(Layer.RAW, Table.CRM_SALES)

        assert raw.schema == pl.Schema(RAW_SCHEMAS[Table.CRM_SALES])
        assert raw["order_date"].to_list() == [20231201, 0]
        assert raw["sales_amount"].to_list() == [100.0, None]

    def test_missing_column_fails(self, tmp_path, store):
        path = tmp_path / "locations.csv"
        path.write_text("customer_number\nAW-1\n")

        result = BatchLoader(store=store).load(BatchFileConfig(path, Table.ERP_LOCATIONS))

        assert result.status == LoadStatus.FAILED
        assert "country" in result.error_message
        assert not store.exists(Layer.RAW, Table.ERP_LOCATIONS)

    def test_load_frame_raises(self, store):
        with pytest.raises(SchemaValidationError) as exc_info:
            BatchLoader(store=store).load_frame(pl.DataFrame({"customer_number": ["x"]}), "erp_locations")

        assert exc_info.value.table == "erp_locations"

    def test_missing_file(self, tmp_path, store):
        result = BatchLoader(store=store).load(BatchFileConfig(tmp_path / "nope.csv", Table.CRM_SALES))

        assert result.status == LoadStatus.FAILED

    def test_format_from_suffix(self, tmp_path):
        config = BatchFileConfig(tmp_path / "x.parquet", "crm_sales")

        assert config.file_format == FileFormat.PARQUET
        assert config.table == Table.CRM_SALES


class TestRawExtractGenerator:
    """Tests for the synthetic extracts"""

    @pytest.fixture
    def extracts(self) -> dict:
        return RawExtractGenerator(seed=7).generate_all(
            n_customers=60, n_products=12, n_sales=300, as_of=date(2024, 1, 1)
        )

    def test_all_tables_with_raw_schema(self, extracts):
        assert set(extracts) == {t.value for t in SOURCE_TABLES}
        for name, df in extracts.items():
            assert df.schema == pl.Schema(RAW_SCHEMAS[Table(name)])

    def test_seeded(self):
        first = RawExtractGenerator(seed=3).generate_customers(20)
        second = RawExtractGenerator(seed=3).generate_customers(20)
        assert first.equals(second)

    def test_contains_duplicates(self, extracts):
        customers = extracts["crm_customers"].drop_nulls("customer_id")
        assert customers["customer_id"].n_unique() < customers.height

    def test_round_trip_through_pipeline(self, tmp_path, store):
        generator = RawExtractGenerator(seed=11)
        extracts = generator.generate_all(n_customers=40, n_products=10, n_sales=200, as_of=date(2024, 1, 1))
        generator.save(extracts, str(tmp_path))

        results = BatchLoader(store=store).load_sources(tmp_path, files=FILES)
        pipeline = WarehousePipeline(store=store, as_of=date(2024, 1, 1)).run()
        facts = store.read(Layer.DIMENSIONAL, Table.FACT_SALES)

        assert all(r.status == LoadStatus.COMPLETED for r in results)
        assert pipeline.success
        assert facts.height == 200
        assert store.read(Layer.DIMENSIONAL, Table.DIM_CUSTOMERS)["customer_key"].to_list() == list(range(1, 41))
        assert pipeline.validation.check("dim_products.product_key.gaps").passed
