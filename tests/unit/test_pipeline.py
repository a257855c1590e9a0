"""
Unit Tests - Warehouse Pipeline
"""
import pytest

from warehouse.config.logging import current_context
from warehouse.quality.validators import ValidationStatus
from warehouse.storage.models import SOURCE_TABLES, Layer, Table
from warehouse.storage.store import LayerStore
from warehouse.transformation.transformers import (
    StageStatus,
    WarehousePipeline,
)


def _snapshot(store: LayerStore) -> dict:
    return {
        (layer, name): store.read(layer, name)
        for layer in (Layer.CLEANSED, Layer.DIMENSIONAL)
        for name in store.tables(layer)
    }


class TestWarehousePipeline:
    """Tests for the full rebuild"""

    def test_successful_run(self, loaded_store, as_of):
        result = WarehousePipeline(store=loaded_store, as_of=as_of).run()

        assert result.success
        assert result.failed_stage is None
        assert all(s.status == StageStatus.COMPLETED for s in result.stages)
        assert loaded_store.read(Layer.DIMENSIONAL, Table.FACT_SALES).height == 3

    def test_stage_order(self, loaded_store, as_of):
        result = WarehousePipeline(store=loaded_store, as_of=as_of).run()
        names = [s.stage for s in result.stages]

        assert names[:6] == [f"cleanse_{t}" for t in (
            "crm_customers", "crm_products", "crm_sales",
            "erp_demographics", "erp_locations", "erp_categories",
        )]
        assert names[6:] == [
            "build_customer_dimension",
            "build_product_dimension",
            "resolve_sales_facts",
            "validate",
        ]

    def test_stage_telemetry(self, loaded_store, as_of):
        result = WarehousePipeline(store=loaded_store, as_of=as_of).run()
        customers = result.stage("cleanse_crm_customers")

        assert customers.input_rows == 5
        assert customers.output_rows == 3
        assert customers.duration_seconds >= 0
        assert result.to_frame().height == len(result.stages)

    def test_defects_do_not_fail_run(self, loaded_store, as_of):
        """The orphan sales line is reported, not fatal"""
        result = WarehousePipeline(store=loaded_store, as_of=as_of).run()

        assert result.success
        assert result.validation.status == ValidationStatus.FAILED
        assert not result.validation.check("fact_sales.referential_integrity").passed

    def test_idempotent(self, loaded_store, as_of):
        pipeline = WarehousePipeline(store=loaded_store, as_of=as_of)

        pipeline.run()
        first = _snapshot(loaded_store)
        pipeline.run()
        second = _snapshot(loaded_store)

        assert first.keys() == second.keys()
        for key, df in first.items():
            assert df.equals(second[key]), key

    def test_missing_raw_table_aborts(self, store, raw_tables, as_of):
        """A failed stage skips everything after it and keeps earlier output"""
        for table, df in raw_tables.items():
            if table != Table.CRM_SALES:
                store.write(Layer.RAW, table, df)

        result = WarehousePipeline(store=store, as_of=as_of).run()
        statuses = {s.stage: s.status for s in result.stages}

        assert not result.success
        assert result.failed_stage.stage == "cleanse_crm_sales"
        assert result.failed_stage.error_id == "cleanse_crm_sales:MissingTableError"
        assert statuses["cleanse_crm_customers"] == StageStatus.COMPLETED
        assert statuses["cleanse_erp_demographics"] == StageStatus.SKIPPED
        assert statuses["resolve_sales_facts"] == StageStatus.SKIPPED
        assert store.exists(Layer.CLEANSED, Table.CRM_CUSTOMERS)
        assert not store.exists(Layer.DIMENSIONAL, Table.FACT_SALES)

    def test_failure_keeps_previous_output(self, loaded_store, as_of):
        """No rollback: tables from the last good run stay in place"""
        WarehousePipeline(store=loaded_store, as_of=as_of).run()
        previous = loaded_store.read(Layer.DIMENSIONAL, Table.DIM_CUSTOMERS)

        broken = loaded_store.read(Layer.RAW, Table.CRM_CUSTOMERS).drop("customer_id")
        loaded_store.write(Layer.RAW, Table.CRM_CUSTOMERS, broken)
        result = WarehousePipeline(store=loaded_store, as_of=as_of).run()

        assert not result.success
        assert result.failed_stage.stage == "cleanse_crm_customers"
        assert loaded_store.read(Layer.DIMENSIONAL, Table.DIM_CUSTOMERS).equals(previous)

    def test_parallel_cleansing(self, loaded_store, as_of):
        result = WarehousePipeline(store=loaded_store, as_of=as_of, max_workers=4).run()

        assert result.success
        assert loaded_store.read(Layer.DIMENSIONAL, Table.DIM_PRODUCTS)["product_key"].to_list() == [1, 2]

    def test_validation_can_be_disabled(self, loaded_store, as_of):
        result = WarehousePipeline(store=loaded_store, as_of=as_of, run_validation=False).run()

        assert result.validation is None
        assert "validate" not in [s.stage for s in result.stages]

    def test_persistent_store(self, tmp_path, raw_tables, as_of):
        paths = {layer.value: tmp_path / layer.value for layer in Layer}
        store = LayerStore(layer_paths=paths)
        for table, df in raw_tables.items():
            store.write(Layer.RAW, table, df)

        result = WarehousePipeline(store=store, as_of=as_of).run()
        reopened = LayerStore(layer_paths=paths)

        assert result.success
        assert (tmp_path / "dimensional" / "fact_sales.parquet").exists()
        assert reopened.read(Layer.DIMENSIONAL, Table.FACT_SALES).equals(
            store.read(Layer.DIMENSIONAL, Table.FACT_SALES)
        )

    def test_stage_logging_context(self, loaded_store, as_of, monkeypatch):
        """Events logged inside a stage carry the run and stage identifiers"""
        pipeline = WarehousePipeline(store=loaded_store, as_of=as_of, max_workers=1)
        build_products = pipeline.builder.build_products
        seen = {}

        def recording(products, categories):
            seen.update(current_context())
            return build_products(products, categories)

        monkeypatch.setattr(pipeline.builder, "build_products", recording)
        result = pipeline.run()

        assert seen == {
            "run_id": result.run_id,
            "as_of": as_of.isoformat(),
            "stage": "build_product_dimension",
            "layer": "dimensional",
            "table": "dim_products",
        }
        assert current_context() == {}

    def test_stage_logging_context_on_pool_threads(self, loaded_store, as_of, monkeypatch):
        pipeline = WarehousePipeline(store=loaded_store, as_of=as_of, max_workers=4)
        clean_table = pipeline.cleaner.clean_table
        seen = []

        def recording(table, df):
            seen.append(current_context())
            return clean_table(table, df)

        monkeypatch.setattr(pipeline.cleaner, "clean_table", recording)
        result = pipeline.run()

        assert len(seen) == 6
        assert {ctx["run_id"] for ctx in seen} == {result.run_id}
        assert {ctx["stage"] for ctx in seen} == {f"cleanse_{t.value}" for t in SOURCE_TABLES}
