"""
Warehouse Pipeline

Main orchestrator of the full-reload rebuild: cleansers -> dimension builder
-> fact resolver -> quality validation.

Each stage reads complete tables from the store and replaces its destination
table as a whole. An exception in a stage aborts the rest of the run; tables
written by earlier stages are kept as they are, so a failed run may leave the
model partially rebuilt until the next successful run.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.config.logging import run_context, stage_context
from warehouse.quality.validators import (
    ValidationResult,
    collect_tables,
    create_warehouse_validator,
)
from warehouse.storage.models import SOURCE_TABLES, Layer, Table
from warehouse.storage.store import LayerStore
from .cleaners import DataCleaner
from .dimensions import DimensionBuilder
from .facts import FactResolver

logger = structlog.get_logger(__name__)

StageFunc = Callable[[], Tuple[int, Optional[pl.DataFrame]]]


class StageStatus(str, Enum):
    """Outcome of a pipeline stage"""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    """Telemetry of one pipeline stage"""
    stage: str
    layer: Layer
    table: Optional[str]
    status: StageStatus
    input_rows: int = 0
    output_rows: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    error_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class PipelineResult:
    """Result of a full rebuild"""
    run_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    stages: List[StageResult] = field(default_factory=list)
    validation: Optional[ValidationResult] = None

    @property
    def failed_stage(self) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.status == StageStatus.FAILED:
                return stage
        return None

    def stage(self, name: str) -> StageResult:
        for stage in self.stages:
            if stage.stage == name:
                return stage
        raise KeyError(name)

    def to_frame(self) -> pl.DataFrame:
        """Stage telemetry as a DataFrame"""
        return pl.DataFrame(
            {
                "run_id": [self.run_id] * len(self.stages),
                "stage": [s.stage for s in self.stages],
                "layer": [s.layer.value for s in self.stages],
                "table": [s.table for s in self.stages],
                "status": [s.status.value for s in self.stages],
                "input_rows": [s.input_rows for s in self.stages],
                "output_rows": [s.output_rows for s in self.stages],
                "started_at": [s.started_at for s in self.stages],
                "completed_at": [s.completed_at for s in self.stages],
                "duration_seconds": [s.duration_seconds for s in self.stages],
                "error_id": [s.error_id for s in self.stages],
            },
            schema={
                "run_id": pl.Utf8,
                "stage": pl.Utf8,
                "layer": pl.Utf8,
                "table": pl.Utf8,
                "status": pl.Utf8,
                "input_rows": pl.Int64,
                "output_rows": pl.Int64,
                "started_at": pl.Datetime,
                "completed_at": pl.Datetime,
                "duration_seconds": pl.Float64,
                "error_id": pl.Utf8,
            },
        )


@dataclass
class _StageDef:
    name: str
    layer: Layer
    table: Optional[Table]
    func: StageFunc


class WarehousePipeline:
    """
    Full-reload pipeline over a LayerStore.

    The raw layer must already be populated (see BatchLoader). `run` takes no
    parameters: everything is fixed at construction time.

    Example:
        pipeline = WarehousePipeline(store)
        result = pipeline.run()
        if not result.success:
            print(result.failed_stage.error_id)
    """

    def __init__(
        self,
        store: Optional[LayerStore] = None,
        as_of: Optional[date] = None,
        max_workers: Optional[int] = None,
        run_validation: Optional[bool] = None,
    ):
        settings = get_settings()
        self.store = store or LayerStore.from_settings()
        self.as_of = as_of or date.today()
        self.max_workers = max_workers or settings.pipeline.max_workers
        self.run_validation = (
            settings.pipeline.run_validation if run_validation is None else run_validation
        )
        self.cleaner = DataCleaner(as_of=self.as_of)
        self.builder = DimensionBuilder()
        self.resolver = FactResolver()
        self.validation: Optional[ValidationResult] = None
        self.run_id = ""

    # -------------------------------------------------------------------------
    # Stage bodies
    # -------------------------------------------------------------------------

    def _cleanse(self, table: Table) -> StageFunc:
        def stage() -> Tuple[int, pl.DataFrame]:
            raw = self.store.read(Layer.RAW, table)
            return raw.height, self.cleaner.clean_table(table, raw)
        return stage

    def _build_customers(self) -> Tuple[int, pl.DataFrame]:
        customers = self.store.read(Layer.CLEANSED, Table.CRM_CUSTOMERS)
        demographics = self.store.read(Layer.CLEANSED, Table.ERP_DEMOGRAPHICS)
        locations = self.store.read(Layer.CLEANSED, Table.ERP_LOCATIONS)
        return customers.height, self.builder.build_customers(customers, demographics, locations)

    def _build_products(self) -> Tuple[int, pl.DataFrame]:
        products = self.store.read(Layer.CLEANSED, Table.CRM_PRODUCTS)
        categories = self.store.read(Layer.CLEANSED, Table.ERP_CATEGORIES)
        return products.height, self.builder.build_products(products, categories)

    def _resolve_facts(self) -> Tuple[int, pl.DataFrame]:
        sales = self.store.read(Layer.CLEANSED, Table.CRM_SALES)
        dim_products = self.store.read(Layer.DIMENSIONAL, Table.DIM_PRODUCTS)
        dim_customers = self.store.read(Layer.DIMENSIONAL, Table.DIM_CUSTOMERS)
        return sales.height, self.resolver.resolve_sales(sales, dim_products, dim_customers)

    def _validate(self) -> Tuple[int, None]:
        tables = collect_tables(self.store)
        validator = create_warehouse_validator(as_of=self.as_of)
        self.validation = validator.validate(tables)
        return sum(df.height for df in tables.values()), None

    def _phases(self) -> List[List[_StageDef]]:
        """Stages grouped into phases; stages within a phase are independent"""
        phases = [
            [
                _StageDef(f"cleanse_{table.value}", Layer.CLEANSED, table, self._cleanse(table))
                for table in SOURCE_TABLES
            ],
            [
                _StageDef("build_customer_dimension", Layer.DIMENSIONAL, Table.DIM_CUSTOMERS, self._build_customers),
                _StageDef("build_product_dimension", Layer.DIMENSIONAL, Table.DIM_PRODUCTS, self._build_products),
            ],
            [
                _StageDef("resolve_sales_facts", Layer.DIMENSIONAL, Table.FACT_SALES, self._resolve_facts),
            ],
        ]
        if self.run_validation:
            phases.append([_StageDef("validate", Layer.DIMENSIONAL, None, self._validate)])
        return phases

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _run_stage(self, definition: _StageDef) -> StageResult:
        """Execute one stage and write its output; failures are returned, not raised"""
        table_name = definition.table.value if definition.table is not None else None
        with stage_context(self.run_id, definition.name, layer=definition.layer.value, table=table_name):
            return self._execute_stage(definition, table_name)

    def _execute_stage(self, definition: _StageDef, table_name: Optional[str]) -> StageResult:
        started_at = datetime.utcnow()
        start = time.perf_counter()
        logger.info("Stage started")

        try:
            input_rows, output = definition.func()
            if output is not None:
                self.store.write(definition.layer, definition.table, output)
        except Exception as e:
            duration = time.perf_counter() - start
            error_id = f"{definition.name}:{type(e).__name__}"
            logger.error(
                "Stage failed",
                error_id=error_id,
                error=str(e),
                duration_seconds=round(duration, 3),
                exc_info=True,
            )
            return StageResult(
                stage=definition.name,
                layer=definition.layer,
                table=table_name,
                status=StageStatus.FAILED,
                started_at=started_at,
                completed_at=datetime.utcnow(),
                duration_seconds=duration,
                error_id=error_id,
                error_message=str(e),
            )

        duration = time.perf_counter() - start
        output_rows = output.height if output is not None else 0
        logger.info(
            "Stage completed",
            rows_in=input_rows,
            rows_out=output_rows,
            duration_seconds=round(duration, 3),
        )
        return StageResult(
            stage=definition.name,
            layer=definition.layer,
            table=table_name,
            status=StageStatus.COMPLETED,
            input_rows=input_rows,
            output_rows=output_rows,
            started_at=started_at,
            completed_at=datetime.utcnow(),
            duration_seconds=duration,
        )

    def _run_phase(self, phase: List[_StageDef]) -> List[StageResult]:
        if self.max_workers > 1 and len(phase) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                return list(executor.map(self._run_stage, phase))

        results = []
        for definition in phase:
            result = self._run_stage(definition)
            results.append(result)
            if result.status == StageStatus.FAILED:
                break
        return results

    def run(self) -> PipelineResult:
        """
        Rebuild the cleansed and dimensional layers from the raw layer.

        Returns:
            PipelineResult with per-stage telemetry; success is False when a
            stage raised. Data quality defects never fail the run.
        """
        self.run_id = uuid.uuid4().hex
        self.validation = None
        with run_context(self.run_id, as_of=self.as_of.isoformat()):
            return self._rebuild()

    def _rebuild(self) -> PipelineResult:
        started_at = datetime.utcnow()
        start = time.perf_counter()
        logger.info("Starting warehouse rebuild")

        results: List[StageResult] = []
        failed = False
        for phase in self._phases():
            if failed:
                results.extend(
                    StageResult(
                        stage=d.name,
                        layer=d.layer,
                        table=d.table.value if d.table is not None else None,
                        status=StageStatus.SKIPPED,
                    )
                    for d in phase
                )
                continue

            phase_results = self._run_phase(phase)
            results.extend(phase_results)
            failed = any(r.status == StageStatus.FAILED for r in phase_results)

            if failed:
                ran = {r.stage for r in phase_results}
                results.extend(
                    StageResult(
                        stage=d.name,
                        layer=d.layer,
                        table=d.table.value if d.table is not None else None,
                        status=StageStatus.SKIPPED,
                    )
                    for d in phase
                    if d.name not in ran
                )

        duration = time.perf_counter() - start
        pipeline_result = PipelineResult(
            run_id=self.run_id,
            success=not failed,
            started_at=started_at,
            completed_at=datetime.utcnow(),
            duration_seconds=duration,
            stages=results,
            validation=self.validation,
        )

        if failed:
            failure = pipeline_result.failed_stage
            logger.error(
                "Warehouse rebuild failed",
                stage=failure.stage,
                error_id=failure.error_id,
                duration_seconds=round(duration, 3),
            )
        else:
            logger.info(
                "Warehouse rebuild complete",
                stages=len(results),
                duration_seconds=round(duration, 3),
                validation=self.validation.status.value if self.validation else None,
            )

        return pipeline_result
