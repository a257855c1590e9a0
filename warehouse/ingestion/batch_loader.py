"""
Batch Extract Loader

Loads the CRM and ERP extracts into the raw layer.
Supports:
- CSV and Parquet extracts
- Declared raw schemas with required-column validation
- File hashing for load auditing
- Whole-table replacement of the raw layer
"""

import hashlib
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import polars as pl
import structlog
from pydantic import BaseModel

from warehouse.config import get_settings
from warehouse.storage.models import RAW_SCHEMAS, SOURCE_TABLES, Layer, Table, conform
from warehouse.storage.store import LayerStore

logger = structlog.get_logger(__name__)


class SchemaValidationError(ValueError):
    """Raised when an extract does not carry the declared raw columns"""

    def __init__(self, table: str, errors: List[str]):
        self.table = table
        self.errors = errors
        super().__init__(f"Schema validation failed for {table}: {errors}")


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    PARQUET = "parquet"


class LoadStatus(str, Enum):
    """Batch load status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchFileConfig:
    """Configuration for loading one extract"""
    file_path: Union[str, Path]
    table: Table
    file_format: Optional[FileFormat] = None
    delimiter: str = ","
    encoding: str = "utf8"
    skip_rows: int = 0
    null_values: List[str] = field(default_factory=lambda: ["", "NULL", "null"])

    def __post_init__(self):
        self.file_path = Path(self.file_path)
        self.table = Table(self.table)
        if self.file_format is None:
            self.file_format = FileFormat(self.file_path.suffix.lstrip(".").lower())


class LoadResult(BaseModel):
    """Result of a batch load operation"""
    file_path: str
    table: str
    status: LoadStatus
    rows_loaded: int = 0
    error_message: Optional[str] = None
    load_duration_seconds: float = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    file_hash: Optional[str] = None


class BatchLoader:
    """
    Raw layer loader.

    Each load replaces the target raw table as a whole. Values are stored as
    extracted: no trimming, no recoding, no metadata columns.

    Example:
        loader = BatchLoader(store)
        result = loader.load(BatchFileConfig("sources/crm/sales.csv", Table.CRM_SALES))
        results = loader.load_sources("sources/")
    """

    def __init__(self, store: Optional[LayerStore] = None, enable_validation: bool = True):
        self.store = store or LayerStore.from_settings()
        self.enable_validation = enable_validation

    def _compute_file_hash(self, file_path: Path) -> str:
        """Compute MD5 hash of an extract for the load audit"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()

    def _read_csv(self, config: BatchFileConfig) -> pl.DataFrame:
        """Read every column as text; load_frame casts to the raw schema"""
        return pl.read_csv(
            config.file_path,
            separator=config.delimiter,
            encoding=config.encoding,
            skip_rows=config.skip_rows,
            null_values=config.null_values,
            infer_schema_length=0,
        )

    def _read_parquet(self, config: BatchFileConfig) -> pl.DataFrame:
        return pl.read_parquet(config.file_path)

    def _read_file(self, config: BatchFileConfig) -> pl.DataFrame:
        """Read file based on format"""
        readers = {
            FileFormat.CSV: self._read_csv,
            FileFormat.PARQUET: self._read_parquet,
        }
        reader = readers.get(config.file_format)
        if not reader:
            raise ValueError(f"Unsupported file format: {config.file_format}")
        return reader(config)

    def _validate_schema(self, df: pl.DataFrame, table: Table) -> List[str]:
        """Required columns of the declared raw schema that the extract lacks"""
        return [
            f"Missing column: {column}"
            for column in RAW_SCHEMAS[table]
            if column not in df.columns
        ]

    def load_frame(self, df: pl.DataFrame, table: Union[Table, str]) -> pl.DataFrame:
        """Validate an in-memory extract and write it to the raw layer"""
        table = Table(table)
        if table not in SOURCE_TABLES:
            raise ValueError(f"{table.value} is not a raw source table")

        if self.enable_validation:
            errors = self._validate_schema(df, table)
            if errors:
                raise SchemaValidationError(table.value, errors)

        raw = conform(df, RAW_SCHEMAS[table])
        self.store.write(Layer.RAW, table, raw)
        return raw

    def load(self, config: BatchFileConfig) -> LoadResult:
        """
        Load one extract into the raw layer.

        Args:
            config: Batch file configuration

        Returns:
            LoadResult: Result of the load operation; errors are reported here
            and the previous raw table is left untouched.
        """
        file_path = Path(config.file_path)
        started_at = datetime.utcnow()
        start = time.perf_counter()

        result = LoadResult(
            file_path=str(file_path),
            table=config.table.value,
            status=LoadStatus.RUNNING,
            started_at=started_at,
        )

        logger.info("Starting batch load", file=str(file_path), table=config.table.value)

        try:
            if not file_path.exists():
                raise FileNotFoundError(f"File not found: {file_path}")

            result.file_hash = self._compute_file_hash(file_path)
            df = self._read_file(config)
            raw = self.load_frame(df, config.table)

            result.status = LoadStatus.COMPLETED
            result.rows_loaded = raw.height
            result.completed_at = datetime.utcnow()
            result.load_duration_seconds = time.perf_counter() - start

            logger.info(
                "Batch load completed",
                table=config.table.value,
                rows_loaded=raw.height,
                duration_seconds=round(result.load_duration_seconds, 3),
            )

        except (OSError, ValueError, pl.exceptions.PolarsError) as e:
            result.status = LoadStatus.FAILED
            result.error_message = str(e)
            result.completed_at = datetime.utcnow()
            result.load_duration_seconds = time.perf_counter() - start

            logger.error(
                "Batch load failed",
                error=str(e),
                file=str(file_path),
                table=config.table.value,
            )

        return result

    def load_sources(
        self,
        source_dir: Optional[Union[str, Path]] = None,
        files: Optional[Dict[str, str]] = None,
    ) -> List[LoadResult]:
        """
        Load all six extracts from a source directory.

        Args:
            source_dir: Directory holding the extracts (defaults to settings)
            files: Table name -> path relative to source_dir (defaults to settings)

        Returns:
            List of LoadResult, one per raw table
        """
        sources = get_settings().sources
        directory = Path(source_dir or sources.source_dir)
        files = files or sources.files

        logger.info("Loading source extracts", directory=str(directory), files=len(files))

        results = []
        for table in SOURCE_TABLES:
            config = BatchFileConfig(file_path=directory / files[table.value], table=table)
            results.append(self.load(config))

        successful = sum(1 for r in results if r.status == LoadStatus.COMPLETED)
        failed = sum(1 for r in results if r.status == LoadStatus.FAILED)

        logger.info(
            f"Source load completed: {successful} successful, {failed} failed",
            total_files=len(results),
        )

        return results


# Factory function for creating configured loader
def create_batch_loader(store: Optional[LayerStore] = None) -> BatchLoader:
    """Create a configured BatchLoader instance"""
    return BatchLoader(store=store, enable_validation=True)
