"""
Layered Table Store

Holds the raw, cleansed and dimensional layers as polars DataFrames.
Writes follow truncate-then-repopulate semantics: a table is always replaced
as a whole, never mutated row by row. When a root path is configured every
write is also persisted as parquet, through a temporary file that is renamed
into place so readers never observe a half-written table.
"""

import os
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import polars as pl
import structlog

from warehouse.config import get_settings
from .models import Layer, Table

logger = structlog.get_logger(__name__)

TableName = Union[Table, str]


class MissingTableError(KeyError):
    """Raised when a stage reads a table that has not been populated"""

    def __init__(self, layer: Layer, table: str):
        self.layer = layer
        self.table = table
        super().__init__(f"Table '{table}' not found in {layer.value} layer")


def _name(table: TableName) -> str:
    return table.value if isinstance(table, Table) else str(table)


class LayerStore:
    """
    Table store for the three warehouse layers.

    Example:
        store = LayerStore()                      # in-memory only
        store = LayerStore.from_settings()        # persisted under the data lake
        store.write(Layer.RAW, Table.CRM_SALES, df)
        sales = store.read(Layer.RAW, Table.CRM_SALES)
    """

    def __init__(
        self,
        layer_paths: Optional[Mapping[str, Union[str, Path]]] = None,
        compression: str = "snappy",
    ):
        self._tables: Dict[Layer, Dict[str, pl.DataFrame]] = {layer: {} for layer in Layer}
        self.compression = compression
        self.layer_paths: Optional[Dict[Layer, Path]] = None
        if layer_paths is not None:
            self.layer_paths = {Layer(name): Path(path) for name, path in layer_paths.items()}

    @classmethod
    def from_settings(cls) -> "LayerStore":
        """Create a store configured from the data lake settings"""
        settings = get_settings()
        lake = settings.data_lake
        if not lake.persist:
            return cls()
        return cls(layer_paths=lake.layer_paths(), compression=lake.compression)

    @property
    def persistent(self) -> bool:
        return self.layer_paths is not None

    def _path(self, layer: Layer, table: str) -> Path:
        return self.layer_paths[layer] / f"{table}.parquet"

    def write(self, layer: Layer, table: TableName, df: pl.DataFrame) -> None:
        """Replace a table with the given frame"""
        name = _name(table)
        self._tables[layer][name] = df

        if self.persistent:
            path = self._path(layer, name)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".parquet.tmp")
            df.write_parquet(tmp_path, compression=self.compression)
            os.replace(tmp_path, path)

        logger.debug("Table written", layer=layer.value, table=name, rows=df.height)

    def read(self, layer: Layer, table: TableName) -> pl.DataFrame:
        """Return a table, loading it from parquet if it is not in memory"""
        name = _name(table)
        df = self._tables[layer].get(name)
        if df is not None:
            return df

        if self.persistent:
            path = self._path(layer, name)
            if path.exists():
                df = pl.read_parquet(path)
                self._tables[layer][name] = df
                return df

        raise MissingTableError(layer, name)

    def exists(self, layer: Layer, table: TableName) -> bool:
        name = _name(table)
        if name in self._tables[layer]:
            return True
        return self.persistent and self._path(layer, name).exists()

    def tables(self, layer: Layer) -> List[str]:
        """Names of all tables available in a layer"""
        names = set(self._tables[layer])
        if self.persistent and self.layer_paths[layer].exists():
            names.update(p.stem for p in self.layer_paths[layer].glob("*.parquet"))
        return sorted(names)

    def read_many(self, layer: Layer, tables: Iterable[TableName]) -> Dict[str, pl.DataFrame]:
        """Read several tables of one layer, skipping the ones that are absent"""
        found = {}
        for table in tables:
            if self.exists(layer, table):
                found[_name(table)] = self.read(layer, table)
        return found

    def clear(self, layer: Layer) -> None:
        """Drop every table of a layer"""
        for name in self.tables(layer):
            if self.persistent:
                self._path(layer, name).unlink(missing_ok=True)
        self._tables[layer] = {}
        logger.info("Layer cleared", layer=layer.value)
