"""
Data Validation Module

Rule-based quality checks over the cleansed and dimensional layers.
Implements validation patterns inspired by Great Expectations: every check is
named, can be run on its own, and returns the violating rows or values as a
DataFrame. An empty frame means the check passed.

Features:
- Null / duplicate checks on natural and surrogate keys
- Untrimmed whitespace checks on text fields
- Enumerated domain checks
- Numeric and date sanity checks
- Referential integrity between the fact and its dimensions
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import polars as pl
import structlog

from warehouse.config import get_settings
from warehouse.storage.models import SOURCE_TABLES, Layer, Table
from warehouse.storage.store import LayerStore
from warehouse.transformation.rules import (
    COUNTRY_NAMES,
    GENDERS,
    MARITAL_STATUSES,
    PRODUCT_LINES,
)

logger = structlog.get_logger(__name__)

Tables = Mapping[str, pl.DataFrame]
CheckFunc = Callable[..., pl.DataFrame]


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Defect in the model
    WARNING = "warning"  # Defect in a source extract
    INFO = "info"  # Informational only


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


def table_ref(layer: Layer, table: Table) -> str:
    """
    Key under which a table is passed to the validator.

    Cleansed and dimensional tables use their plain name; raw tables are
    prefixed with "raw." since they share names with the cleansed layer.
    """
    if layer == Layer.RAW:
        return f"raw.{table.value}"
    return table.value


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    violations: pl.DataFrame = field(default_factory=pl.DataFrame)
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def defects(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]

    def check(self, name: str) -> ValidationCheck:
        for c in self.checks:
            if c.name == name:
                return c
        raise KeyError(name)

    def to_frame(self) -> pl.DataFrame:
        """One summary row per check"""
        return pl.DataFrame(
            {
                "check": [c.name for c in self.checks],
                "passed": [c.passed for c in self.checks],
                "severity": [c.severity.value for c in self.checks],
                "failed_rows": [c.failed_rows for c in self.checks],
                "message": [c.message for c in self.checks],
            },
            schema={
                "check": pl.Utf8,
                "passed": pl.Boolean,
                "severity": pl.Utf8,
                "failed_rows": pl.Int64,
                "message": pl.Utf8,
            },
        )


@dataclass
class _RegisteredCheck:
    name: str
    tables: Sequence[str]
    func: CheckFunc
    severity: ValidationSeverity
    description: str


# =============================================================================
# CHECK PRIMITIVES
# =============================================================================

def null_or_duplicate_keys(df: pl.DataFrame, column: str, allow_null: bool = False) -> pl.DataFrame:
    """Key values occurring more than once, plus the null key group"""
    counts = df.group_by(column).agg(pl.len().alias("row_count"))
    flagged = pl.col("row_count") > 1
    if not allow_null:
        flagged = flagged | pl.col(column).is_null()
    return counts.filter(flagged).sort(column, nulls_last=False)


def untrimmed_values(df: pl.DataFrame, columns: Sequence[str], keep: Sequence[str] = ()) -> pl.DataFrame:
    """Rows where any of `columns` carries leading or trailing whitespace"""
    text = {c: pl.col(c).cast(pl.Utf8) for c in columns}
    differs = [text[c] != text[c].str.strip_chars() for c in columns]
    selected = list(dict.fromkeys([*keep, *columns]))
    return df.filter(pl.any_horizontal(differs)).select(selected)


def values_outside(df: pl.DataFrame, column: str, allowed: Iterable[str]) -> pl.DataFrame:
    """Distinct values not in the allowed set; null counts as outside"""
    allowed = sorted(allowed)
    return (
        df.select(pl.col(column).cast(pl.Utf8))
        .unique()
        .filter(pl.col(column).is_null() | ~pl.col(column).is_in(allowed))
        .sort(column, nulls_last=False)
    )


def key_gaps(df: pl.DataFrame, column: str) -> pl.DataFrame:
    """
    Surrogate keys breaking the 1..n sequence.

    Reports keys that are null or outside 1..n ("out_of_range") and positions
    of 1..n with no row ("missing").
    """
    n = df.height
    keys = df.select(pl.col(column).cast(pl.Int64))
    out_of_range = (
        keys.filter(pl.col(column).is_null() | (pl.col(column) < 1) | (pl.col(column) > n))
        .with_columns(pl.lit("out_of_range").alias("issue"))
    )
    expected = pl.DataFrame({column: pl.int_range(1, n + 1, eager=True).cast(pl.Int64)})
    missing = (
        expected.join(keys.drop_nulls(), on=column, how="anti")
        .with_columns(pl.lit("missing").alias("issue"))
    )
    return pl.concat([out_of_range, missing]).sort(column, nulls_last=False)


# =============================================================================
# VALIDATOR
# =============================================================================

class DataValidator:
    """
    Named-check validator over a mapping of tables.

    Checks are registered with the add_* builders and reference their inputs
    by table key (see `table_ref`). Each check is invocable on its own with
    `run_check`; `validate` runs the whole battery.

    Example:
        validator = DataValidator()
        validator.add_unique_check("dim_customers", "customer_key")
        validator.add_enum_check("crm_customers", "gender", GENDERS)
        result = validator.validate({"dim_customers": dim, "crm_customers": customers})
        result.check("dim_customers.customer_key.duplicate").violations
    """

    def __init__(
        self,
        strict_mode: bool = False,
        max_workers: Optional[int] = None,
        sample_rows: Optional[int] = None,
    ):
        settings = get_settings()
        self.strict_mode = strict_mode  # Fail on any warning
        self.max_workers = max_workers or settings.data_quality.max_workers
        self.sample_rows = settings.data_quality.sample_rows if sample_rows is None else sample_rows
        self._checks: Dict[str, _RegisteredCheck] = {}

    @property
    def check_names(self) -> List[str]:
        return list(self._checks)

    def reset(self) -> None:
        """Reset validator state"""
        self._checks = {}

    def _register(
        self,
        name: str,
        tables: Sequence[str],
        func: CheckFunc,
        severity: ValidationSeverity,
        description: str,
    ) -> "DataValidator":
        if name in self._checks:
            raise ValueError(f"Duplicate check name: {name}")
        self._checks[name] = _RegisteredCheck(name, tuple(tables), func, severity, description)
        return self

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def add_null_or_duplicate_check(
        self,
        table: str,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null or repeated natural keys"""
        return self._register(
            f"{table}.{column}.null_or_duplicate",
            [table],
            lambda df: null_or_duplicate_keys(df, column),
            severity,
            f"'{column}' must be present and unique",
        )

    def add_unique_check(
        self,
        table: str,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of column values"""
        return self._register(
            f"{table}.{column}.duplicate",
            [table],
            lambda df: null_or_duplicate_keys(df, column, allow_null=True),
            severity,
            f"'{column}' values must be unique",
        )

    def add_contiguous_key_check(
        self,
        table: str,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that surrogate keys run 1..n without gaps"""
        return self._register(
            f"{table}.{column}.gaps",
            [table],
            lambda df: key_gaps(df, column),
            severity,
            f"'{column}' must form the sequence 1..n",
        )

    def add_untrimmed_check(
        self,
        table: str,
        columns: Sequence[str],
        keep: Sequence[str] = (),
        name: Optional[str] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for leading/trailing whitespace in text columns"""
        check_name = name or f"{table}.{columns[0]}.untrimmed"
        return self._register(
            check_name,
            [table],
            lambda df: untrimmed_values(df, columns, keep),
            severity,
            f"{', '.join(columns)} must be trimmed",
        )

    def add_enum_check(
        self,
        table: str,
        column: str,
        allowed_values: Iterable[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set"""
        allowed = frozenset(allowed_values)
        return self._register(
            f"{table}.{column}.domain",
            [table],
            lambda df: values_outside(df, column, allowed),
            severity,
            f"'{column}' must be one of {sorted(allowed)}",
        )

    def add_range_check(
        self,
        table: str,
        column: str,
        min_value: Any = None,
        max_value: Any = None,
        name: Optional[str] = None,
        distinct: bool = True,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values within [min_value, max_value]; nulls are ignored"""
        def check(df: pl.DataFrame) -> pl.DataFrame:
            conditions = []
            if min_value is not None:
                conditions.append(pl.col(column) < min_value)
            if max_value is not None:
                conditions.append(pl.col(column) > max_value)
            if not conditions:
                return df.clear()
            out = df.filter(pl.any_horizontal(conditions))
            if distinct:
                out = out.select(column).unique().sort(column)
            return out

        return self._register(
            name or f"{table}.{column}.out_of_range",
            [table],
            check,
            severity,
            f"'{column}' must lie within [{min_value}, {max_value}]",
        )

    def add_custom_check(
        self,
        name: str,
        tables: Sequence[str],
        check_func: CheckFunc,
        description: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """
        Add a custom check.

        `check_func` receives the frames named in `tables`, in order, and
        returns the violating rows.
        """
        return self._register(name, tables, check_func, severity, description)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run_check(self, name: str, tables: Tables) -> ValidationCheck:
        """Run a single named check"""
        registered = self._checks.get(name)
        if registered is None:
            raise KeyError(f"Unknown check: {name}")

        missing = [t for t in registered.tables if t not in tables]
        if missing:
            return ValidationCheck(
                name=name,
                passed=False,
                severity=registered.severity,
                message=f"Table(s) not found: {', '.join(missing)}",
                details={"missing_tables": missing},
            )

        frames = [tables[t] for t in registered.tables]
        try:
            violations = registered.func(*frames)
        except pl.exceptions.PolarsError as e:
            return ValidationCheck(
                name=name,
                passed=False,
                severity=registered.severity,
                message=f"Check failed with error: {str(e)}",
                total_rows=frames[0].height,
            )

        failed = violations.height
        passed = failed == 0
        return ValidationCheck(
            name=name,
            passed=passed,
            severity=registered.severity,
            message="Check passed" if passed else f"{failed} violation(s): {registered.description}",
            violations=violations,
            failed_rows=failed,
            total_rows=frames[0].height,
        )

    def validate(self, tables: Tables, names: Optional[Iterable[str]] = None) -> ValidationResult:
        """
        Run the registered checks (or the named subset) against the tables.

        Args:
            tables: Mapping of table key -> DataFrame
            names: Optional subset of check names

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.utcnow()
        selected = list(names) if names is not None else self.check_names
        for name in selected:
            if name not in self._checks:
                raise KeyError(f"Unknown check: {name}")

        logger.info(f"Running {len(selected)} validation checks", workers=self.max_workers)

        if self.max_workers > 1 and len(selected) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(lambda n: self.run_check(n, tables), selected))
        else:
            results = [self.run_check(n, tables) for n in selected]

        for result in results:
            if not result.passed:
                logger.warning(
                    f"Validation failed: {result.name}",
                    message=result.message,
                    severity=result.severity.value,
                    sample=result.violations.head(self.sample_rows).to_dicts(),
                )

        completed_at = datetime.utcnow()

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        validation_result = ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=completed_at,
        )

        logger.info(
            f"Validation complete: {status.value}",
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return validation_result


# =============================================================================
# WAREHOUSE-SPECIFIC CHECKS
# =============================================================================

def _product_validity_overlap(products: pl.DataFrame) -> pl.DataFrame:
    """Versions whose range reaches into the next version of the same key"""
    ordered = products.sort(["product_number", "start_date"], nulls_last=False).with_columns(
        pl.col("start_date").shift(-1).over("product_number").alias("next_start_date")
    )
    return ordered.filter(
        pl.col("next_start_date").is_not_null()
        & (pl.col("end_date").is_null() | (pl.col("end_date") >= pl.col("next_start_date")))
    ).select("product_id", "product_number", "start_date", "end_date", "next_start_date")


def _product_current_versions(products: pl.DataFrame) -> pl.DataFrame:
    """Product keys without exactly one open-ended version"""
    return (
        products.group_by("product_number")
        .agg(pl.col("end_date").is_null().sum().alias("current_versions"))
        .filter(pl.col("current_versions") != 1)
        .sort("product_number", nulls_last=False)
    )


def _raw_date_keys_out_of_window(sales: pl.DataFrame, low: int, high: int) -> pl.DataFrame:
    """Distinct raw YYYYMMDD values that cannot be plausible dates"""
    frames = []
    for column in ("order_date", "ship_date", "due_date"):
        key = pl.col(column).cast(pl.Int64, strict=False)
        frames.append(
            sales.filter(
                (key <= 0)
                | (key.cast(pl.Utf8).str.len_chars() != 8)
                | (key > high)
                | (key < low)
            ).select(
                pl.lit(column).alias("column"),
                key.alias("date_key"),
            )
        )
    return pl.concat(frames).unique().sort(["column", "date_key"])


def _sales_date_order(sales: pl.DataFrame) -> pl.DataFrame:
    """Order dates falling after the ship or due date"""
    return sales.filter(
        (pl.col("order_date") > pl.col("ship_date"))
        | (pl.col("order_date") > pl.col("due_date"))
    )


def _sales_amount_consistency(sales: pl.DataFrame, tolerance: float) -> pl.DataFrame:
    """Distinct amount/quantity/price triples breaking amount = quantity * price > 0"""
    amount, quantity, price = pl.col("sales_amount"), pl.col("quantity"), pl.col("unit_price")
    return (
        sales.filter(
            amount.is_null()
            | quantity.is_null()
            | price.is_null()
            | (amount <= 0)
            | (quantity <= 0)
            | (price <= 0)
            | ((amount - quantity * price).abs() > tolerance)
        )
        .select("sales_amount", "quantity", "unit_price")
        .unique()
        .sort(["sales_amount", "quantity", "unit_price"], nulls_last=False)
    )


def _country_unstandardized(locations: pl.DataFrame) -> pl.DataFrame:
    """Distinct countries that are blank, padded or still a raw code"""
    country = pl.col("country")
    return (
        locations.select("country")
        .unique()
        .filter(
            country.is_null()
            | (country == "")
            | (country != country.str.strip_chars())
            | country.is_in(sorted(COUNTRY_NAMES))
        )
        .sort("country", nulls_last=False)
    )


def _fact_referential_integrity(
    facts: pl.DataFrame,
    dim_customers: pl.DataFrame,
    dim_products: pl.DataFrame,
) -> pl.DataFrame:
    """Fact rows whose customer or product key does not resolve to a dimension row"""
    customers = dim_customers.select(
        "customer_key", pl.lit(True).alias("_customer_found")
    ).unique(subset=["customer_key"])
    products = dim_products.select(
        "product_key", pl.lit(True).alias("_product_found")
    ).unique(subset=["product_key"])
    return (
        facts.with_row_index("_line")
        .join(customers, on="customer_key", how="left")
        .join(products, on="product_key", how="left")
        .filter(pl.col("_customer_found").is_null() | pl.col("_product_found").is_null())
        .sort("_line")
        .drop("_line", "_customer_found", "_product_found")
    )


# =============================================================================
# PRE-BUILT SUITES
# =============================================================================

def create_cleansed_validator(
    as_of: Optional[date] = None,
    validator: Optional[DataValidator] = None,
) -> DataValidator:
    """Create pre-configured validator for the cleansed layer (and its raw sources)"""
    quality = get_settings().data_quality
    as_of = as_of or date.today()
    v = validator or DataValidator()

    customers = Table.CRM_CUSTOMERS.value
    products = Table.CRM_PRODUCTS.value
    sales = Table.CRM_SALES.value
    demographics = Table.ERP_DEMOGRAPHICS.value
    locations = Table.ERP_LOCATIONS.value
    raw_sales = table_ref(Layer.RAW, Table.CRM_SALES)
    raw_categories = table_ref(Layer.RAW, Table.ERP_CATEGORIES)

    return (
        v.add_null_or_duplicate_check(customers, "customer_id")
        .add_untrimmed_check(customers, ["first_name"], keep=["customer_id"])
        .add_untrimmed_check(customers, ["last_name"], keep=["customer_id"])
        .add_enum_check(customers, "gender", GENDERS)
        .add_enum_check(customers, "marital_status", MARITAL_STATUSES)
        .add_null_or_duplicate_check(products, "product_id")
        .add_untrimmed_check(products, ["product_name"], keep=["product_id"])
        .add_custom_check(
            f"{products}.cost.null_or_negative",
            [products],
            lambda df: df.filter(pl.col("cost").is_null() | (pl.col("cost") < 0)).select("product_id", "cost"),
            "cost must be present and non-negative",
        )
        .add_enum_check(products, "product_line", PRODUCT_LINES)
        .add_custom_check(
            f"{products}.end_before_start",
            [products],
            lambda df: df.filter(pl.col("end_date").is_not_null() & (pl.col("end_date") < pl.col("start_date"))),
            "end_date must not precede start_date",
        )
        .add_custom_check(
            f"{products}.validity_overlap",
            [products],
            _product_validity_overlap,
            "versions of a product must not overlap",
        )
        .add_custom_check(
            f"{products}.current_version_count",
            [products],
            _product_current_versions,
            "each product must have exactly one open-ended version",
        )
        .add_custom_check(
            f"{raw_sales}.date_keys.out_of_window",
            [raw_sales],
            lambda df: _raw_date_keys_out_of_window(df, quality.date_key_min, quality.date_key_max),
            f"date keys must be 8-digit values within [{quality.date_key_min}, {quality.date_key_max}]",
            severity=ValidationSeverity.WARNING,
        )
        .add_custom_check(
            f"{sales}.date_order",
            [sales],
            _sales_date_order,
            "order_date must not follow ship_date or due_date",
        )
        .add_custom_check(
            f"{sales}.amount_consistency",
            [sales],
            lambda df: _sales_amount_consistency(df, quality.amount_tolerance),
            "sales_amount must equal quantity * unit_price, all positive",
        )
        .add_range_check(
            demographics,
            "birthdate",
            min_value=quality.birthdate_floor,
            max_value=as_of,
        )
        .add_enum_check(demographics, "gender", GENDERS)
        .add_custom_check(
            f"{locations}.country.unstandardized",
            [locations],
            _country_unstandardized,
            "country must be a trimmed, expanded name or Unknown",
        )
        .add_untrimmed_check(
            raw_categories,
            ["category", "subcategory", "maintenance"],
            keep=["category_id"],
            name=f"{raw_categories}.untrimmed",
            severity=ValidationSeverity.WARNING,
        )
    )


def create_dimensional_validator(validator: Optional[DataValidator] = None) -> DataValidator:
    """Create pre-configured validator for the star schema"""
    v = validator or DataValidator()
    dim_customers = Table.DIM_CUSTOMERS.value
    dim_products = Table.DIM_PRODUCTS.value
    fact_sales = Table.FACT_SALES.value

    return (
        v.add_unique_check(dim_customers, "customer_key")
        .add_contiguous_key_check(dim_customers, "customer_key")
        .add_unique_check(dim_products, "product_key")
        .add_contiguous_key_check(dim_products, "product_key")
        .add_enum_check(dim_customers, "gender", GENDERS)
        .add_enum_check(dim_customers, "marital_status", MARITAL_STATUSES)
        .add_custom_check(
            f"{dim_customers}.country.unstandardized",
            [dim_customers],
            _country_unstandardized,
            "country must be a trimmed, expanded name or Unknown",
        )
        .add_enum_check(dim_products, "product_line", PRODUCT_LINES)
        .add_custom_check(
            f"{fact_sales}.referential_integrity",
            [fact_sales, dim_customers, dim_products],
            _fact_referential_integrity,
            "every fact row must resolve to a customer and a product",
        )
    )


def collect_tables(store: LayerStore) -> Dict[str, pl.DataFrame]:
    """Gather every table the pre-built suites read, skipping absent ones"""
    tables: Dict[str, pl.DataFrame] = {}
    for table in (Table.CRM_SALES, Table.ERP_CATEGORIES):
        if store.exists(Layer.RAW, table):
            tables[table_ref(Layer.RAW, table)] = store.read(Layer.RAW, table)
    tables.update(store.read_many(Layer.CLEANSED, SOURCE_TABLES))
    tables.update(
        store.read_many(
            Layer.DIMENSIONAL,
            [Table.DIM_CUSTOMERS, Table.DIM_PRODUCTS, Table.FACT_SALES],
        )
    )
    return tables


def create_warehouse_validator(
    as_of: Optional[date] = None,
    max_workers: Optional[int] = None,
) -> DataValidator:
    """Both suites in one validator, cleansed checks first"""
    validator = DataValidator(max_workers=max_workers)
    create_cleansed_validator(as_of=as_of, validator=validator)
    return create_dimensional_validator(validator=validator)
