#!/usr/bin/env python
"""
Command Line Entry Point

Usage:
    sales-warehouse load --source-dir data/sources
    sales-warehouse run [--source-dir data/sources]
    sales-warehouse check [NAME ...]
    sales-warehouse generate --output-dir data/sources
"""

import argparse
import sys
from datetime import date
from typing import List, Optional

import structlog

from warehouse.config import get_settings
from warehouse.config.logging import configure_logging
from warehouse.data.generators import RawExtractGenerator
from warehouse.ingestion.batch_loader import BatchLoader, LoadStatus
from warehouse.quality.validators import collect_tables, create_warehouse_validator
from warehouse.storage.store import LayerStore
from warehouse.transformation.transformers import WarehousePipeline

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DEFECTS = 2


def _load(store: LayerStore, source_dir: Optional[str]) -> bool:
    results = BatchLoader(store=store).load_sources(source_dir)
    return all(r.status == LoadStatus.COMPLETED for r in results)


def cmd_load(args: argparse.Namespace, store: LayerStore) -> int:
    return EXIT_OK if _load(store, args.source_dir) else EXIT_FAILED


def cmd_run(args: argparse.Namespace, store: LayerStore) -> int:
    if args.source_dir and not _load(store, args.source_dir):
        return EXIT_FAILED

    pipeline = WarehousePipeline(store=store, as_of=args.as_of, max_workers=args.workers)
    result = pipeline.run()

    for stage in result.stages:
        print(f"{stage.stage:<28} {stage.status.value:<10} {stage.output_rows:>10} {stage.duration_seconds:8.3f}s")
    if result.validation is not None:
        print(f"validation: {result.validation.status.value} ({len(result.validation.defects)} defect(s))")

    return EXIT_OK if result.success else EXIT_FAILED


def cmd_check(args: argparse.Namespace, store: LayerStore) -> int:
    validator = create_warehouse_validator(as_of=args.as_of, max_workers=args.workers)
    try:
        result = validator.validate(collect_tables(store), names=args.names or None)
    except KeyError as e:
        print(f"Unknown check: {e.args[0]}", file=sys.stderr)
        return EXIT_FAILED

    for check in result.checks:
        mark = "ok" if check.passed else check.severity.value
        print(f"{mark:<8} {check.name:<48} {check.failed_rows:>8}")

    return EXIT_DEFECTS if result.defects else EXIT_OK


def cmd_generate(args: argparse.Namespace, store: LayerStore) -> int:
    generator = RawExtractGenerator(seed=args.seed)
    extracts = generator.generate_all(
        n_customers=args.customers,
        n_products=args.products,
        n_sales=args.sales,
        as_of=args.as_of,
    )
    for path in generator.save(extracts, args.output_dir):
        print(f"wrote {path}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sales-warehouse",
        description="CRM/ERP sales warehouse: raw -> cleansed -> dimensional",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=["json", "text"], default=None)
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Reference date for birthdate plausibility (default: today)",
    )
    parser.add_argument("--workers", type=int, default=None, help="Thread pool size")

    sub = parser.add_subparsers(dest="command", required=True)

    load = sub.add_parser("load", help="Load raw extracts into the raw layer")
    load.add_argument("--source-dir", default=None)
    load.set_defaults(func=cmd_load)

    run = sub.add_parser("run", help="Rebuild the cleansed and dimensional layers")
    run.add_argument("--source-dir", default=None, help="Load extracts from here first")
    run.set_defaults(func=cmd_run)

    check = sub.add_parser("check", help="Run quality checks against the stored layers")
    check.add_argument("names", nargs="*", help="Check names (default: all)")
    check.set_defaults(func=cmd_check)

    generate = sub.add_parser("generate", help="Write synthetic raw extracts")
    generate.add_argument("--output-dir", default=None)
    generate.add_argument("--seed", type=int, default=42)
    generate.add_argument("--customers", type=int, default=1000)
    generate.add_argument("--products", type=int, default=100)
    generate.add_argument("--sales", type=int, default=10000)
    generate.set_defaults(func=cmd_generate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)
    logger.info("Starting command", command=args.command, app=get_settings().app_name)
    return args.func(args, LayerStore.from_settings())


if __name__ == "__main__":
    sys.exit(main())
