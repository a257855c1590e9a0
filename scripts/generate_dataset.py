"""
Sample Extract Generator
Writes the six CRM/ERP CSV extracts (with source defects) under data/sources
"""

import argparse
from pathlib import Path

import polars as pl

from warehouse.data.generators import RawExtractGenerator

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "sources"


def main():
    parser = argparse.ArgumentParser(description="Generate sample CRM/ERP extracts")
    parser.add_argument("--output-dir", default=str(OUTPUT_DIR))
    parser.add_argument("--customers", type=int, default=10000)
    parser.add_argument("--products", type=int, default=300)
    parser.add_argument("--sales", type=int, default=60000)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    print("=" * 60)
    print("Sample CRM/ERP Extract Generator")
    print("=" * 60 + "\n")

    generator = RawExtractGenerator(seed=args.seed)
    extracts = generator.generate_all(
        n_customers=args.customers,
        n_products=args.products,
        n_sales=args.sales,
    )
    paths = generator.save(extracts, args.output_dir)

    print(f"Output: {args.output_dir}\n")
    total = 0
    for path in paths:
        rows = pl.scan_csv(path).select(pl.len()).collect().item()
        size = path.stat().st_size / 1024 / 1024
        total += rows
        print(f"   {path.relative_to(args.output_dir)}: {rows:,} rows ({size:.2f} MB)")

    print(f"\nTotal: {total:,} rows")


if __name__ == "__main__":
    main()
