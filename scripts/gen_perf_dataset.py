#!/usr/bin/env python3
"""Dataset generation script for performance testing.

Generates a synthetic orders workbook for the loader:
- Row 1: Header row (customer, region, amount, quantity, active, placed_at)
- Row 2+: Data rows

placed_at is written as a spreadsheet serial number so the date coercion
path is exercised, and ``--bad-ratio`` blanks the required ``customer``
column on a share of rows so batches fall back to row-by-row recovery.
Use ``--ddl`` to print a matching CREATE TABLE statement.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

COLUMNS = ["customer", "region", "amount", "quantity", "active", "placed_at"]

DDL = """CREATE TABLE {table} (
    id bigint GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
    customer text NOT NULL,
    region text,
    amount numeric(12, 2),
    quantity integer,
    active boolean,
    placed_at timestamp with time zone
);"""


def generate_orders_frame(rows: int, bad_ratio: float = 0.0, seed: int = 42) -> pd.DataFrame:
    """Generate synthetic order rows.

    Args:
        rows: Number of data rows to generate
        bad_ratio: Share of rows (0..1) whose required customer cell is blank
        seed: Random seed for reproducible data

    Returns:
        DataFrame with the COLUMNS layout
    """
    np.random.seed(seed)

    regions = ["North", "South", "East", "West", "Online"]
    customers = [f"Customer_{np.random.randint(1000, 9999)}_{chr(65 + (j % 26))}" for j in range(rows)]

    bad = np.random.uniform(0, 1, rows) < bad_ratio
    customer_col: list[str | None] = [None if b else c for c, b in zip(customers, bad)]

    # 2023-01-01 (44927) から 2 年分のシリアル値 (時刻付き)
    serials = np.round(np.random.uniform(44927, 44927 + 730, rows), 4)

    return pd.DataFrame(
        {
            "customer": customer_col,
            "region": np.random.choice(regions, rows).tolist(),
            "amount": np.round(np.random.uniform(0.01, 9999.99, rows), 2).tolist(),
            "quantity": np.random.randint(1, 1000, rows).tolist(),
            "active": np.random.choice([True, False], rows).tolist(),
            "placed_at": serials.tolist(),
        },
        columns=COLUMNS,
    )


def create_excel_file(
    output_path: Path,
    rows: int,
    *,
    bad_ratio: float = 0.0,
    sheet: str = "Orders",
    seed: int = 42,
) -> Path:
    """Write the synthetic orders workbook (header in row 1)."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = generate_orders_frame(rows, bad_ratio, seed)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet, index=False)
    return output_path


def main(argv: list[str] | None = None) -> int:
    """Main CLI interface for dataset generation."""
    parser = argparse.ArgumentParser(
        description="Generate a synthetic orders workbook for loader performance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 50k rows, all valid
  %(prog)s orders.xlsx

  # 100k rows, 1%% rejected by NOT NULL
  %(prog)s orders.xlsx --rows 100000 --bad-ratio 0.01

  # print the matching table definition
  %(prog)s orders.xlsx --ddl --table sales.orders --dry-run
        """,
    )
    parser.add_argument("output", type=Path, help="Output Excel file path")
    parser.add_argument("--rows", type=int, default=50_000, help="Number of data rows (default: 50,000)")
    parser.add_argument("--bad-ratio", type=float, default=0.0, help="Share of rows with a blank customer (default: 0)")
    parser.add_argument("--sheet", default="Orders", help="Sheet name (default: Orders)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for reproducible data (default: 42)")
    parser.add_argument("--ddl", action="store_true", help="Print CREATE TABLE for the generated columns")
    parser.add_argument("--table", default="orders", help="Table name used in --ddl output (default: orders)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be generated without creating files")
    args = parser.parse_args(argv)

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0.0 <= args.bad_ratio <= 1.0:
        print("Error: --bad-ratio must be between 0 and 1", file=sys.stderr)
        return 1

    if args.ddl:
        print(DDL.format(table=args.table))

    print("Dataset generation plan:")
    print(f"  Output file: {args.output}")
    print(f"  Sheet: {args.sheet}")
    print(f"  Rows: {args.rows:,} (+ 1 header row)")
    print(f"  Expected rejected rows: ~{int(args.rows * args.bad_ratio):,}")
    print(f"  Random seed: {args.seed}")

    if args.dry_run:
        print("\n[DRY RUN] Would generate files but not creating them.")
        return 0

    try:
        create_excel_file(args.output, args.rows, bad_ratio=args.bad_ratio, sheet=args.sheet, seed=args.seed)
    except OSError as e:
        print(f"\nError generating dataset: {e}", file=sys.stderr)
        return 1
    print(f"\nCreated Excel file: {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
