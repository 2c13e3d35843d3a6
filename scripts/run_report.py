#!/usr/bin/env python3
"""
Build the repeat speed camera offenders report.

Downloads the NYC Open Parking and Camera Violations export (resuming a
partial download if one exists), converts it to parquet once, then runs the
report queries against the parquet dataset and prints the report.

Usage:
    python scripts/run_report.py --year 2024
"""

import argparse
import logging
import sys
from pathlib import Path

from super_speeders import config
from super_speeders.analysis import build_summary
from super_speeders.dataset import open_dataset
from super_speeders.errors import SuperSpeedersError
from super_speeders.ingestion import ingest
from super_speeders.report import render_report

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Repeat speed camera offenders report")
    parser.add_argument("--year", type=int, default=config.REPORT_YEAR, help="Report year")
    parser.add_argument("--url", default=config.DATASET_URL, help="CSV export URL")
    parser.add_argument("--csv-path", default=str(config.RAW_CSV_PATH), help="Raw CSV location")
    parser.add_argument("--dataset-dir", default=str(config.DATASET_DIR), help="Parquet dataset directory")
    parser.add_argument("--skip-download", action="store_true", help="Use the existing parquet dataset")
    parser.add_argument("--min-tickets", type=int, default=config.SUPER_SPEEDER_THRESHOLD, help="Super speeder threshold")
    parser.add_argument("--owed-threshold", type=float, default=config.OWED_THRESHOLD, help="Amount owed threshold")
    parser.add_argument(
        "--share-denominator",
        choices=["vehicles", "violations"],
        default="vehicles",
        help="Denominator for the ticketed-every-month percentage",
    )
    parser.add_argument("--output", default=None, help="Also write the report to this file")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    print("\n" + "=" * 60)
    print("STOP SUPER SPEEDERS - REPEAT OFFENDER REPORT")
    print("=" * 60)

    try:
        if not args.skip_download:
            ingest(args.url, args.csv_path, args.dataset_dir)

        dataset = open_dataset(args.dataset_dir)
        logger.info(f"📊 Dataset holds {dataset.row_count():,} violations")

        summary = build_summary(
            dataset,
            year=args.year,
            min_tickets=args.min_tickets,
            threshold=args.owed_threshold,
            share_denominator=args.share_denominator,
        )
    except SuperSpeedersError as e:
        logger.error(f"❌ Report failed: {e}")
        return 1

    text = render_report(summary, top_n=config.TOP_N)
    print(text)

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n")
        logger.info(f"✅ Report written to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
