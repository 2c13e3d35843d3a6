"""
Violations Ingestion Module
Downloads the raw violations CSV and converts it to a columnar parquet dataset
"""

import logging
import re
import shutil
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import duckdb
import requests

from . import config
from .dataset import sql_literal
from .errors import ConversionError, DownloadError

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("state", "plate", "issue_date", "violation", "amount_due")

MONEY_COLUMNS = (
    "fine_amount",
    "penalty_amount",
    "interest_amount",
    "reduction_amount",
    "payment_amount",
    "amount_due",
)

# Columns whose values form the vehicle key
KEY_COLUMNS = ("state", "plate")

COLUMN_ALIASES = {
    "plate_id": "plate",
    "registration_state": "state",
    "issuing_state": "state",
    "violation_description": "violation",
    "issued_date": "issue_date",
}

SINGLE_PARTITION_FILE = "violations.parquet"


# ============ DOWNLOAD ============

def download_dataset(
    url: str,
    dest: Union[str, Path],
    chunk_size: int = config.DOWNLOAD_CHUNK_SIZE,
    max_retries: int = config.DOWNLOAD_MAX_RETRIES,
    timeout: Tuple[int, int] = config.DOWNLOAD_TIMEOUT,
    backoff: float = config.DOWNLOAD_BACKOFF_SECONDS,
) -> Path:
    """
    Stream a remote file to disk, resuming interrupted transfers.

    Bytes land in `<dest>.part`. Each retry asks the server for the remainder
    with a Range header; if the server ignores it the transfer restarts.

    Args:
        url: Source URL
        dest: Final file path
        chunk_size: Bytes per streamed chunk
        max_retries: Attempts before giving up
        timeout: (connect, read) timeout in seconds
        backoff: Base sleep between attempts, multiplied by the attempt number

    Returns:
        Path of the completed file
    """
    dest = Path(dest)
    if dest.exists() and dest.stat().st_size > 0:
        logger.info(f"📂 Cached: '{dest.name}'")
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)
    part = dest.with_name(dest.name + ".part")

    for attempt in range(1, max_retries + 1):
        offset = part.stat().st_size if part.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset else {}
        try:
            with requests.get(url, stream=True, headers=headers, timeout=timeout) as r:
                if offset and r.status_code == 416:
                    logger.info(f"✅ Partial file already complete ({offset:,} bytes)")
                    break
                r.raise_for_status()

                if offset and r.status_code == 206:
                    logger.info(f"⏯️  Resuming '{dest.name}' at {offset:,} bytes (attempt {attempt})")
                    mode = "ab"
                else:
                    if offset:
                        logger.warning(f"⚠️ Server ignored range request, restarting '{dest.name}'")
                    logger.info(f"⬇️  Downloading '{dest.name}' (attempt {attempt})")
                    mode = "wb"

                with open(part, mode) as f:
                    for chunk in r.iter_content(chunk_size=chunk_size):
                        if chunk:
                            f.write(chunk)
            break
        except requests.RequestException as e:
            logger.warning(f"❌ Failed attempt {attempt}/{max_retries} for '{dest.name}': {e}")
            if attempt == max_retries:
                raise DownloadError(f"Could not download {url} after {max_retries} attempts") from e
            time.sleep(backoff * attempt)

    part.replace(dest)
    logger.info(f"✅ Saved to {dest} ({dest.stat().st_size:,} bytes)")
    return dest


# ============ CONVERSION ============

def normalize_column_name(name: str) -> str:
    """'Issue Date' -> 'issue_date', then apply known aliases."""
    normalized = re.sub(r"[^0-9a-z]+", "_", name.strip().lower()).strip("_")
    if normalized and normalized[0].isdigit():
        normalized = f"_{normalized}"
    return COLUMN_ALIASES.get(normalized, normalized)


def _quote_source(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _projection(header: List[str]) -> Tuple[str, List[str]]:
    """Build the SELECT list renaming and typing the raw CSV columns."""
    expressions = []
    names: List[str] = []
    for i, raw in enumerate(header):
        name = normalize_column_name(raw) or f"column_{i}"
        if name in names:
            name = f"{name}_{i}"
        names.append(name)

        source = _quote_source(raw)
        if name in MONEY_COLUMNS:
            expr = f"TRY_CAST(NULLIF(trim({source}), '') AS DOUBLE)"
        elif name in KEY_COLUMNS:
            expr = f"upper(trim({source}))"
        else:
            expr = source
        expressions.append(f'{expr} AS "{name}"')
    return ", ".join(expressions), names


def _parquet_bytes(dataset_dir: Path) -> int:
    return sum(p.stat().st_size for p in dataset_dir.rglob("*.parquet"))


def convert_to_parquet(
    csv_path: Union[str, Path],
    dataset_dir: Union[str, Path],
    partition_by: Optional[str] = None,
    overwrite: bool = False,
) -> Dict:
    """
    Convert the raw CSV into a parquet dataset without loading it into memory.

    All CSV fields are read as text. Money columns become nullable doubles,
    state and plate are trimmed and upper-cased, and issue_date stays a string
    because it mixes two encodings.

    Args:
        csv_path: Raw comma-separated file with a header row
        dataset_dir: Output directory for the parquet dataset
        partition_by: Optional column for hive partitioning; single file if None
        overwrite: Replace an existing dataset

    Returns:
        Conversion summary (rows, csv_bytes, parquet_bytes, compression_ratio)
    """
    csv_path = Path(csv_path)
    dataset_dir = Path(dataset_dir)
    if not csv_path.exists():
        raise ConversionError(f"CSV not found: {csv_path}")

    if dataset_dir.exists() and any(dataset_dir.rglob("*.parquet")):
        if not overwrite:
            raise ConversionError(f"Dataset already exists: {dataset_dir}")
        logger.info(f"🗑️  Removing existing dataset {dataset_dir}")
        shutil.rmtree(dataset_dir)
    dataset_dir.mkdir(parents=True, exist_ok=True)

    reader = f"read_csv({sql_literal(str(csv_path))}, header = true, delim = ',', all_varchar = true)"
    logger.info(f"🔄 Converting {csv_path.name} to parquet...")

    con = duckdb.connect(":memory:")
    try:
        header = [row[0] for row in con.execute(f"DESCRIBE SELECT * FROM {reader}").fetchall()]
        projection, names = _projection(header)

        missing = [c for c in REQUIRED_COLUMNS if c not in names]
        if missing:
            raise ConversionError(f"CSV is missing required columns {missing}; found {names}")

        if partition_by:
            if partition_by not in names:
                raise ConversionError(f"Unknown partition column: {partition_by}")
            target = sql_literal(str(dataset_dir))
            options = f'FORMAT PARQUET, COMPRESSION ZSTD, PARTITION_BY ("{partition_by}")'
        else:
            target = sql_literal(str(dataset_dir / SINGLE_PARTITION_FILE))
            options = "FORMAT PARQUET, COMPRESSION ZSTD"

        con.execute(f"COPY (SELECT {projection} FROM {reader}) TO {target} ({options})")

        glob = sql_literal(str(dataset_dir / "**" / "*.parquet"))
        rows = con.execute(f"SELECT COUNT(*) FROM read_parquet({glob})").fetchone()[0]
    except duckdb.Error as e:
        raise ConversionError(f"Conversion of {csv_path} failed: {e}") from e
    finally:
        con.close()

    csv_bytes = csv_path.stat().st_size
    parquet_bytes = _parquet_bytes(dataset_dir)
    summary = {
        "rows": int(rows),
        "csv_bytes": csv_bytes,
        "parquet_bytes": parquet_bytes,
        "compression_ratio": round(csv_bytes / parquet_bytes, 2) if parquet_bytes else 0.0,
    }
    logger.info(
        f"✅ Wrote {summary['rows']:,} rows to {dataset_dir} "
        f"({csv_bytes:,} -> {parquet_bytes:,} bytes, {summary['compression_ratio']}x smaller)"
    )
    return summary


def ingest(
    url: str = config.DATASET_URL,
    csv_path: Union[str, Path] = config.RAW_CSV_PATH,
    dataset_dir: Union[str, Path] = config.DATASET_DIR,
    partition_by: Optional[str] = None,
) -> Dict:
    """
    Download the raw CSV (resuming if needed) and convert it once.

    Returns:
        Conversion summary, or an empty dict when the dataset already exists
    """
    dataset_dir = Path(dataset_dir)
    csv_file = download_dataset(url, csv_path)

    if dataset_dir.exists() and any(dataset_dir.rglob("*.parquet")):
        logger.info(f"📂 Parquet dataset already present: {dataset_dir}")
        return {}

    return convert_to_parquet(csv_file, dataset_dir, partition_by=partition_by)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Download and convert the violations dataset")
    parser.add_argument("--url", default=config.DATASET_URL, help="CSV export URL")
    parser.add_argument("--csv-path", default=str(config.RAW_CSV_PATH), help="Raw CSV destination")
    parser.add_argument("--dataset-dir", default=str(config.DATASET_DIR), help="Parquet dataset directory")
    parser.add_argument("--partition-by", default=None, help="Optional hive partition column")

    args = parser.parse_args()

    try:
        ingest(args.url, args.csv_path, args.dataset_dir, partition_by=args.partition_by)
    except (DownloadError, ConversionError) as e:
        logger.error(f"❌ Ingestion failed: {e}")
        exit(1)
