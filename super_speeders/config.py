"""
Report configuration.

Values come from the environment (a local .env file is honoured) and fall
back to the defaults used for the published report.
"""

import os
from pathlib import Path

import dotenv

dotenv.load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("SUPER_SPEEDERS_DATA_DIR", str(PROJECT_ROOT / "data")))

RAW_CSV_PATH = DATA_DIR / "raw" / "open_parking_and_camera_violations.csv"
DATASET_DIR = DATA_DIR / "parquet" / "violations"

# NYC Open Data: Open Parking and Camera Violations
DATASET_URL = os.getenv(
    "VIOLATIONS_CSV_URL",
    "https://data.cityofnewyork.us/api/views/nc67-uf89/rows.csv?accessType=DOWNLOAD",
)

# Download
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DOWNLOAD_MAX_RETRIES = int(os.getenv("DOWNLOAD_MAX_RETRIES", "5"))
DOWNLOAD_TIMEOUT = (10, 120)
DOWNLOAD_BACKOFF_SECONDS = 2

# DuckDB
DUCKDB_THREADS = int(os.getenv("DUCKDB_THREADS", "4"))
DUCKDB_MEMORY_LIMIT = os.getenv("DUCKDB_MEMORY_LIMIT") or None

# Report parameters
REPORT_YEAR = int(os.getenv("REPORT_YEAR", "2024"))
SPEED_VIOLATION_LABEL = "SPEED"
METRO_STATES = ("NY", "NJ", "CT")
OWED_THRESHOLD = 350
# Camera ticket threshold from NY Bill A.2299/S.4045
SUPER_SPEEDER_THRESHOLD = 16
TOP_N = 10
