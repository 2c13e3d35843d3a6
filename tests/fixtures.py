"""Synthetic violation datasets written to parquet with DuckDB."""

from pathlib import Path

import duckdb

SPEED = "PHTO SCHOOL ZN SPEED VIOLATION"
PARKING = "NO PARKING-STREET CLEANING"


def write_violations(path, rows):
    """Write (state, plate, issue_date, violation, amount_due) tuples to a parquet file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(":memory:")
    try:
        con.execute(
            "CREATE TABLE violations ("
            "state VARCHAR, plate VARCHAR, issue_date VARCHAR, violation VARCHAR, amount_due DOUBLE)"
        )
        if rows:
            con.executemany("INSERT INTO violations VALUES (?, ?, ?, ?, ?)", list(rows))
        con.execute(f"COPY violations TO '{path}' (FORMAT PARQUET)")
    finally:
        con.close()
    return path
