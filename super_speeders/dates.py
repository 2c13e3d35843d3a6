"""
Issue date normalization.

The violations feed encodes `issue_date` two ways: a calendar date
(`03/15/2024`) for most rows and a full timestamp (`2024-03-15 14:22:00`)
for the rest. Both resolve to a canonical month (1-12). The calendar-date
rule is tried first; the timestamp rule only applies where it yields nothing.
Rows that match neither are tagged `unresolved` instead of being dropped.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

PRIMARY_FORMAT = "%m/%d/%Y"
FALLBACK_FORMAT = "%Y-%m-%d %H:%M:%S"

# Digit layouts accepted by the formats above when parsed in DuckDB
PRIMARY_SHAPE = "[0-9]{1,2}/[0-9]{1,2}/[0-9]{4}"
FALLBACK_SHAPE = "[0-9]{4}-[0-9]{1,2}-[0-9]{1,2} [0-9]{1,2}:[0-9]{1,2}:[0-9]{1,2}"

RULE_PRIMARY = "primary"
RULE_FALLBACK = "fallback"
RULE_UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class MonthResolution:
    """Outcome of resolving one issue date: a month and the rule that produced it."""

    month: Optional[int]
    rule: str

    @property
    def resolved(self) -> bool:
        return self.rule != RULE_UNRESOLVED


def _parse_month(value: str, fmt: str) -> Optional[int]:
    try:
        return datetime.strptime(value, fmt).month
    except ValueError:
        return None


def resolve_month(raw: Optional[str]) -> MonthResolution:
    """Resolve a single raw issue date string."""
    if raw is None:
        return MonthResolution(None, RULE_UNRESOLVED)
    value = str(raw).strip()

    month = _parse_month(value, PRIMARY_FORMAT)
    if month is not None:
        return MonthResolution(month, RULE_PRIMARY)

    month = _parse_month(value, FALLBACK_FORMAT)
    if month is not None:
        return MonthResolution(month, RULE_FALLBACK)

    return MonthResolution(None, RULE_UNRESOLVED)


def normalize_months(frame: pd.DataFrame, column: str = "issue_date") -> pd.DataFrame:
    """
    Add `month` and `month_rule` columns to a materialized frame.

    Every input row appears exactly once in the output, in the original order.

    Args:
        frame: Rows holding the raw issue date strings
        column: Name of the issue date column

    Returns:
        Copy of `frame` with `month` (nullable Int64) and `month_rule`
    """
    out = frame.copy()
    raw = out[column].astype("string").str.strip()

    primary = pd.to_datetime(raw, format=PRIMARY_FORMAT, errors="coerce")
    needs_fallback = primary.isna()
    fallback = pd.to_datetime(raw.where(needs_fallback), format=FALLBACK_FORMAT, errors="coerce")
    from_fallback = needs_fallback & fallback.notna()

    month = primary.dt.month.astype("Int64")
    month = month.mask(from_fallback.to_numpy(), fallback.dt.month.astype("Int64"))

    rule = pd.Series(RULE_UNRESOLVED, index=out.index, dtype=object)
    rule = rule.mask(primary.notna().to_numpy(), RULE_PRIMARY)
    rule = rule.mask(from_fallback.to_numpy(), RULE_FALLBACK)

    out["month"] = month
    out["month_rule"] = rule

    unresolved = int((rule == RULE_UNRESOLVED).sum())
    if unresolved:
        logger.warning(f"⚠️ {unresolved:,} issue dates matched neither date format")
    return out


def _parse_sql(column: str, fmt: str, shape: str) -> str:
    # DuckDB's %Y also reads two-digit years; the shape check keeps it to four
    text = f"trim(CAST({column} AS VARCHAR))"
    return f"CASE WHEN regexp_full_match({text}, '{shape}') THEN try_strptime({text}, '{fmt}') END"


def _primary_sql(column: str) -> str:
    return _parse_sql(column, PRIMARY_FORMAT, PRIMARY_SHAPE)


def _fallback_sql(column: str) -> str:
    return _parse_sql(column, FALLBACK_FORMAT, FALLBACK_SHAPE)


def month_sql(column: str) -> str:
    """DuckDB expression for the canonical month of a quoted column."""
    return f"COALESCE(month({_primary_sql(column)}), month({_fallback_sql(column)}))"


def month_rule_sql(column: str) -> str:
    """DuckDB expression naming the rule that resolved the month."""
    return (
        f"CASE WHEN {_primary_sql(column)} IS NOT NULL THEN '{RULE_PRIMARY}' "
        f"WHEN {_fallback_sql(column)} IS NOT NULL THEN '{RULE_FALLBACK}' "
        f"ELSE '{RULE_UNRESOLVED}' END"
    )
