"""
Plain-text rendering of the repeat offender report.
"""

from typing import Dict, Optional, Sequence

import pandas as pd


def format_currency(value) -> str:
    if value is None or pd.isna(value):
        return "$0.00"
    return f"${float(value):,.2f}"


def format_count(value) -> str:
    if value is None or pd.isna(value):
        return "0"
    return f"{int(value):,}"


def format_percent(value) -> str:
    return f"{float(value):.2f}%"


def render_table(
    frame: pd.DataFrame,
    currency_columns: Sequence[str] = (),
    count_columns: Sequence[str] = (),
    limit: Optional[int] = None,
) -> str:
    """Format a result frame as an aligned text table."""
    if frame.empty:
        return "(no rows)"

    shown = frame.head(limit) if limit else frame
    formatters = {}
    for column in currency_columns:
        if column in shown.columns:
            formatters[column] = format_currency
    for column in count_columns:
        if column in shown.columns:
            formatters[column] = format_count
    return shown.to_string(index=False, formatters=formatters)


def _section(lines, title):
    lines.append("")
    lines.append(title)
    lines.append("-" * 60)


def render_report(summary: Dict, top_n: int = 10) -> str:
    """
    Format the summary produced by analysis.build_summary as plain text.

    Args:
        summary: Frames and scalars from build_summary
        top_n: Rows shown for ranked tables

    Returns:
        Formatted text block
    """
    year = summary["year"]
    lines = []
    lines.append("=" * 60)
    lines.append(f"REPEAT SPEED CAMERA OFFENDERS - {year}")
    lines.append("=" * 60)
    lines.append(
        f"{format_count(summary['total_tickets'])} speed camera tickets were issued to "
        f"{format_count(summary['total_vehicles'])} vehicles, which still owe "
        f"{format_currency(summary['total_owed'])}."
    )
    lines.append(
        f"Vehicles ticketed only once owe {format_currency(summary['owed_by_single_ticket_vehicles'])}."
    )

    _section(lines, "TICKETS PER VEHICLE")
    lines.append(
        render_table(
            summary["distribution"],
            currency_columns=["amount_owed"],
            count_columns=["tickets", "vehicles"],
        )
    )

    speeders = summary["super_speeders"]
    _section(lines, f"SUPER SPEEDERS ({summary['min_tickets']}+ TICKETS)")
    lines.append(
        f"{format_count(len(speeders))} vehicles received {summary['min_tickets']} or more tickets "
        f"and owe {format_currency(summary['super_speeder_owed'])}."
    )
    lines.append(
        render_table(speeders, currency_columns=["amount_owed"], count_columns=["tickets"], limit=top_n)
    )

    owing = summary["vehicles_owing"]
    _section(lines, f"VEHICLES OWING {format_currency(summary['threshold'])} OR MORE")
    lines.append(
        f"{format_count(len(owing))} vehicles owe {format_currency(summary['vehicles_owing_total'])} combined."
    )
    lines.append(render_table(owing, currency_columns=["amount_owed"], count_columns=["tickets"], limit=top_n))

    _section(lines, "TICKETS BY STATE")
    lines.append(
        render_table(
            summary["by_state"],
            currency_columns=["amount_owed"],
            count_columns=["tickets", "vehicles"],
            limit=top_n,
        )
    )

    repeaters = summary["monthly_repeaters"]
    metro = ", ".join(summary["metro_states"])
    _section(lines, "TICKETED EVERY MONTH (OUTSIDE " + metro + ")")
    lines.append(
        f"{format_count(len(repeaters))} vehicles registered outside {metro} were ticketed in every month, "
        f"{format_percent(summary['every_month_share'])} of the {summary['share_denominator']} "
        f"({format_count(summary['non_metro_vehicles'])} non-metro vehicles, "
        f"{format_count(summary['non_metro_violations'])} non-metro tickets)."
    )
    lines.append(
        render_table(
            repeaters,
            currency_columns=["amount_owed"],
            count_columns=["months", "tickets"],
            limit=top_n,
        )
    )
    if summary["unresolved_dates"]:
        lines.append(f"Note: {format_count(summary['unresolved_dates'])} tickets had unreadable issue dates.")

    return "\n".join(lines)
