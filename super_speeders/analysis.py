"""
Repeat Offender Analysis Module

The report's questions about vehicles that keep collecting speed camera
tickets, expressed as deferred plans over a ViolationDataset. A vehicle is
identified by its (state, plate) key.
"""

import logging
from typing import Dict, Sequence

import pandas as pd

from . import config
from .dates import RULE_UNRESOLVED
from .errors import QueryError
from .query import Query, col, count, count_distinct, sum_of

logger = logging.getLogger(__name__)

VEHICLE_KEY = ("state", "plate")
MONTHS_IN_YEAR = 12


def speed_camera_tickets(
    dataset,
    year: int = config.REPORT_YEAR,
    label: str = config.SPEED_VIOLATION_LABEL,
) -> Query:
    """Speed camera tickets issued in `year` (either date encoding)."""
    return dataset.query().row_filter(
        col("issue_date").contains(str(year)),
        col("violation").contains(label),
    )


def tickets_per_vehicle(
    dataset,
    year: int = config.REPORT_YEAR,
    label: str = config.SPEED_VIOLATION_LABEL,
) -> Query:
    """One row per vehicle: tickets and total amount still owed."""
    return (
        speed_camera_tickets(dataset, year, label)
        .group(*VEHICLE_KEY)
        .aggregate(tickets=count(), amount_owed=sum_of("amount_due"))
    )


def ticket_count_distribution(
    dataset,
    year: int = config.REPORT_YEAR,
    label: str = config.SPEED_VIOLATION_LABEL,
) -> Query:
    """For each ticket count N: vehicles with exactly N tickets and what they owe."""
    return (
        tickets_per_vehicle(dataset, year, label)
        .group("tickets")
        .aggregate(vehicles=count(), amount_owed=sum_of("amount_owed"))
    )


def owed_by_ticket_count(distribution: pd.DataFrame, tickets: int) -> float:
    """Total owed by vehicles with exactly `tickets` tickets (0 if none)."""
    matched = distribution.loc[distribution["tickets"] == tickets, "amount_owed"]
    return float(matched.sum()) if len(matched) else 0.0


def super_speeders(
    dataset,
    year: int = config.REPORT_YEAR,
    min_tickets: int = config.SUPER_SPEEDER_THRESHOLD,
) -> Query:
    """Vehicles with at least `min_tickets` speed camera tickets, most ticketed first."""
    return (
        tickets_per_vehicle(dataset, year)
        .having_filter(col("tickets") >= min_tickets)
        .sort("tickets", "amount_owed", descending=True)
    )


def outstanding_tickets(dataset, year: int = config.REPORT_YEAR) -> Query:
    """Speed camera tickets with a positive amount due."""
    return speed_camera_tickets(dataset, year).row_filter(col("amount_due") > 0)


def vehicles_owing_at_least(
    dataset,
    year: int = config.REPORT_YEAR,
    threshold: float = config.OWED_THRESHOLD,
) -> Query:
    """
    Vehicles whose combined unpaid tickets reach `threshold`.

    The threshold applies to the per-vehicle total, so two $200 tickets
    qualify for a $350 threshold even though neither does alone.
    """
    return (
        outstanding_tickets(dataset, year)
        .group(*VEHICLE_KEY)
        .aggregate(tickets=count(), amount_owed=sum_of("amount_due"))
        .having_filter(col("amount_owed") >= threshold)
        .sort("amount_owed", descending=True)
    )


def tickets_by_state(dataset, year: int = config.REPORT_YEAR) -> Query:
    return (
        speed_camera_tickets(dataset, year)
        .group("state")
        .aggregate(tickets=count(), vehicles=count_distinct("plate"), amount_owed=sum_of("amount_due"))
        .sort("tickets", descending=True)
    )


def non_metro_tickets(
    dataset,
    year: int = config.REPORT_YEAR,
    metro_states: Sequence[str] = config.METRO_STATES,
) -> Query:
    return speed_camera_tickets(dataset, year).row_filter(col("state").not_in(metro_states))


def monthly_repeaters(
    dataset,
    year: int = config.REPORT_YEAR,
    metro_states: Sequence[str] = config.METRO_STATES,
) -> Query:
    """Non-metro vehicles ticketed in every calendar month of `year`."""
    return (
        non_metro_tickets(dataset, year, metro_states)
        .with_month()
        .row_filter(col("month_rule") != RULE_UNRESOLVED)
        .group(*VEHICLE_KEY)
        .aggregate(months=count_distinct("month"), tickets=count(), amount_owed=sum_of("amount_due"))
        .having_filter(col("months") == MONTHS_IN_YEAR)
        .sort("tickets", descending=True)
    )


def month_resolution_counts(dataset, year: int = config.REPORT_YEAR) -> Query:
    """Tickets per date rule; the `unresolved` row counts dates matching neither format."""
    return (
        speed_camera_tickets(dataset, year)
        .with_month()
        .group("month_rule")
        .aggregate(tickets=count())
    )


def every_month_share(
    repeaters: int,
    non_metro_vehicles: int,
    non_metro_violations: int,
    denominator: str = "vehicles",
) -> float:
    """
    Percentage of non-metro vehicles ticketed every month.

    denominator="violations" divides by non-metro tickets instead of
    vehicles, which reproduces the figure printed in the published report.
    """
    if denominator == "vehicles":
        base = non_metro_vehicles
    elif denominator == "violations":
        base = non_metro_violations
    else:
        raise QueryError(f"Unknown denominator: {denominator}")
    return round(100 * repeaters / base, 2) if base else 0.0


def build_summary(
    dataset,
    year: int = config.REPORT_YEAR,
    min_tickets: int = config.SUPER_SPEEDER_THRESHOLD,
    threshold: float = config.OWED_THRESHOLD,
    metro_states: Sequence[str] = config.METRO_STATES,
    share_denominator: str = "vehicles",
) -> Dict:
    """
    Run every report query once and derive the scalars quoted in the text.

    Returns:
        Dict of result frames and scalars
    """
    logger.info(f"🔢 Running report queries for {year}...")

    per_vehicle = tickets_per_vehicle(dataset, year)
    distribution = ticket_count_distribution(dataset, year).collect()
    speeders = super_speeders(dataset, year, min_tickets).collect()
    owing = vehicles_owing_at_least(dataset, year, threshold).collect()
    by_state = tickets_by_state(dataset, year).collect()
    repeaters = monthly_repeaters(dataset, year, metro_states).collect()
    resolution = month_resolution_counts(dataset, year).collect()

    unresolved = int(resolution.loc[resolution["month_rule"] == RULE_UNRESOLVED, "tickets"].sum())
    if unresolved:
        logger.warning(f"⚠️ {unresolved:,} tickets have an issue date in neither format; excluded from monthly counts")

    non_metro = non_metro_tickets(dataset, year, metro_states)
    non_metro_violations = non_metro.row_count()
    non_metro_vehicles = non_metro.group(*VEHICLE_KEY).aggregate(tickets=count()).row_count()

    total_tickets = int(distribution["tickets"].mul(distribution["vehicles"]).sum())
    total_owed = float(distribution["amount_owed"].sum())

    summary = {
        "year": year,
        "min_tickets": min_tickets,
        "threshold": threshold,
        "metro_states": tuple(metro_states),
        "distribution": distribution,
        "super_speeders": speeders,
        "vehicles_owing": owing,
        "by_state": by_state,
        "monthly_repeaters": repeaters,
        "month_resolution": resolution,
        "total_tickets": total_tickets,
        "total_vehicles": per_vehicle.row_count(),
        "total_owed": total_owed,
        "owed_by_single_ticket_vehicles": owed_by_ticket_count(distribution, 1),
        "super_speeder_owed": float(speeders["amount_owed"].sum()),
        "vehicles_owing_total": float(owing["amount_owed"].sum()),
        "unresolved_dates": unresolved,
        "non_metro_violations": non_metro_violations,
        "non_metro_vehicles": non_metro_vehicles,
        "share_denominator": share_denominator,
        "every_month_share": every_month_share(
            len(repeaters), non_metro_vehicles, non_metro_violations, denominator=share_denominator
        ),
    }
    logger.info(
        f"✅ {summary['total_tickets']:,} tickets across {summary['total_vehicles']:,} vehicles; "
        f"{len(speeders):,} vehicles with {min_tickets}+ tickets"
    )
    return summary
