"""
Unit tests for the repeat offender analysis

Runs the report queries end to end against small parquet datasets whose
answers can be worked out by hand.
"""

import tempfile
import unittest
from pathlib import Path

from fixtures import PARKING, SPEED, write_violations
from super_speeders import analysis
from super_speeders.dataset import open_dataset
from super_speeders.errors import QueryError
from super_speeders.report import render_report

# Speed camera tickets in 2024 per vehicle:
#   NY A1: 50            NJ B1: unpaid amount missing    NJ A1: 5
#   PA C1: 100 + 25      PA C2: 10 + missing             FL D1: 3 x 100
TICKETS = [
    ("NY", "A1", "03/01/2024", SPEED, 50.0),
    ("NJ", "B1", "04/01/2024", SPEED, None),
    ("NJ", "A1", "2024-05-01 09:15:00", SPEED, 5.0),
    ("PA", "C1", "01/10/2024", SPEED, 100.0),
    ("PA", "C1", "02/10/2024", SPEED, 25.0),
    ("PA", "C2", "2024-06-02 12:00:00", SPEED, 10.0),
    ("PA", "C2", "07/02/2024", SPEED, None),
    ("FL", "D1", "08/01/2024", SPEED, 100.0),
    ("FL", "D1", "09/01/2024", SPEED, 100.0),
    ("FL", "D1", "2024-10-01 07:00:00", SPEED, 100.0),
    # outside the report: wrong year, not a camera ticket
    ("NY", "A1", "12/31/2023", SPEED, 999.0),
    ("FL", "D1", "06/01/2024", PARKING, 65.0),
]


def _every_month(state, plate, skip=None):
    """One ticket per month of 2024, alternating between the two date encodings."""
    rows = []
    for month in range(1, 13):
        if month == skip:
            continue
        if month % 2:
            issued = f"{month:02d}/15/2024"
        else:
            issued = f"2024-{month:02d}-15 08:00:00"
        rows.append((state, plate, issued, SPEED, 10.0))
    return rows


# OH M12 is ticketed every month, OH M11 misses June and has one unreadable
# date, NY M12 is ticketed every month but is registered in a metro state.
MONTHLY = (
    _every_month("OH", "M12")
    + _every_month("OH", "M11", skip=6)
    + [("OH", "M11", "13/45/2024", SPEED, 10.0)]
    + _every_month("NY", "M12")
)


def _keys(frame):
    return list(zip(frame["state"], frame["plate"]))


class TestTicketDistribution(unittest.TestCase):
    """Test cases for per-vehicle ticket counts and amounts owed."""

    @classmethod
    def setUpClass(cls):
        cls.tmp = tempfile.TemporaryDirectory()
        path = write_violations(Path(cls.tmp.name) / "violations.parquet", TICKETS)
        cls.dataset = open_dataset(path, threads=1)

    @classmethod
    def tearDownClass(cls):
        cls.tmp.cleanup()

    def test_speed_camera_tickets(self):
        self.assertEqual(analysis.speed_camera_tickets(self.dataset, 2024).row_count(), 10)
        self.assertEqual(analysis.speed_camera_tickets(self.dataset, 2023).row_count(), 1)

    def test_vehicle_key_includes_state(self):
        per_vehicle = analysis.tickets_per_vehicle(self.dataset, 2024).collect()
        self.assertEqual(len(per_vehicle), 6)
        self.assertIn(("NY", "A1"), _keys(per_vehicle))
        self.assertIn(("NJ", "A1"), _keys(per_vehicle))

    def test_distribution(self):
        distribution = analysis.ticket_count_distribution(self.dataset, 2024).collect()

        self.assertEqual(list(distribution["tickets"]), [1, 2, 3])
        self.assertEqual(list(distribution["vehicles"]), [3, 2, 1])
        self.assertEqual(list(distribution["amount_owed"]), [55.0, 135.0, 300.0])

    def test_owed_by_ticket_count(self):
        distribution = analysis.ticket_count_distribution(self.dataset, 2024).collect()

        self.assertEqual(analysis.owed_by_ticket_count(distribution, 1), 55.0)
        self.assertEqual(analysis.owed_by_ticket_count(distribution, 3), 300.0)
        self.assertEqual(analysis.owed_by_ticket_count(distribution, 7), 0.0)

    def test_super_speeders(self):
        speeders = analysis.super_speeders(self.dataset, 2024, min_tickets=3).collect()
        self.assertEqual(_keys(speeders), [("FL", "D1")])
        self.assertEqual(int(speeders["tickets"].iloc[0]), 3)
        self.assertEqual(float(speeders["amount_owed"].iloc[0]), 300.0)

    def test_super_speeders_ranked(self):
        speeders = analysis.super_speeders(self.dataset, 2024, min_tickets=2).collect()
        self.assertEqual(_keys(speeders), [("FL", "D1"), ("PA", "C1"), ("PA", "C2")])

    def test_vehicles_owing_uses_combined_total(self):
        """$100 + $25 reaches a $110 threshold although neither ticket does."""
        owing = analysis.vehicles_owing_at_least(self.dataset, 2024, threshold=110).collect()
        self.assertEqual(_keys(owing), [("FL", "D1"), ("PA", "C1")])
        self.assertEqual(list(owing["amount_owed"]), [300.0, 125.0])

    def test_vehicles_owing_threshold_is_inclusive(self):
        self.assertEqual(
            _keys(analysis.vehicles_owing_at_least(self.dataset, 2024, threshold=300).collect()),
            [("FL", "D1")],
        )
        self.assertTrue(analysis.vehicles_owing_at_least(self.dataset, 2024, threshold=350).collect().empty)

    def test_tickets_by_state(self):
        by_state = analysis.tickets_by_state(self.dataset, 2024).collect()

        self.assertEqual(list(by_state["state"]), ["PA", "FL", "NJ", "NY"])
        self.assertEqual(list(by_state["tickets"]), [4, 3, 2, 1])
        nj = by_state[by_state["state"] == "NJ"].iloc[0]
        self.assertEqual(int(nj["vehicles"]), 2)

    def test_build_summary_totals(self):
        summary = analysis.build_summary(self.dataset, year=2024, min_tickets=3, threshold=300)

        self.assertEqual(summary["total_tickets"], 10)
        self.assertEqual(summary["total_vehicles"], 6)
        self.assertEqual(summary["total_owed"], 490.0)
        self.assertEqual(summary["owed_by_single_ticket_vehicles"], 55.0)
        self.assertEqual(summary["super_speeder_owed"], 300.0)
        self.assertEqual(summary["vehicles_owing_total"], 300.0)
        self.assertEqual(summary["non_metro_violations"], 7)
        self.assertEqual(summary["non_metro_vehicles"], 3)
        self.assertEqual(summary["unresolved_dates"], 0)
        self.assertTrue(summary["monthly_repeaters"].empty)
        self.assertEqual(summary["every_month_share"], 0.0)

    def test_render_report(self):
        summary = analysis.build_summary(self.dataset, year=2024, min_tickets=3, threshold=300)
        text = render_report(summary)

        self.assertIn("REPEAT SPEED CAMERA OFFENDERS - 2024", text)
        self.assertIn("10 speed camera tickets were issued to 6 vehicles", text)
        self.assertIn("$490.00", text)
        self.assertIn("SUPER SPEEDERS (3+ TICKETS)", text)
        self.assertNotIn("unreadable issue dates", text)


class TestMonthlyRepeaters(unittest.TestCase):
    """Test cases for vehicles ticketed in every month of the year."""

    @classmethod
    def setUpClass(cls):
        cls.tmp = tempfile.TemporaryDirectory()
        path = write_violations(Path(cls.tmp.name) / "violations.parquet", MONTHLY)
        cls.dataset = open_dataset(path, threads=1)

    @classmethod
    def tearDownClass(cls):
        cls.tmp.cleanup()

    def test_repeaters_across_date_formats(self):
        repeaters = analysis.monthly_repeaters(self.dataset, 2024).collect()

        self.assertEqual(_keys(repeaters), [("OH", "M12")])
        self.assertEqual(int(repeaters["months"].iloc[0]), 12)
        self.assertEqual(int(repeaters["tickets"].iloc[0]), 12)

    def test_metro_states_are_configurable(self):
        repeaters = analysis.monthly_repeaters(self.dataset, 2024, metro_states=("NJ",)).collect()
        self.assertEqual(sorted(_keys(repeaters)), [("NY", "M12"), ("OH", "M12")])

    def test_month_resolution_counts(self):
        resolution = analysis.month_resolution_counts(self.dataset, 2024).collect()
        counts = dict(zip(resolution["month_rule"], resolution["tickets"]))

        self.assertEqual(counts["primary"], 18)
        self.assertEqual(counts["fallback"], 17)
        self.assertEqual(counts["unresolved"], 1)

    def test_summary_share(self):
        summary = analysis.build_summary(self.dataset, year=2024)

        self.assertEqual(summary["non_metro_violations"], 24)
        self.assertEqual(summary["non_metro_vehicles"], 2)
        self.assertEqual(summary["unresolved_dates"], 1)
        self.assertEqual(summary["every_month_share"], 50.0)

        by_violations = analysis.build_summary(self.dataset, year=2024, share_denominator="violations")
        self.assertEqual(by_violations["every_month_share"], 4.17)

    def test_report_notes_unresolved_dates(self):
        text = render_report(analysis.build_summary(self.dataset, year=2024))
        self.assertIn("1 tickets had unreadable issue dates", text)
        self.assertIn("50.00% of the vehicles", text)


class TestEveryMonthShare(unittest.TestCase):

    def test_denominators(self):
        self.assertEqual(analysis.every_month_share(1, 3, 7), 33.33)
        self.assertEqual(analysis.every_month_share(1, 3, 7, denominator="violations"), 14.29)

    def test_empty_base(self):
        self.assertEqual(analysis.every_month_share(0, 0, 0), 0.0)

    def test_unknown_denominator(self):
        with self.assertRaises(QueryError):
            analysis.every_month_share(1, 2, 3, denominator="plates")


if __name__ == '__main__':
    unittest.main(verbosity=2)
