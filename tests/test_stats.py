"""Tests for the statistics aggregator."""

import pytest

from tests.conftest import make_issue


class TestRounding:
    """Test half-up rounding."""

    def test_half_rounds_up(self):
        """Test .5 rounds up, unlike round()."""
        from jira_bridge.stats import round_half_up

        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.49) == 2


class TestAllocateBar:
    """Test progress bar allocation."""

    def test_no_statuses_is_one_filler_segment(self):
        """Test an empty count list fills the bar with the empty segment."""
        from jira_bridge.stats import BAR_WIDTH, BarSegment, allocate_bar

        assert allocate_bar([], 0) == [BarSegment(status=None, units=BAR_WIDTH)]

    def test_single_status_takes_whole_bar(self):
        """Test one status gets every unit."""
        from jira_bridge.stats import allocate_bar

        bar = allocate_bar([("Done", 7)], 7)
        assert [(s.status, s.units) for s in bar] == [("Done", 20)]

    def test_zero_counts_still_sum_to_width(self):
        """Test all-zero counts still allocate exactly the width."""
        from jira_bridge.stats import allocate_bar

        bar = allocate_bar([("A", 0), ("B", 0)], 0)
        assert sum(s.units for s in bar) == 20

    @pytest.mark.parametrize("counts", [
        [("A", 1), ("B", 1), ("C", 1)],
        [("A", 5), ("B", 5), ("C", 5), ("D", 5), ("E", 5), ("F", 5), ("G", 5)],
        [("A", 1)] + [(f"S{i}", 1) for i in range(30)],
        [("A", 50), ("B", 49), ("C", 1)],
    ])
    def test_units_always_sum_to_width(self, counts):
        """Test rounding never overshoots or undershoots the bar."""
        from jira_bridge.stats import allocate_bar

        fetched = sum(c for _, c in counts)
        bar = allocate_bar(counts, fetched)
        assert sum(s.units for s in bar) == 20
        assert all(s.units >= 0 for s in bar)

    def test_proportional_split(self):
        """Test a 3:1 split gives 15 and 5 units."""
        from jira_bridge.stats import allocate_bar

        bar = allocate_bar([("Done", 3), ("To Do", 1)], 4)
        assert [s.units for s in bar] == [15, 5]


class TestAggregate:
    """Test full project aggregation."""

    def test_empty_project(self):
        """Test no issues gives the empty-state result."""
        from jira_bridge.stats import EmptyProjectStats, aggregate

        assert aggregate([], "PROJ") == EmptyProjectStats(project_key="PROJ")

    def test_status_counts_sorted_stable(self):
        """Test counts sort descending with ties in first-seen order."""
        from jira_bridge.stats import aggregate

        issues = [
            make_issue("P-1", "Review"),
            make_issue("P-2", "To Do"),
            make_issue("P-3", "Done"),
            make_issue("P-4", "Done"),
        ]
        stats = aggregate(issues, "P")
        assert [(c.status, c.count) for c in stats.status_counts] == [
            ("Done", 2), ("Review", 1), ("To Do", 1)
        ]
        assert [c.percent for c in stats.status_counts] == [50, 25, 25]

    def test_total_defaults_to_fetched(self):
        """Test total falls back to the fetched count."""
        from jira_bridge.stats import aggregate

        stats = aggregate([make_issue()], "PROJ")
        assert stats.total == 1
        assert stats.fetched == 1

    def test_total_from_tracker(self):
        """Test a reported backlog size is kept."""
        from jira_bridge.stats import aggregate

        stats = aggregate([make_issue()], "PROJ", total=250)
        assert stats.total == 250
        assert stats.project_name == "Project"

    def test_unassigned_bucket(self):
        """Test unassigned issues group under Unassigned."""
        from jira_bridge.stats import aggregate

        issues = [
            make_issue("P-1", "To Do", assignee="Ana"),
            make_issue("P-2", "Done", assignee=None),
            make_issue("P-3", "To Do", assignee=None),
        ]
        stats = aggregate(issues, "P")
        names = [(w.name, w.total) for w in stats.assignees]
        assert names == [("Unassigned", 2), ("Ana", 1)]
        assert stats.assignees[0].statuses == [("Done", 1), ("To Do", 1)]
