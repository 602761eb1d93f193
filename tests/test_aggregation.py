"""Tests for per-item collapsing and category ordering."""

from crosscheck.aggregation import (
    aggregate_findings,
    collapse_per_item_findings,
    order_by_category,
)
from crosscheck.rules import Finding, Severity


def per_item(category, message, severity=Severity.INFO, summary=None):
    return Finding(category, message, severity, is_per_item=True, collapsed_summary=summary)


class TestCollapse:
    """Test collapsing of homogeneous per-item categories."""

    def test_all_info_per_item_collapses(self):
        findings = [
            per_item("Fields.Names", "Field 'G180-A' follows naming convention"),
            per_item("Fields.Names", "Field 'G90-B' follows naming convention"),
        ]
        (summary,) = collapse_per_item_findings(findings)
        assert summary.severity == Severity.INFO
        assert summary.message == "All treatment fields passed Fields.Names checks"
        assert not summary.is_per_item

    def test_custom_summary_from_first_finding(self):
        findings = [
            per_item("Fields.ToleranceTable", "a", summary="All fields use tolerance table 'HAL'"),
            per_item("Fields.ToleranceTable", "b", summary="ignored"),
        ]
        (summary,) = collapse_per_item_findings(findings)
        assert summary.message == "All fields use tolerance table 'HAL'"

    def test_warning_prevents_collapse(self):
        findings = [
            per_item("Fields.Names", "ok"),
            per_item("Fields.Names", "bad", Severity.WARNING),
        ]
        assert collapse_per_item_findings(findings) == findings

    def test_single_finding_is_kept(self):
        findings = [per_item("Fields.Names", "only one")]
        assert collapse_per_item_findings(findings) == findings

    def test_non_per_item_is_kept(self):
        findings = [
            Finding("Dose.Grid", "a", Severity.INFO),
            Finding("Dose.Grid", "b", Severity.INFO),
        ]
        assert collapse_per_item_findings(findings) == findings

    def test_categories_keep_first_seen_order(self):
        findings = [
            Finding("B", "b1", Severity.INFO),
            per_item("A", "a1"),
            Finding("B", "b2", Severity.ERROR),
            per_item("A", "a2"),
        ]
        out = collapse_per_item_findings(findings)
        assert [f.category for f in out] == ["B", "B", "A"]

    def test_input_is_not_modified(self):
        findings = [per_item("X", "1"), per_item("X", "2")]
        collapse_per_item_findings(findings)
        assert len(findings) == 2


class TestOrdering:
    """Test priority based ordering."""

    def test_priority_then_name(self):
        findings = [
            Finding("Dose.Grid", "d", Severity.INFO),
            Finding("Collision", "c", Severity.INFO),
            Finding("Course", "r", Severity.INFO),
            Finding("Zzz.Unknown", "z", Severity.INFO),
            Finding("Fields.Names", "f", Severity.INFO),
        ]
        out = order_by_category(findings)
        assert [f.category for f in out] == [
            "Course",
            "Collision",
            "Fields.Names",
            "Dose.Grid",
            "Zzz.Unknown",
        ]

    def test_same_priority_sorted_by_name(self):
        findings = [
            Finding("Structure.X", "s", Severity.INFO),
            Finding("PlanningStructures.z_Air Density", "p", Severity.INFO),
        ]
        out = order_by_category(findings)
        assert [f.category for f in out] == ["PlanningStructures.z_Air Density", "Structure.X"]

    def test_sort_is_stable_within_category(self):
        findings = [Finding("Dose.Grid", str(i), Severity.INFO) for i in range(5)]
        assert [f.message for f in order_by_category(findings)] == ["0", "1", "2", "3", "4"]

    def test_custom_order(self):
        findings = [Finding("A", "a", Severity.INFO), Finding("B", "b", Severity.INFO)]
        out = order_by_category(findings, order=[("B", 1), ("A", 2)])
        assert [f.category for f in out] == ["B", "A"]

    def test_aggregate_collapses_then_orders(self):
        findings = [
            per_item("Fields.Names", "n1"),
            per_item("Fields.Names", "n2"),
            Finding("Course", "course ok", Severity.INFO),
        ]
        out = aggregate_findings(findings)
        assert [f.category for f in out] == ["Course", "Fields.Names"]
        assert len(out) == 2
