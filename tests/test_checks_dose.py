"""Tests for the Dose.* rules: grid, technique, dose rate, reference point and prescription."""

from dataclasses import replace

from crosscheck.checks import DoseRule, ReferencePointRule
from crosscheck.rules import Severity
from plan_model.snapshot import Prescription, PrescriptionTarget, ReferencePoint


def by_category(findings, category):
    return [f for f in findings if f.category == category]


class TestDoseGrid:
    """Test the dose grid resolution limit."""

    def test_two_mm_grid_is_valid(self, edge_plan, params):
        (grid,) = by_category(DoseRule(params).evaluate(edge_plan), "Dose.Grid")
        assert grid.severity == Severity.INFO
        assert grid.message == "Dose grid size (0.200 cm) is valid"

    def test_coarse_grid_is_error(self, edge_plan, params):
        edge_plan.dose_grid_resolution_mm = 2.5
        (grid,) = by_category(DoseRule(params).evaluate(edge_plan), "Dose.Grid")
        assert grid.severity == Severity.ERROR
        assert grid.message == "Dose grid size (0.250 cm) is too large (should be ≤ 0.2 cm)"

    def test_srs_uses_finer_limit(self, edge_plan, params):
        for b in edge_plan.treatment_beams:
            b.technique = "SRS ARC"
        edge_plan.dose_grid_resolution_mm = 1.5
        (grid,) = by_category(DoseRule(params).evaluate(edge_plan), "Dose.Grid")
        assert grid.severity == Severity.ERROR
        assert grid.message.endswith("(should be ≤ 0.125 cm for SRS plans)")

    def test_no_dose_gives_no_findings(self, edge_plan, params):
        edge_plan.dose_grid_resolution_mm = None
        assert DoseRule(params).evaluate(edge_plan) == []


class TestTechniqueAndDoseRate:
    """Test SRS technique and dose rate for high dose per fraction."""

    def test_conventional_fractionation_skips_both(self, edge_plan, params):
        findings = DoseRule(params).evaluate(edge_plan)
        assert not by_category(findings, "Dose.Technique")
        assert not by_category(findings, "Dose.DoseRate")

    def test_high_dose_requires_srs_technique(self, edge_plan, params):
        edge_plan.dose_per_fraction_gy = 8.0
        technique = by_category(DoseRule(params).evaluate(edge_plan), "Dose.Technique")
        assert [f.severity for f in technique] == [Severity.ERROR, Severity.ERROR]
        assert technique[0].message == (
            "Field '181CW179-A' should use SRS technique for ≥5Gy/fraction (8.00 Gy)"
        )

    def test_edge_dose_rate_checked_at_high_dose(self, edge_plan, params):
        edge_plan.dose_per_fraction_gy = 8.0
        edge_plan.beams[1].dose_rate = 400.0
        rates = by_category(DoseRule(params).evaluate(edge_plan), "Dose.DoseRate")
        assert rates[0].severity == Severity.INFO
        assert rates[0].message == "Field '181CW179-A' has correct dose rate (600 MU/min) for 6X"
        assert rates[1].severity == Severity.ERROR
        assert rates[1].message == (
            "Field '179CCW181-B' has incorrect dose rate (400 MU/min) for 6X (should be 600 MU/min)"
        )

    def test_halcyon_dose_rate_always_checked(self, halcyon_plan, params):
        rates = by_category(DoseRule(params).evaluate(halcyon_plan), "Dose.DoseRate")
        assert [f.severity for f in rates] == [Severity.INFO, Severity.INFO]

    def test_missing_dose_rate_is_error(self, halcyon_plan, params):
        halcyon_plan.beams[0].dose_rate = None
        rates = by_category(DoseRule(params).evaluate(halcyon_plan), "Dose.DoseRate")
        assert rates[0].severity == Severity.ERROR
        assert "(n/a MU/min)" in rates[0].message


class TestReferencePoint:
    """Test primary reference point name, type and dose limits."""

    def test_clean_plan(self, edge_plan, params):
        findings = ReferencePointRule(params).evaluate(edge_plan)
        assert all(f.severity == Severity.INFO for f in findings)
        messages = [f.message for f in findings]
        assert "Total reference point dose (60.10 Gy) is correct: Total+0.1=60.10 Gy" in messages
        assert "Daily reference point dose (2.10 Gy) is correct: Fraction+0.1=(2.10 Gy)" in messages

    def test_primary_name_without_prefix_is_error(self, edge_plan, params):
        iso = replace(edge_plan.primary_reference_point, point_id="ISO1")
        edge_plan.primary_reference_point = iso
        edge_plan.reference_points = [iso]
        findings = ReferencePointRule(params).evaluate(edge_plan)
        errors = [f for f in findings if f.severity == Severity.ERROR]
        assert [f.message for f in errors] == [
            "Primary reference point name 'ISO1' should start with 'RP_'"
        ]

    def test_wrong_type_is_warning(self, edge_plan, params):
        rp = replace(edge_plan.primary_reference_point, point_type="Site")
        edge_plan.primary_reference_point = rp
        edge_plan.reference_points = [rp]
        findings = ReferencePointRule(params).evaluate(edge_plan)
        assert findings[0].severity == Severity.WARNING
        assert findings[0].message == (
            "Reference point 'RP_Prostate' should have type 'Target' (current: Site)"
        )

    def test_limit_off_by_more_than_tolerance(self, edge_plan, params):
        edge_plan.primary_reference_point = replace(edge_plan.primary_reference_point, total_dose_limit_gy=60.0)
        findings = ReferencePointRule(params).evaluate(edge_plan)
        errors = [f for f in findings if f.severity == Severity.ERROR]
        assert [f.message for f in errors] == [
            "Total reference point dose (60.00 Gy) is incorrect: Total+0.1=60.10 Gy"
        ]

    def test_missing_limit_is_warning(self, edge_plan, params):
        edge_plan.primary_reference_point = replace(edge_plan.primary_reference_point, daily_dose_limit_gy=None)
        findings = ReferencePointRule(params).evaluate(edge_plan)
        warnings = [f for f in findings if f.severity == Severity.WARNING]
        assert [f.message for f in warnings] == ["Daily reference point dose limit is not available"]

    def test_no_primary_point(self, edge_plan, params):
        edge_plan.primary_reference_point = None
        findings = ReferencePointRule(params).evaluate(edge_plan)
        assert findings[-1].severity == Severity.ERROR
        assert findings[-1].message == "No primary reference point found in plan"
        assert not by_category(findings, "Dose.Prescription")

    def test_non_prefixed_points_skip_type_check(self, edge_plan, params):
        edge_plan.reference_points.append(ReferencePoint("Calc_Point", point_type="Site"))
        findings = ReferencePointRule(params).evaluate(edge_plan)
        assert not any("Calc_Point" in f.message for f in findings)


class TestPrescription:
    """Test plan dose against the linked prescription."""

    def test_matching_prescription(self, edge_plan, params):
        rx = by_category(ReferencePointRule(params).evaluate(edge_plan), "Dose.Prescription")
        assert [f.severity for f in rx] == [Severity.INFO, Severity.INFO]
        assert rx[0].message == "Plan dose (60.00 Gy) matches prescription dose (60.00 Gy)"

    def test_total_dose_mismatch(self, edge_plan, params):
        edge_plan.prescription = Prescription("Rx", (PrescriptionTarget("PTV", 2.0, 35),))
        rx = by_category(ReferencePointRule(params).evaluate(edge_plan), "Dose.Prescription")
        assert rx[0].severity == Severity.ERROR
        assert rx[0].message == "Plan dose (60.00 Gy) does not match prescription dose (70.00 Gy)"
        assert rx[1].severity == Severity.INFO

    def test_highest_dose_target_is_used(self, edge_plan, params):
        edge_plan.prescription = Prescription(
            "Rx",
            (PrescriptionTarget("PTV_low", 1.8, 30), PrescriptionTarget("PTV_high", 2.0, 30)),
        )
        rx = by_category(ReferencePointRule(params).evaluate(edge_plan), "Dose.Prescription")
        assert all(f.severity == Severity.INFO for f in rx)

    def test_unlinked_prescription_is_warning(self, edge_plan, params):
        edge_plan.prescription = None
        (rx,) = by_category(ReferencePointRule(params).evaluate(edge_plan), "Dose.Prescription")
        assert rx.severity == Severity.WARNING
        assert rx.message == "This plan is not linked to the Prescription"

    def test_prescription_without_targets(self, edge_plan, params):
        edge_plan.prescription = Prescription("Rx")
        (rx,) = by_category(ReferencePointRule(params).evaluate(edge_plan), "Dose.Prescription")
        assert rx.message == "No dose values found in prescription targets"
