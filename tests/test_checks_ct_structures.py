"""Tests for CT, contrast, fixation and planning-structure rules."""

import numpy as np
import pytest

from crosscheck.checks import (
    ContrastStructureRule,
    CTAndPatientRule,
    FixationRule,
    PlanningStructuresRule,
    UserOriginMarkerRule,
)
from crosscheck.checks.common import parse_hu_from_name
from crosscheck.checks.structures import sample_hu_inside
from crosscheck.rules import Severity
from plan_model.snapshot import ImageInfo, StructureSet

SQUARE = [(-0.5, -0.5), (9.5, -0.5), (9.5, 9.5), (-0.5, 9.5)]


def by_category(findings, category):
    return [f for f in findings if f.category == category]


@pytest.fixture
def air_image():
    """10x10 voxel CT with two slices of uniform air at -800 HU."""
    return ImageInfo(
        image_id="CT_1",
        series_comment="Pelvis",
        imaging_device_id="CT130265",
        user_origin_mm=(0.0, -150.0, 0.0),
        hu=np.full((2, 10, 10), -800.0),
    )


class TestUserOrigin:
    """Test the user origin offsets of the CT."""

    def test_centered_origin_is_valid(self, edge_plan, params):
        findings = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.UserOrigin")
        assert [f.severity for f in findings] == [Severity.INFO] * 3
        assert findings[2].message == "User Origin Z coordinate (15.0 cm) is within limits"

    def test_lateral_offset_is_warning(self, edge_plan, params):
        edge_plan.image.user_origin_mm = (6.0, -150.0, 0.0)
        findings = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.UserOrigin")
        assert findings[0].severity == Severity.WARNING
        assert findings[0].message == "User Origin X coordinate (0.6 cm) is outside acceptable limits"

    def test_table_height_out_of_range(self, edge_plan, params):
        edge_plan.image.user_origin_mm = (0.0, -50.0, 0.0)
        findings = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.UserOrigin")
        assert findings[2].severity == Severity.WARNING
        assert findings[2].message == "User Origin Z coordinate (5.0 cm) is outside limits (8 to 50 cm)"

    def test_unknown_origin_is_warning(self, edge_plan, params):
        edge_plan.image.user_origin_mm = None
        (finding,) = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.UserOrigin")
        assert finding.severity == Severity.WARNING
        assert finding.message == "User Origin is not available for image 'CT_1'"

    def test_no_image_gives_no_findings(self, edge_plan, params):
        edge_plan.structure_set.image = None
        assert CTAndPatientRule(params).evaluate(edge_plan) == []

@pytest.fixture
def marker_plan(edge_plan, polygon_factory):
    """Edge plan on an 82 mm air CT (2.5 mm pixels, 2 mm slices) with skin markers.

    BODY is an 80 mm square centered on the user origin (0, 0, 0), which
    falls on slice 1. Markers at 1500 HU sit on the left (x=-40), right
    (x=40) and upper (y=-40, supine) skin points.
    """
    hu = np.full((3, 41, 41), -1000.0)
    hu[1, 20, 4] = 1500.0    # left
    hu[1, 20, 36] = 1500.0   # right
    hu[1, 4, 20] = 1500.0    # upper
    image = ImageInfo(
        image_id="CT_1",
        series_comment="Pelvis",
        imaging_device_id="CT130265",
        origin_mm=(-50.0, -50.0, -2.0),
        resolution_mm=(2.5, 2.5, 2.0),
        user_origin_mm=(0.0, 0.0, 0.0),
        hu=hu,
    )
    body = polygon_factory("BODY", [(-40.0, -40.0), (40.0, -40.0), (40.0, 40.0), (-40.0, 40.0)])
    body.dicom_type = "EXTERNAL"
    edge_plan.structure_set = StructureSet("CT_1", image=image, structures=[body])
    return edge_plan


class TestUserOriginMarkers:
    """Test detection of the three radiopaque markers at the user origin."""

    def test_three_markers_detected(self, marker_plan, params):
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.category == "CT.UserOrigin"
        assert finding.severity == Severity.INFO
        assert finding.message == "3 of 3 markers detected in 5 mm radius around User origin placement"

    def test_missing_upper_marker_is_warning(self, marker_plan, params):
        marker_plan.image.hu[1, 4, 20] = -1000.0
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.severity == Severity.WARNING
        assert finding.message == (
            "2 of 3 markers detected in 5 mm radius around User origin placement. "
            "Upper marker(s) not found (on screen direction)"
        )

    def test_marker_beyond_radius_is_not_detected(self, marker_plan, params):
        marker_plan.image.hu[1, 20, 4] = -1000.0
        marker_plan.image.hu[1, 20, 7] = 1500.0   # 7.5 mm from the left skin point
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.severity == Severity.WARNING
        assert "Left marker(s) not found" in finding.message

    def test_marker_on_adjacent_slice_is_detected(self, marker_plan, params):
        marker_plan.image.hu[1, 20, 4] = -1000.0
        marker_plan.image.hu[0, 20, 4] = 1500.0   # 2 mm away along z
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.severity == Severity.INFO

    def test_prone_upper_marker_is_posterior(self, marker_plan, params):
        marker_plan.treatment_orientation = "Head First-Prone"
        marker_plan.image.hu[1, 4, 20] = -1000.0
        marker_plan.image.hu[1, 36, 20] = 1500.0
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.severity == Severity.INFO

    def test_threshold_comes_from_config(self, marker_plan, effective):
        effective["params"]["CT_PATIENT_CONFIG"]["marker_threshold_hu"] = 2000.0
        (finding,) = UserOriginMarkerRule(effective["params"]).evaluate(marker_plan)
        assert finding.message.startswith("0 of 3 markers detected")
        assert "Left/Right/Upper marker(s) not found" in finding.message

    def test_origin_outside_ct_is_error(self, marker_plan, params):
        marker_plan.image.user_origin_mm = (0.0, 0.0, 18.0)
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.severity == Severity.ERROR
        assert finding.message == (
            "User Origin Z coordinate vs CT zero (slice 10, image has 3 slices) "
            "is outside acceptable limits"
        )

    def test_body_must_be_external(self, marker_plan, params):
        marker_plan.structures[0].dicom_type = "ORGAN"
        (finding,) = UserOriginMarkerRule(params).evaluate(marker_plan)
        assert finding.severity == Severity.WARNING
        assert finding.message == (
            "Cannot validate user origin markers: BODY structure (type EXTERNAL) not found"
        )

    def test_without_ct_voxels_gives_nothing(self, edge_plan, params):
        assert edge_plan.image.hu is None
        assert UserOriginMarkerRule(params).evaluate(edge_plan) == []



class TestImagingDevice:
    """Test the HU curve selection for head and non-head series."""

    def test_non_head_series(self, edge_plan, params):
        (curve,) = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.Curve")
        assert curve.severity == Severity.INFO
        assert curve.message == "Correct imaging device 'CT130265' used for non-head CT series"

    def test_head_series_requires_head_curve(self, edge_plan, params):
        edge_plan.image.series_comment = "Head"
        (curve,) = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.Curve")
        assert curve.severity == Severity.ERROR
        assert curve.message == (
            "Incorrect imaging device 'CT130265' used. Expected: 'CT130265 HEAD' "
            "for head scan (CT series: 'Head')"
        )

    def test_head_and_neck_is_not_head(self, edge_plan, params):
        edge_plan.image.series_comment = "Head and Neck"
        (curve,) = by_category(CTAndPatientRule(params).evaluate(edge_plan), "CT.Curve")
        assert curve.severity == Severity.INFO


class TestContrast:
    """Test the contrast structure requirement."""

    def test_no_contrast_study_gives_nothing(self, edge_plan, params):
        assert ContrastStructureRule(params).evaluate(edge_plan) == []

    def test_contrast_without_structure_is_warning(self, edge_plan, params):
        edge_plan.image.study_comment = "Pelvis with contrast"
        (finding,) = ContrastStructureRule(params).evaluate(edge_plan)
        assert finding.severity == Severity.WARNING
        assert finding.category == "Structure.Contrast"

    def test_contrast_with_structure(self, edge_plan, params, polygon_factory):
        edge_plan.image.study_comment = "CONTRAST"
        edge_plan.structure_set.structures.append(polygon_factory("z_Contrast_100HU", SQUARE))
        (finding,) = ContrastStructureRule(params).evaluate(edge_plan)
        assert finding.severity == Severity.INFO
        assert finding.message == "Study contains contrast imaging and z_Contrast* structure exists"


class TestFixation:
    """Test required fixation structures and density overrides."""

    def test_parse_hu_from_name(self):
        assert parse_hu_from_name("z_AltaHD_-390HU") == -390.0
        assert parse_hu_from_name("z_Air_-800hu") == -800.0
        assert parse_hu_from_name("z_AltaHD") is None

    def test_halcyon_complete(self, halcyon_plan, params):
        findings = FixationRule(params).evaluate(halcyon_plan)
        assert all(f.severity == Severity.INFO for f in findings)
        assert len(by_category(findings, "Fixation.Structures")) == 4
        density = by_category(findings, "Fixation.Density")
        assert [f.message for f in density] == [
            "Structure 'z_AltaHD_-390HU' has correct density override (-390 HU)",
            "Structure 'z_AltaLD_-800HU' has correct density override (-800 HU)",
        ]

    def test_missing_required_structure(self, halcyon_plan, params):
        halcyon_plan.structure_set.structures = [
            s for s in halcyon_plan.structures if s.struct_id != "CouchInterior"
        ]
        findings = FixationRule(params).evaluate(halcyon_plan)
        errors = [f for f in findings if f.severity == Severity.ERROR]
        assert [f.message for f in errors] == ["Required Halcyon structure 'CouchInterior*' is missing"]

    def test_wrong_density_override(self, halcyon_plan, params):
        halcyon_plan.structure_set.find("z_AltaHD_-390HU").assigned_hu = -400.0
        density = by_category(FixationRule(params).evaluate(halcyon_plan), "Fixation.Density")
        assert density[0].severity == Severity.ERROR
        assert density[0].message == (
            "Structure 'z_AltaHD_-390HU' has incorrect density override: -400 HU (expected: -390 HU)"
        )

    def test_missing_density_override(self, halcyon_plan, params):
        halcyon_plan.structure_set.find("z_AltaLD_-800HU").assigned_hu = None
        density = by_category(FixationRule(params).evaluate(halcyon_plan), "Fixation.Density")
        assert density[1].message == (
            "Structure 'z_AltaLD_-800HU' has no density override assigned (expected: -800 HU)"
        )

    def test_edge_has_no_required_structures(self, edge_plan, params):
        assert FixationRule(params).evaluate(edge_plan) == []


class TestAirStructures:
    """Test z_Air density overrides and the CT voxel scan."""

    def test_sample_hu_inside_uses_step(self, polygon_factory, air_image):
        s = polygon_factory("z_Air_-800HU", SQUARE, slices=(0, 1))
        values = sample_hu_inside(s, air_image, step_xy=2, step_z=2)
        # 5 x 5 voxels on slice 0 only
        assert values.shape == (25,)
        assert np.all(values == -800.0)

    def test_sample_without_ct_is_empty(self, polygon_factory, air_image):
        air_image.hu = None
        s = polygon_factory("z_Air_-800HU", SQUARE, slices=(0,))
        assert sample_hu_inside(s, air_image).size == 0

    def test_uniform_air_passes(self, edge_plan, params, polygon_factory, air_image):
        edge_plan.structure_set.image = air_image
        edge_plan.structure_set.structures.append(
            polygon_factory("z_Air_-800HU", SQUARE, slices=(0,), assigned_hu=-800.0)
        )
        findings = PlanningStructuresRule(params).evaluate(edge_plan)
        assert [(f.message, f.severity) for f in findings] == [
            ("Air structure 'z_Air_-800HU' has correct density override (-800 HU)", Severity.INFO),
            ("Air structure 'z_Air_-800HU': 0.0% of voxels exceed -775 HU (within 5% limit)", Severity.INFO),
        ]
        assert all(f.category == "PlanningStructures.z_Air Density" for f in findings)

    def test_dense_voxels_exceed_limit(self, edge_plan, params, polygon_factory, air_image):
        air_image.hu[0, 0:4, :] = 0.0
        edge_plan.structure_set.image = air_image
        edge_plan.structure_set.structures.append(
            polygon_factory("z_Air_-800HU", SQUARE, slices=(0,), assigned_hu=-800.0)
        )
        findings = PlanningStructuresRule(params).evaluate(edge_plan)
        assert findings[1].severity == Severity.WARNING
        assert findings[1].message == (
            "Air structure 'z_Air_-800HU': 40.0% of voxels exceed -775 HU (exceeds 5% limit)"
        )

    def test_without_ct_only_override_is_checked(self, edge_plan, params, polygon_factory):
        edge_plan.structure_set.structures.append(
            polygon_factory("z_Air_-800HU", SQUARE, slices=(0,), assigned_hu=-700.0)
        )
        (finding,) = PlanningStructuresRule(params).evaluate(edge_plan)
        assert finding.severity == Severity.ERROR
