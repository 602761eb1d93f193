"""Shared pytest fixtures: in-memory plan snapshots for the cross-check."""

import numpy as np
import pytest

from crosscheck.config import build_effective_config
from plan_model.geometry import GantryDirection
from plan_model.snapshot import (
    Beam,
    ControlPoint,
    ImageInfo,
    JawPositions,
    PlanSnapshot,
    Prescription,
    PrescriptionTarget,
    ReferencePoint,
    Structure,
    StructureSet,
)

EDGE_ID = "TrueBeamSN6368"
HALCYON_ID = "Halcyon2741"


def make_beam(
    beam_id,
    start,
    end=None,
    direction=GantryDirection.NONE,
    couch=0.0,
    collimator=30.0,
    machine_id=EDGE_ID,
    energy="6X",
    dose_rate=600.0,
    technique=None,
    is_setup_field=False,
    isocenter_mm=(0.0, 0.0, 0.0),
    jaws=None,
    tolerance_table=None,
):
    """Beam with two control points (start / end gantry angles)."""
    end = start if end is None else end
    if technique is None:
        technique = "STATIC" if direction == GantryDirection.NONE else "ARC"
    cps = [
        ControlPoint(start, couch, collimator, jaws=jaws, energy=energy, dose_rate=dose_rate),
        ControlPoint(end, couch, collimator, jaws=jaws, energy=energy, dose_rate=dose_rate),
    ]
    return Beam(
        beam_id=beam_id,
        control_points=cps,
        is_setup_field=is_setup_field,
        machine_id=machine_id,
        energy=energy,
        dose_rate=dose_rate,
        technique=technique,
        gantry_direction=direction,
        isocenter_mm=isocenter_mm,
        tolerance_table=tolerance_table,
    )


def polygon_structure(struct_id, xy_points, slices=(0, 1, 2), assigned_hu=None):
    """Same (x, y) polygon repeated on every listed slice (z = slice index)."""
    contours = {
        z: [np.array([[x, y, float(z)] for x, y in xy_points], dtype=float)]
        for z in slices
    }
    return Structure(struct_id=struct_id, contours_by_slice=contours, assigned_hu=assigned_hu)


def reaching_structure(struct_id, reach_mm, slices=(0, 1, 2)):
    """Diamond whose furthest vertex sits at (reach_mm, 0): 'left' of the isocenter."""
    return polygon_structure(
        struct_id,
        [(reach_mm, 0.0), (0.0, 100.0), (-100.0, 0.0), (0.0, -100.0)],
        slices=slices,
    )


@pytest.fixture
def effective():
    """Fresh effective config (defaults, no overrides file)."""
    return build_effective_config()


@pytest.fixture
def params(effective):
    return effective["params"]


@pytest.fixture
def beam_factory():
    return make_beam


@pytest.fixture
def structure_factory():
    return reaching_structure


@pytest.fixture
def edge_plan():
    """Edge VMAT plan with two full arcs, BODY reaching 36 cm, clean metadata.

    Returns:
        PlanSnapshot that should produce no Error findings.
    """
    image = ImageInfo(
        image_id="CT_1",
        series_comment="Pelvis",
        imaging_device_id="CT130265",
        study_comment="",
        user_origin_mm=(0.0, -150.0, 0.0),
    )
    structures = StructureSet(
        structure_set_id="CT_1",
        image=image,
        structures=[reaching_structure("BODY", 360.0)],
    )
    beams = [
        make_beam("181CW179-A", 181.0, 179.0, GantryDirection.CLOCKWISE, collimator=30.0,
                  tolerance_table="EDGE"),
        make_beam("179CCW181-B", 179.0, 181.0, GantryDirection.COUNTER_CLOCKWISE, collimator=330.0,
                  tolerance_table="EDGE"),
        make_beam("CBCT", 0.0, is_setup_field=True, energy="6X"),
        make_beam("SF-0", 0.0, is_setup_field=True, energy="6X"),
    ]
    rp = ReferencePoint(
        "RP_Prostate",
        total_dose_limit_gy=60.1,
        daily_dose_limit_gy=2.1,
        session_dose_limit_gy=2.1,
    )
    return PlanSnapshot(
        plan_id="Prostate_VMAT",
        beams=beams,
        course_id="RT1_Prostate",
        total_dose_gy=60.0,
        dose_per_fraction_gy=2.0,
        number_of_fractions=30,
        dose_grid_resolution_mm=2.0,
        primary_reference_point=rp,
        reference_points=[rp],
        prescription=Prescription("Rx", (PrescriptionTarget("PTV", 2.0, 30),)),
        structure_set=structures,
        jaw_tracking_used=True,
    )


@pytest.fixture
def halcyon_plan():
    """Halcyon plan with static fields, one kVCBCT and required fixation structures."""
    jaws_a = JawPositions(x1=-50.0, x2=20.0, y1=-100.0, y2=100.0)
    jaws_b = JawPositions(x1=-10.0, x2=60.0, y1=-100.0, y2=100.0)
    image = ImageInfo(
        image_id="CT_H",
        series_comment="Thorax",
        imaging_device_id="CT130265",
        user_origin_mm=(0.0, -120.0, 0.0),
    )
    structures = [
        reaching_structure("BODY", 300.0),
        polygon_structure("z_AltaHD_-390HU", [(0, -200), (10, -200), (10, -210)], assigned_hu=-390.0),
        polygon_structure("z_AltaLD_-800HU", [(0, -220), (10, -220), (10, -230)], assigned_hu=-800.0),
        polygon_structure("CouchSurface", [(-200, -240), (200, -240), (200, -250)]),
        polygon_structure("CouchInterior", [(-190, -250), (190, -250), (190, -260)]),
    ]
    beams = [
        make_beam("G180-A", 180.0, machine_id=HALCYON_ID, energy="6X-FFF", collimator=15.0,
                  jaws=jaws_a, tolerance_table="HAL"),
        make_beam("G180-B", 180.0, machine_id=HALCYON_ID, energy="6X-FFF", collimator=15.0,
                  jaws=jaws_b, tolerance_table="HAL"),
        make_beam("kVCBCT", 0.0, machine_id=HALCYON_ID, energy="6X-FFF", is_setup_field=True),
    ]
    rp = ReferencePoint(
        "RP_Lung",
        total_dose_limit_gy=50.1,
        daily_dose_limit_gy=2.1,
        session_dose_limit_gy=2.1,
    )
    return PlanSnapshot(
        plan_id="Lung_3D",
        beams=beams,
        course_id="RT2_Lung",
        total_dose_gy=50.0,
        dose_per_fraction_gy=2.0,
        number_of_fractions=25,
        dose_grid_resolution_mm=2.0,
        primary_reference_point=rp,
        reference_points=[rp],
        prescription=Prescription("Rx", (PrescriptionTarget("PTV", 2.0, 25),)),
        structure_set=StructureSet("CT_H", image=image, structures=structures),
    )


@pytest.fixture
def polygon_factory():
    return polygon_structure
