# src/plan_model/dicom_snapshot.py

"""
Adaptador DICOM → PlanSnapshot.

Lee RTPLAN (+ RTSTRUCT, CT y RTDOSE opcionales) con pydicom y arma el
snapshot de solo lectura que consumen las reglas.

Lo que DICOM no transporta (límites de dosis de los puntos de referencia,
overrides de HU, origen de usuario, jaw tracking, curso) queda sin
definir y las reglas lo reportan como dato faltante.
"""

from __future__ import annotations

import os
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pydicom
from pydicom.errors import InvalidDicomError

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


PATIENT_POSITIONS: Dict[str, str] = {
    "HFS": "Head First-Supine",
    "HFP": "Head First-Prone",
    "FFS": "Feet First-Supine",
    "FFP": "Feet First-Prone",
    "HFDL": "Head First-Decubitus Left",
    "HFDR": "Head First-Decubitus Right",
    "FFDL": "Feet First-Decubitus Left",
    "FFDR": "Feet First-Decubitus Right",
}

_DIRECTIONS: Dict[str, GantryDirection] = {
    "CW": GantryDirection.CLOCKWISE,
    "CC": GantryDirection.COUNTER_CLOCKWISE,
    "CCW": GantryDirection.COUNTER_CLOCKWISE,
}


# =====================================================
# Helpers internos
# =====================================================

def _opt_float(ds, attr: str) -> Optional[float]:
    value = getattr(ds, attr, None)
    if value is None or value == "":
        return None
    return float(value)


def _jaws_from_cp(cp, previous: Optional[JawPositions]) -> Optional[JawPositions]:
    """
    Mandíbulas X/Y del punto de control. DICOM solo repite lo que cambia,
    así que lo ausente se hereda del CP anterior.
    """
    seq = getattr(cp, "BeamLimitingDevicePositionSequence", None)
    if not seq:
        return previous

    x = (previous.x1, previous.x2) if previous else None
    y = (previous.y1, previous.y2) if previous else None
    for dev in seq:
        kind = str(getattr(dev, "RTBeamLimitingDeviceType", "")).upper()
        pos = [float(v) for v in getattr(dev, "LeafJawPositions", [])]
        if len(pos) != 2:
            continue   # MLC
        if kind in ("X", "ASYMX"):
            x = (pos[0], pos[1])
        elif kind in ("Y", "ASYMY"):
            y = (pos[0], pos[1])
    if x is None or y is None:
        return previous
    return JawPositions(x1=x[0], x2=x[1], y1=y[0], y2=y[1])


def _energy_label(beam_ds, cp0) -> str:
    """'6X', '6X-FFF', '10X-FFF'... como lo muestra el TPS."""
    nominal = _opt_float(cp0, "NominalBeamEnergy")
    if nominal is None:
        return ""
    label = f"{nominal:g}X"
    for fm in getattr(beam_ds, "PrimaryFluenceModeSequence", []) or []:
        if str(getattr(fm, "FluenceModeID", "")).upper() in ("FFF", "SRS"):
            label += "-" + str(fm.FluenceModeID).upper()
            break
    return label


def _control_points(beam_ds) -> List[ControlPoint]:
    cps: List[ControlPoint] = []
    gantry = couch = collimator = 0.0
    jaws: Optional[JawPositions] = None
    energy: Optional[str] = None
    dose_rate: Optional[float] = None

    for cp in getattr(beam_ds, "ControlPointSequence", []) or []:
        gantry = _opt_float(cp, "GantryAngle") if hasattr(cp, "GantryAngle") else gantry
        couch = _opt_float(cp, "PatientSupportAngle") if hasattr(cp, "PatientSupportAngle") else couch
        collimator = (
            _opt_float(cp, "BeamLimitingDeviceAngle")
            if hasattr(cp, "BeamLimitingDeviceAngle")
            else collimator
        )
        jaws = _jaws_from_cp(cp, jaws)
        if hasattr(cp, "DoseRateSet"):
            dose_rate = _opt_float(cp, "DoseRateSet")
        if hasattr(cp, "NominalBeamEnergy"):
            energy = _energy_label(beam_ds, cp)
        cps.append(
            ControlPoint(
                gantry_angle=gantry or 0.0,
                couch_angle=couch or 0.0,
                collimator_angle=collimator or 0.0,
                jaws=jaws,
                energy=energy,
                dose_rate=dose_rate,
            )
        )
    return cps


def _tolerance_labels(ds_plan) -> Dict[int, str]:
    labels: Dict[int, str] = {}
    for tt in getattr(ds_plan, "ToleranceTableSequence", []) or []:
        number = getattr(tt, "ToleranceTableNumber", None)
        if number is not None:
            labels[int(number)] = str(getattr(tt, "ToleranceTableLabel", ""))
    return labels


def _beam_from_dataset(beam_ds, tolerance_labels: Dict[int, str]) -> Beam:
    cps = _control_points(beam_ds)
    cp0_ds = beam_ds.ControlPointSequence[0] if cps else None

    direction = GantryDirection.NONE
    if cp0_ds is not None:
        direction = _DIRECTIONS.get(str(getattr(cp0_ds, "GantryRotationDirection", "")).upper(), GantryDirection.NONE)

    iso = (0.0, 0.0, 0.0)
    if cp0_ds is not None and hasattr(cp0_ds, "IsocenterPosition"):
        iso = tuple(float(v) for v in cp0_ds.IsocenterPosition)

    beam_type = str(getattr(beam_ds, "BeamType", "STATIC")).upper()
    technique = "ARC" if direction != GantryDirection.NONE else "STATIC"
    if beam_type not in ("STATIC", "DYNAMIC"):
        technique = beam_type

    tt_number = getattr(beam_ds, "ReferencedToleranceTableNumber", None)
    delivery = str(getattr(beam_ds, "TreatmentDeliveryType", "TREATMENT")).upper()

    return Beam(
        beam_id=str(getattr(beam_ds, "BeamName", "") or f"Beam{getattr(beam_ds, 'BeamNumber', '')}"),
        control_points=cps,
        is_setup_field=delivery == "SETUP",
        machine_id=str(getattr(beam_ds, "TreatmentMachineName", "")),
        energy=(cps[0].energy or "") if cps else "",
        dose_rate=cps[0].dose_rate if cps else None,
        technique=technique,
        gantry_direction=direction,
        isocenter_mm=iso,
        tolerance_table=tolerance_labels.get(int(tt_number)) if tt_number is not None else None,
    )


def _dose_references(ds_plan, num_fx: Optional[int]) -> Tuple[List[ReferencePoint], List[PrescriptionTarget]]:
    points: List[ReferencePoint] = []
    targets: List[PrescriptionTarget] = []
    for dr in getattr(ds_plan, "DoseReferenceSequence", []) or []:
        desc = str(getattr(dr, "DoseReferenceDescription", "") or f"Ref{getattr(dr, 'DoseReferenceNumber', '')}")
        kind = str(getattr(dr, "DoseReferenceType", "")).upper()
        points.append(ReferencePoint(point_id=desc, point_type="Target" if kind == "TARGET" else kind.title()))
        rx = _opt_float(dr, "TargetPrescriptionDose")
        if kind == "TARGET" and rx is not None and num_fx:
            targets.append(PrescriptionTarget(desc, rx / num_fx, num_fx))
    return points, targets


# =====================================================
# CT / RTSTRUCT
# =====================================================

def image_from_ct_slices(ct_slices: Sequence) -> ImageInfo:
    """
    Apila una serie CT (datasets pydicom) en un volumen HU [z, y, x],
    ordenando por la z de ImagePositionPatient.
    """
    if not ct_slices:
        raise ValueError("Serie CT vacía")
    slices = sorted(ct_slices, key=lambda s: float(s.ImagePositionPatient[2]))
    first = slices[0]

    hu = np.stack(
        [
            s.pixel_array.astype(np.float32) * float(getattr(s, "RescaleSlope", 1.0))
            + float(getattr(s, "RescaleIntercept", 0.0))
            for s in slices
        ]
    )
    row_mm, col_mm = (float(v) for v in first.PixelSpacing)
    if len(slices) > 1:
        dz = float(slices[1].ImagePositionPatient[2]) - float(first.ImagePositionPatient[2])
    else:
        dz = float(getattr(first, "SliceThickness", 1.0))

    description = str(getattr(first, "SeriesDescription", ""))
    return ImageInfo(
        image_id=description or str(getattr(first, "SeriesInstanceUID", "")),
        series_comment=description,
        imaging_device_id="",
        study_comment=str(getattr(first, "StudyDescription", "")),
        origin_mm=tuple(float(v) for v in first.ImagePositionPatient),
        resolution_mm=(col_mm, row_mm, dz),
        user_origin_mm=None,
        hu=hu,
    )


def _slice_index(z: float, z_positions: Optional[np.ndarray]) -> int:
    if z_positions is None or z_positions.size == 0:
        return int(round(z))
    return int(np.argmin(np.abs(z_positions - z)))


def structures_from_rtstruct(ds_struct, image: Optional[ImageInfo] = None) -> StructureSet:
    """
    Contornos del RTSTRUCT agrupados por índice de corte del CT. Sin CT,
    el índice de corte es la z (mm) redondeada.
    """
    names: Dict[int, str] = {
        int(roi.ROINumber): str(roi.ROIName)
        for roi in getattr(ds_struct, "StructureSetROISequence", []) or []
    }
    types: Dict[int, str] = {
        int(obs.ReferencedROINumber): str(getattr(obs, "RTROIInterpretedType", ""))
        for obs in getattr(ds_struct, "RTROIObservationsSequence", []) or []
    }

    z_positions: Optional[np.ndarray] = None
    if image is not None and image.hu is not None:
        oz, dz = image.origin_mm[2], image.resolution_mm[2]
        z_positions = oz + dz * np.arange(image.z_size)

    structures: List[Structure] = []
    for roi in getattr(ds_struct, "ROIContourSequence", []) or []:
        number = int(roi.ReferencedROINumber)
        by_slice: Dict[int, List[np.ndarray]] = {}
        for contour in getattr(roi, "ContourSequence", []) or []:
            pts = np.asarray([float(v) for v in contour.ContourData], dtype=float).reshape(-1, 3)
            if pts.size == 0:
                continue
            by_slice.setdefault(_slice_index(float(pts[0, 2]), z_positions), []).append(pts)
        structures.append(
            Structure(
                struct_id=names.get(number, f"ROI{number}"),
                dicom_type=types.get(number, ""),
                contours_by_slice=by_slice,
            )
        )

    return StructureSet(
        structure_set_id=str(getattr(ds_struct, "StructureSetLabel", "")),
        image=image,
        structures=structures,
    )


# =====================================================
# API
# =====================================================

def plan_from_datasets(
    ds_plan,
    ds_struct=None,
    ct_slices: Optional[Sequence] = None,
    ds_dose=None,
    course_id: str = "",
) -> PlanSnapshot:
    """
    Construye un PlanSnapshot a partir de datasets pydicom ya leídos.
    """
    labels = _tolerance_labels(ds_plan)
    beams = [_beam_from_dataset(b, labels) for b in getattr(ds_plan, "BeamSequence", []) or []]

    num_fx: Optional[int] = None
    fgs = getattr(ds_plan, "FractionGroupSequence", None)
    if fgs:
        value = getattr(fgs[0], "NumberOfFractionsPlanned", None)
        num_fx = int(value) if value not in (None, "") else None

    points, targets = _dose_references(ds_plan, num_fx)
    total = max((t.total_dose_gy for t in targets), default=None)
    dpf = total / num_fx if total is not None and num_fx else None

    orientation = ""
    setups = getattr(ds_plan, "PatientSetupSequence", None)
    if setups:
        position = str(getattr(setups[0], "PatientPosition", "")).upper()
        orientation = PATIENT_POSITIONS.get(position, position)

    image = image_from_ct_slices(ct_slices) if ct_slices else None
    structure_set = structures_from_rtstruct(ds_struct, image) if ds_struct is not None else None

    grid_mm: Optional[float] = None
    if ds_dose is not None and hasattr(ds_dose, "PixelSpacing"):
        grid_mm = float(ds_dose.PixelSpacing[0])

    plan_label = str(getattr(ds_plan, "RTPlanLabel", "") or getattr(ds_plan, "RTPlanName", ""))
    return PlanSnapshot(
        plan_id=plan_label,
        beams=beams,
        course_id=course_id,
        treatment_orientation=orientation,
        total_dose_gy=total,
        dose_per_fraction_gy=dpf,
        number_of_fractions=num_fx,
        dose_grid_resolution_mm=grid_mm,
        primary_reference_point=next((p for p in points if p.point_type == "Target"), None),
        reference_points=points,
        prescription=Prescription(plan_label, tuple(targets)) if targets else None,
        structure_set=structure_set,
    )


def load_ct_folder(ct_folder: str) -> List:
    """Datasets CT de una carpeta (ignora lo que no sea DICOM CT)."""
    slices = []
    for fname in sorted(os.listdir(ct_folder)):
        path = os.path.join(ct_folder, fname)
        if not os.path.isfile(path):
            continue
        try:
            ds = pydicom.dcmread(path)
        except InvalidDicomError:
            continue
        if str(getattr(ds, "Modality", "")).upper() == "CT":
            slices.append(ds)
    return slices


def load_plan_snapshot(
    rtplan_path: str,
    rtstruct_path: Optional[str] = None,
    ct_folder: Optional[str] = None,
    rtdose_path: Optional[str] = None,
    course_id: str = "",
) -> PlanSnapshot:
    """
    Lee los archivos DICOM y construye el snapshot.

    Lanza FileNotFoundError si alguna ruta indicada no existe.
    """
    if not os.path.exists(rtplan_path):
        raise FileNotFoundError(f"No se encontró RTPLAN: {rtplan_path}")
    if rtstruct_path is not None and not os.path.exists(rtstruct_path):
        raise FileNotFoundError(f"No se encontró RTSTRUCT: {rtstruct_path}")
    if ct_folder is not None and not os.path.isdir(ct_folder):
        raise FileNotFoundError(f"No se encontró carpeta CT: {ct_folder}")
    if rtdose_path is not None and not os.path.exists(rtdose_path):
        raise FileNotFoundError(f"No se encontró RTDOSE: {rtdose_path}")

    ds_plan = pydicom.dcmread(rtplan_path)
    ds_struct = pydicom.dcmread(rtstruct_path) if rtstruct_path else None
    ct_slices = load_ct_folder(ct_folder) if ct_folder else None
    ds_dose = pydicom.dcmread(rtdose_path) if rtdose_path else None

    return plan_from_datasets(
        ds_plan,
        ds_struct=ds_struct,
        ct_slices=ct_slices,
        ds_dose=ds_dose,
        course_id=course_id,
    )
