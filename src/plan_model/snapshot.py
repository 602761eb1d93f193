# src/plan_model/snapshot.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from plan_model.geometry import (
    ANGLE_TOLERANCE_DEGREES,
    ArcSweep,
    GantryDirection,
)


# ---------------------------------------------------------
# Puntos de control y haces (campos de tratamiento / setup)
# ---------------------------------------------------------

@dataclass(frozen=True)
class JawPositions:
    """Posición de mandíbulas en mm (convención IEC, X1/Y1 negativos)."""
    x1: float
    x2: float
    y1: float
    y2: float


@dataclass(frozen=True)
class ControlPoint:
    """
    Punto de control de un campo.

    Ángulos en grados. `jaws` puede ser None si el plan no las trae
    (p.ej. DICOM sin BeamLimitingDevicePositionSequence en ese CP).
    """
    gantry_angle: float
    couch_angle: float = 0.0
    collimator_angle: float = 0.0
    jaws: Optional[JawPositions] = None
    energy: Optional[str] = None
    dose_rate: Optional[float] = None


@dataclass
class Beam:
    """
    Campo del plan (tratamiento o setup).

    - beam_id: nombre visible del campo ("G180-A", "181CW179-B", "kVCBCT"...)
    - energy: string tal como lo muestra el TPS ("6X", "6X-FFF", "10X-FFF")
    - technique: "STATIC", "ARC", "SRS ARC", "SRS STATIC"...
    - isocenter_mm: (x, y, z) en coordenadas DICOM de paciente
    """
    beam_id: str
    control_points: List[ControlPoint]
    is_setup_field: bool = False
    machine_id: str = ""
    energy: str = ""
    dose_rate: Optional[float] = None
    technique: str = "STATIC"
    gantry_direction: GantryDirection = GantryDirection.NONE
    isocenter_mm: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    tolerance_table: Optional[str] = None

    @property
    def first_control_point(self) -> ControlPoint:
        if not self.control_points:
            raise ValueError(f"El campo '{self.beam_id}' no tiene puntos de control")
        return self.control_points[0]

    @property
    def last_control_point(self) -> ControlPoint:
        if not self.control_points:
            raise ValueError(f"El campo '{self.beam_id}' no tiene puntos de control")
        return self.control_points[-1]

    @property
    def gantry_start(self) -> float:
        return self.first_control_point.gantry_angle

    @property
    def gantry_end(self) -> float:
        return self.last_control_point.gantry_angle

    @property
    def couch_angle(self) -> float:
        return self.first_control_point.couch_angle

    @property
    def collimator_angle(self) -> float:
        return self.first_control_point.collimator_angle

    @property
    def sweep(self) -> ArcSweep:
        """Recorrido del gantry (primer y último CP + sentido de giro)."""
        return ArcSweep(self.gantry_start, self.gantry_end, self.gantry_direction)

    @property
    def is_srs(self) -> bool:
        return "SRS" in (self.technique or "").upper()

    @property
    def is_fff(self) -> bool:
        return "FFF" in (self.energy or "").upper()


# ---------------------------------------------------------
# Dosis: puntos de referencia y prescripción
# ---------------------------------------------------------

@dataclass(frozen=True)
class ReferencePoint:
    """
    Punto de referencia de dosis.

    Los límites (Gy) pueden no estar disponibles (None): las reglas lo
    reportan como dato faltante, nunca lanzan.
    """
    point_id: str
    point_type: str = "Target"
    total_dose_limit_gy: Optional[float] = None
    daily_dose_limit_gy: Optional[float] = None
    session_dose_limit_gy: Optional[float] = None


@dataclass(frozen=True)
class PrescriptionTarget:
    target_id: str
    dose_per_fraction_gy: float
    number_of_fractions: int

    @property
    def total_dose_gy(self) -> float:
        return self.dose_per_fraction_gy * self.number_of_fractions


@dataclass(frozen=True)
class Prescription:
    prescription_id: str
    targets: Tuple[PrescriptionTarget, ...] = ()

    def highest_dose_target(self) -> Optional[PrescriptionTarget]:
        """Target con mayor dosis total (desempate: mayor dosis/fracción)."""
        if not self.targets:
            return None
        return max(
            self.targets,
            key=lambda t: (t.total_dose_gy, t.dose_per_fraction_gy),
        )


# ---------------------------------------------------------
# Estructuras e imagen
# ---------------------------------------------------------

@dataclass
class Structure:
    """
    Estructura contorneada.

    contours_by_slice: índice de corte → lista de polilíneas, cada una un
    np.ndarray (N, 3) con puntos (x, y, z) en mm, coordenadas DICOM.
    assigned_hu: override de HU asignado en el TPS (None si no tiene).
    """
    struct_id: str
    dicom_type: str = ""
    contours_by_slice: Dict[int, List[np.ndarray]] = field(default_factory=dict)
    assigned_hu: Optional[float] = None

    def __post_init__(self):
        checked: Dict[int, List[np.ndarray]] = {}
        for z_idx, polys in self.contours_by_slice.items():
            arrs = []
            for poly in polys:
                a = np.asarray(poly, dtype=float)
                if a.size == 0:
                    continue
                if a.ndim != 2 or a.shape[1] != 3:
                    raise ValueError(
                        f"Contorno de '{self.struct_id}' en corte {z_idx} "
                        f"con forma {a.shape}; se espera (N, 3)"
                    )
                arrs.append(a)
            if arrs:
                checked[int(z_idx)] = arrs
        self.contours_by_slice = checked

    @property
    def is_empty(self) -> bool:
        return not self.contours_by_slice

    def slice_indices(self) -> List[int]:
        return sorted(self.contours_by_slice)

    def contains_point_xy(self, z_idx: int, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """
        Test punto-en-contorno (regla par-impar) para arrays x, y en un corte.

        Varias polilíneas en el mismo corte se combinan con XOR, de modo
        que los huecos (anillos interiores) quedan fuera.
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        inside = np.zeros(np.broadcast(x, y).shape, dtype=bool)

        for poly in self.contours_by_slice.get(z_idx, []):
            px = poly[:, 0]
            py = poly[:, 1]
            qx = np.roll(px, -1)
            qy = np.roll(py, -1)
            for x0, y0, x1, y1 in zip(px, py, qx, qy):
                if y0 == y1:
                    continue
                cond = (y0 > y) != (y1 > y)
                x_cross = x0 + (y - y0) * (x1 - x0) / (y1 - y0)
                inside ^= cond & (x < x_cross)
        return inside


@dataclass
class ImageInfo:
    """
    Serie de imagen (CT) asociada al set de estructuras.

    - hu: volumen [z, y, x] en HU (None si no se cargó el CT)
    - origin_mm: posición (x, y, z) del primer vóxel
    - resolution_mm: (dx, dy, dz)
    - user_origin_mm: origen de usuario en coordenadas DICOM (None si no se conoce)
    """
    image_id: str
    series_comment: str = ""
    imaging_device_id: str = ""
    study_comment: str = ""
    origin_mm: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    resolution_mm: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    user_origin_mm: Optional[Tuple[float, float, float]] = None
    hu: Optional[np.ndarray] = None

    @property
    def z_size(self) -> int:
        return 0 if self.hu is None else int(self.hu.shape[0])


@dataclass
class StructureSet:
    structure_set_id: str
    image: Optional[ImageInfo] = None
    structures: List[Structure] = field(default_factory=list)

    def find(self, struct_id: str) -> Optional[Structure]:
        for s in self.structures:
            if s.struct_id == struct_id:
                return s
        return None

    def with_prefix(self, prefix: str, case_sensitive: bool = False) -> List[Structure]:
        """Estructuras cuyo id empieza por `prefix` (por defecto sin distinguir mayúsculas)."""
        if case_sensitive:
            return [s for s in self.structures if s.struct_id.startswith(prefix)]
        p = prefix.lower()
        return [s for s in self.structures if s.struct_id.lower().startswith(p)]


# ---------------------------------------------------------
# Snapshot completo del plan (solo lectura)
# ---------------------------------------------------------

@dataclass
class PlanSnapshot:
    """
    Vista de solo lectura de un plan, tal como la entrega el host.

    Attributes
    ----------
    plan_id, course_id : str
        Identificadores del plan y del curso.
    beams : List[Beam]
        Campos de tratamiento y de setup, en el orden del plan.
    total_dose_gy, dose_per_fraction_gy, number_of_fractions :
        Dosis planificada (pueden ser None si el plan no las define).
    dose_grid_resolution_mm : Optional[float]
        Resolución del grid de dosis; None = dosis no calculada.
    calculation_options : Dict[str, str]
        Opciones del modelo de cálculo/optimización (p.ej.
        "VMAT/ApertureShapeController" → "High").
    """
    plan_id: str
    beams: List[Beam] = field(default_factory=list)
    course_id: str = ""
    treatment_orientation: str = "Head First-Supine"
    total_dose_gy: Optional[float] = None
    dose_per_fraction_gy: Optional[float] = None
    number_of_fractions: Optional[int] = None
    dose_grid_resolution_mm: Optional[float] = None
    primary_reference_point: Optional[ReferencePoint] = None
    reference_points: List[ReferencePoint] = field(default_factory=list)
    prescription: Optional[Prescription] = None
    structure_set: Optional[StructureSet] = None
    use_gating: bool = False
    jaw_tracking_used: Optional[bool] = None
    calculation_options: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def treatment_beams(self) -> List[Beam]:
        return [b for b in self.beams if not b.is_setup_field]

    @property
    def setup_beams(self) -> List[Beam]:
        return [b for b in self.beams if b.is_setup_field]

    @property
    def machine_id(self) -> str:
        """Máquina del primer campo de tratamiento (o del primero que haya)."""
        for b in self.treatment_beams or self.beams:
            if b.machine_id:
                return b.machine_id
        return ""

    @property
    def isocenter_mm(self) -> Optional[Tuple[float, float, float]]:
        """Isocentro del primer campo de tratamiento; si no hay, el del primer campo."""
        beams = self.treatment_beams or self.beams
        if not beams:
            return None
        return beams[0].isocenter_mm

    @property
    def has_dose(self) -> bool:
        return self.dose_grid_resolution_mm is not None

    @property
    def has_couch_rotation(self) -> bool:
        """
        True si algún campo (incluidos los de setup) tiene la mesa rotada en
        su primer punto de control: |ángulo| > 0.1°. En escala IEC la mesa a
        350° es una rotación de 10°, así que no se usa distancia circular.
        """
        return any(
            b.control_points and abs(b.couch_angle) > ANGLE_TOLERANCE_DEGREES
            for b in self.beams
        )

    @property
    def is_srs(self) -> bool:
        return any(b.is_srs for b in self.treatment_beams)

    @property
    def image(self) -> Optional[ImageInfo]:
        return self.structure_set.image if self.structure_set else None

    @property
    def structures(self) -> List[Structure]:
        return self.structure_set.structures if self.structure_set else []
