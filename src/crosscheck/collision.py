# src/crosscheck/collision.py

"""
collision.py
============

Escaneo radial de contornos para estimar riesgo de colisión entre el
gantry (o el anillo del Halcyon) y el paciente / dispositivos de fijación.

Idea
----
- Para cada estructura candidata se recorren todas las polilíneas de
  todos los cortes y se calcula la distancia 2D de cada vértice al
  isocentro en el plano axial (se ignora z, que es el eje de giro).
- Si la cobertura angular del tratamiento es parcial, solo cuentan los
  vértices cuyo ángulo (atan2 respecto al isocentro) cae en los sectores
  tratados (ver plan_model.geometry.build_sectors).
- Se guarda la distancia máxima por estructura y el vértice que la
  produce; la estructura "peor" es la de menor clearance.

Todo el cálculo es vectorizado con numpy: una matriz (N, 3) por
estructura en lugar de un bucle por punto.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from plan_model.geometry import (
    AngularSector,
    ArcSweep,
    build_sectors,
    direction_label,
    is_full_coverage,
)
from plan_model.snapshot import Structure
from crosscheck.config import get_crosscheck_logger
from crosscheck.rules import Severity

logger = get_crosscheck_logger("crosscheck.collision")


# =====================================================
# Resultado por estructura
# =====================================================

@dataclass(frozen=True)
class RadialScanResult:
    """
    Máxima distancia radial (mm) de una estructura al isocentro.

    - furthest_point_mm: vértice (x, y, z) que produce el máximo
    - direction: etiqueta gruesa (left/right/anterior/posterior)
    - points_considered: vértices que sobrevivieron al filtro angular
    """
    structure_id: str
    max_distance_mm: float
    furthest_point_mm: Tuple[float, float, float]
    direction: str
    points_considered: int

    @property
    def max_distance_cm(self) -> float:
        return self.max_distance_mm / 10.0

    def clearance_cm(self, boundary_radius_mm: float) -> float:
        return (boundary_radius_mm - self.max_distance_mm) / 10.0


# =====================================================
# Escáner
# =====================================================

class CollisionRiskScanner:
    """
    Escáner radial alrededor de un centro (isocentro) en el plano x/y.

    Parameters
    ----------
    center_mm : (x, y, z)
        Centro de rotación. z no se usa.
    boundary_radius_mm : float
        Radio del límite de rotación (anillo / cabezal).
    sectors : lista de AngularSector o None
        None = sin filtro angular (360°).
    slice_stride : int
        Solo se escanean cortes con índice múltiplo de `slice_stride`.
    """

    def __init__(
        self,
        center_mm: Sequence[float],
        boundary_radius_mm: float,
        sectors: Optional[Sequence[AngularSector]] = None,
        slice_stride: int = 1,
    ):
        center = np.asarray(center_mm, dtype=float).reshape(-1)
        if center.shape[0] < 2 or not np.all(np.isfinite(center[:2])):
            raise ValueError(f"Centro de rotación inválido: {center_mm!r}")
        if not math.isfinite(boundary_radius_mm) or boundary_radius_mm <= 0:
            raise ValueError(f"Radio de límite inválido: {boundary_radius_mm!r}")
        if int(slice_stride) < 1:
            raise ValueError(f"slice_stride debe ser >= 1 (recibido {slice_stride!r})")

        self.center_xy = (float(center[0]), float(center[1]))
        self.boundary_radius_mm = float(boundary_radius_mm)
        self.sectors: Optional[List[AngularSector]] = list(sectors) if sectors else None
        self.slice_stride = int(slice_stride)

    @classmethod
    def for_sweeps(
        cls,
        center_mm: Sequence[float],
        boundary_radius_mm: float,
        sweeps: Sequence[ArcSweep],
        arc_margin: float,
        static_margin: float,
        angular_filter: bool = True,
        slice_stride: int = 1,
    ) -> "CollisionRiskScanner":
        """
        Construye el escáner decidiendo el filtro angular:

          - angular_filter=False, o cobertura >= 180° → sin filtro (360°)
          - si no, sectores de build_sectors con los márgenes dados

        Si no hay sectores (sin campos) tampoco se filtra: se revisa
        todo el círculo.
        """
        sectors: Optional[List[AngularSector]] = None
        if angular_filter and sweeps and not is_full_coverage(sweeps):
            sectors = build_sectors(sweeps, arc_margin=arc_margin, static_margin=static_margin)
            logger.debug(
                "Cobertura parcial: %d sector(es) %s",
                len(sectors),
                [(round(s.start, 1), round(s.end, 1)) for s in sectors],
            )
        else:
            logger.debug("Escaneo sin filtro angular (360°)")
        return cls(center_mm, boundary_radius_mm, sectors=sectors or None, slice_stride=slice_stride)

    @property
    def angular_filter_active(self) -> bool:
        return self.sectors is not None

    # -------------------------------------------------
    # Helpers vectorizados
    # -------------------------------------------------

    def _stack_points(self, structure: Structure) -> np.ndarray:
        """Todos los vértices de los cortes escaneados, en orden de corte."""
        chunks = [
            poly
            for z_idx in structure.slice_indices()
            if z_idx % self.slice_stride == 0
            for poly in structure.contours_by_slice[z_idx]
        ]
        if not chunks:
            return np.empty((0, 3), dtype=float)
        return np.vstack(chunks)

    def _angular_mask(self, dx: np.ndarray, dy: np.ndarray) -> np.ndarray:
        angles = np.degrees(np.arctan2(dy, dx)) % 360.0
        angles = np.where(angles >= 360.0, 0.0, angles)
        mask = np.zeros(angles.shape, dtype=bool)
        for s in self.sectors or []:
            mask |= (angles >= s.start) & (angles <= s.end)
        return mask

    # -------------------------------------------------
    # API
    # -------------------------------------------------

    def scan_structure(self, structure: Structure) -> Optional[RadialScanResult]:
        """
        Distancia radial máxima de una estructura.

        Devuelve None si la estructura no tiene puntos, o si ninguno
        sobrevive al filtro angular.
        """
        pts = self._stack_points(structure)
        if pts.shape[0] == 0:
            logger.debug("'%s' sin puntos de contorno; se excluye", structure.struct_id)
            return None

        if not np.all(np.isfinite(pts)):
            raise ValueError(f"Contorno de '{structure.struct_id}' con coordenadas no finitas")

        cx, cy = self.center_xy
        dx = pts[:, 0] - cx
        dy = pts[:, 1] - cy

        if self.sectors is not None:
            keep = self._angular_mask(dx, dy)
            pts, dx, dy = pts[keep], dx[keep], dy[keep]
            if pts.shape[0] == 0:
                logger.debug("'%s' sin puntos en sectores tratados; se excluye", structure.struct_id)
                return None

        radial = np.hypot(dx, dy)
        i_max = int(np.argmax(radial))   # primera ocurrencia del máximo
        x, y, z = (float(v) for v in pts[i_max])

        return RadialScanResult(
            structure_id=structure.struct_id,
            max_distance_mm=float(radial[i_max]),
            furthest_point_mm=(x, y, z),
            direction=direction_label(float(dx[i_max]), float(dy[i_max])),
            points_considered=int(pts.shape[0]),
        )

    def scan(self, structures: Iterable[Structure]) -> List[RadialScanResult]:
        results: List[RadialScanResult] = []
        for s in structures:
            r = self.scan_structure(s)
            if r is not None:
                results.append(r)
        return results

    def worst(self, results: Sequence[RadialScanResult]) -> Optional[RadialScanResult]:
        """Menor clearance (= mayor distancia). En empate, la primera escaneada."""
        if not results:
            return None
        return min(results, key=lambda r: r.clearance_cm(self.boundary_radius_mm))


# =====================================================
# Clasificación de severidad
# =====================================================

def classify_collision_risk(
    value_cm: float,
    mode: str,
    error_cm: float,
    warning_cm: float,
) -> Severity:
    """
    mode="clearance": Error si value < error_cm, Warning si < warning_cm.
    mode="distance":  Error si value > error_cm, Warning si > warning_cm.
    """
    if mode == "clearance":
        if value_cm < error_cm:
            return Severity.ERROR
        if value_cm < warning_cm:
            return Severity.WARNING
        return Severity.INFO
    if mode == "distance":
        if value_cm > error_cm:
            return Severity.ERROR
        if value_cm > warning_cm:
            return Severity.WARNING
        return Severity.INFO
    raise ValueError(f"Modo de colisión desconocido: {mode!r}")


def risk_suffix(severity: Severity) -> str:
    if severity == Severity.ERROR:
        return " - potential collision risk"
    if severity == Severity.WARNING:
        return " - limited clearance"
    return ""
