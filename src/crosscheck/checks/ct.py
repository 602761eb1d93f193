# src/crosscheck/checks/ct.py

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import numpy as np

from plan_model.snapshot import ImageInfo, PlanSnapshot
from crosscheck.config import get_contrast_config, get_ct_patient_config
from crosscheck.rules import Finding, Severity
from .common import ConfiguredRule


# =====================================================
# CT.UserOrigin / CT.Curve
# =====================================================

class CTAndPatientRule(ConfiguredRule):
    """
    Origen de usuario y curva HU (dispositivo de imagen) del CT.

    El CT se mide en DICOM: x lateral, y vertical (altura de mesa),
    z longitudinal. En los mensajes Y/Z siguen la convención del TPS:
    "Y" es el z DICOM y "Z" es -y DICOM.
    """
    name = "CTAndPatientRule"
    category = "CT"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        image = plan.image
        if image is None:
            return []
        cfg = get_ct_patient_config(self.params)
        return self._user_origin(image, cfg) + self._curve(image, cfg)

    def _user_origin(self, image: ImageInfo, cfg: Dict) -> List[Finding]:
        category = "CT.UserOrigin"
        if image.user_origin_mm is None:
            return [
                self._finding(
                    f"User Origin is not available for image '{image.image_id}'",
                    Severity.WARNING,
                    category=category,
                )
            ]

        x, y, z = (float(v) for v in image.user_origin_mm)
        max_cm = float(cfg["user_origin_max_offset_cm"])
        y_lo, y_hi = (float(v) for v in cfg["user_origin_y_range_mm"])

        results: List[Finding] = []
        for label, value in (("X", x), ("Y", z)):
            cm = value / 10.0
            results.append(
                self._check(
                    abs(cm) <= max_cm,
                    f"User Origin {label} coordinate ({cm:.1f} cm) is within {max_cm:g} cm limits",
                    f"User Origin {label} coordinate ({cm:.1f} cm) is outside acceptable limits",
                    fail_severity=Severity.WARNING,
                    category=category,
                )
            )

        height_cm = -y / 10.0
        results.append(
            self._check(
                y_lo <= y <= y_hi,
                f"User Origin Z coordinate ({height_cm:.1f} cm) is within limits",
                f"User Origin Z coordinate ({height_cm:.1f} cm) is outside limits "
                f"({-y_hi / 10:g} to {-y_lo / 10:g} cm)",
                fail_severity=Severity.WARNING,
                category=category,
            )
        )
        return results

    def _curve(self, image: ImageInfo, cfg: Dict) -> List[Finding]:
        comment = image.series_comment or ""
        low = comment.lower()
        is_head = low.startswith(cfg["head_series_prefix"].lower()) and not any(
            low.startswith(ex.lower()) for ex in cfg["head_series_exclusions"]
        )
        expected = cfg["head_imaging_device"] if is_head else cfg["default_imaging_device"]
        device = image.imaging_device_id or ""
        kind = "head" if is_head else "non-head"
        return [
            self._check(
                device == expected,
                f"Correct imaging device '{device}' used for {kind} CT series",
                f"Incorrect imaging device '{device}' used. Expected: '{expected}' "
                f"for {kind} scan (CT series: '{comment}')",
                category="CT.Curve",
            )
        ]


# =====================================================
# Structure.Contrast
# =====================================================

class ContrastStructureRule(ConfiguredRule):
    """Estudio con contraste → debe existir una estructura z_Contrast*."""
    name = "ContrastStructureRule"
    category = "Structure.Contrast"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        image = plan.image
        if image is None:
            return []
        cfg = get_contrast_config(self.params)
        if cfg["study_keyword"].upper() not in (image.study_comment or "").upper():
            return []

        prefix = cfg["structure_prefix"]
        has_structure = bool(plan.structure_set.with_prefix(prefix))
        return [
            self._check(
                has_structure,
                f"Study contains contrast imaging and {prefix}* structure exists",
                f"Study comment contains '{cfg['study_keyword']}' but {prefix}* structure is missing. "
                f"Consider adding {prefix} structure if needed.",
                fail_severity=Severity.WARNING,
            )
        ]


# =====================================================
# CT.UserOrigin: marcadores radiopacos
# =====================================================

def _point_in_polygon(poly: np.ndarray, x: float, y: float) -> bool:
    """Regla par-impar sobre una sola polilínea (N, 3)."""
    px, py = poly[:, 0], poly[:, 1]
    qx, qy = np.roll(px, -1), np.roll(py, -1)
    crosses = (py > y) != (qy > y)
    with np.errstate(divide="ignore", invalid="ignore"):
        x_cross = px + (y - py) * (qx - px) / (qy - py)
    return bool(np.count_nonzero(crosses & (x < x_cross)) % 2)


def _contour_around(polys: List[np.ndarray], x: float, y: float) -> Optional[np.ndarray]:
    """Polilínea que contiene (x, y); si ninguna, la que tiene el vértice más cercano."""
    if not polys:
        return None
    for poly in polys:
        if _point_in_polygon(poly, x, y):
            return poly
    return min(polys, key=lambda p: float(np.min(np.hypot(p[:, 0] - x, p[:, 1] - y))))


def _line_crossings(poly: np.ndarray, axis: int, value: float) -> np.ndarray:
    """
    Cortes del contorno con la recta coord[axis] = value.

    Devuelve la otra coordenada (y si axis=0, x si axis=1) de cada corte.
    Segmentos casi paralelos a la recta (< 0.001 mm) se ignoran.
    """
    other = 1 - axis
    a0 = poly[:, axis]
    a1 = np.roll(a0, -1)
    b0 = poly[:, other]
    b1 = np.roll(b0, -1)
    crosses = ((a0 <= value) & (a1 >= value)) | ((a0 >= value) & (a1 <= value))
    crosses &= np.abs(a1 - a0) >= 0.001
    t = (value - a0[crosses]) / (a1[crosses] - a0[crosses])
    return b0[crosses] + t * (b1[crosses] - b0[crosses])


class UserOriginMarkerRule(ConfiguredRule):
    """
    Busca los 3 balines radiopacos colocados en el origen de usuario.

    En el corte del origen de usuario se cortan los bordes del BODY con
    la horizontal (marcadores izquierdo / derecho) y con la vertical
    (marcador superior: y mínima en supino, máxima en prono). Un marcador
    cuenta como detectado si algún vóxel a menos de `marker_radius_mm`
    del punto de piel supera `marker_threshold_hu`.

    Necesita el volumen HU y el origen de usuario; sin ellos no emite nada.
    """
    name = "UserOriginMarkerRule"
    category = "CT.UserOrigin"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        image = plan.image
        if image is None or image.hu is None or image.user_origin_mm is None:
            return []
        cfg = get_ct_patient_config(self.params)

        body_id = cfg["marker_body_id"].upper()
        body_type = cfg["marker_body_dicom_type"]
        body = next(
            (
                s for s in plan.structures
                if s.struct_id.upper() == body_id and s.dicom_type == body_type
            ),
            None,
        )
        if body is None:
            return [
                self._finding(
                    f"Cannot validate user origin markers: {cfg['marker_body_id']} structure "
                    f"(type {body_type}) not found",
                    Severity.WARNING,
                )
            ]

        ux, uy, uz = (float(v) for v in image.user_origin_mm)
        dz = float(image.resolution_mm[2])
        slice_idx = int(round((uz - float(image.origin_mm[2])) / dz))
        if not 0 <= slice_idx < image.z_size:
            return [
                self._finding(
                    f"User Origin Z coordinate vs CT zero (slice {slice_idx}, image has "
                    f"{image.z_size} slices) is outside acceptable limits",
                    Severity.ERROR,
                )
            ]

        radius = float(cfg["marker_radius_mm"])
        threshold = float(cfg["marker_threshold_hu"])
        skin_points = self._skin_points(
            body.contours_by_slice.get(slice_idx, []),
            ux,
            uy,
            "Supine" in (plan.treatment_orientation or ""),
        )
        detected = [
            label for label, (px, py) in skin_points.items()
            if self._has_marker(image, px, py, slice_idx, radius, threshold)
        ]

        placement = f"in {radius:.0f} mm radius around User origin placement"
        if len(detected) == 3:
            return [self._finding(f"3 of 3 markers detected {placement}", Severity.INFO)]

        missing = [m for m in ("Left", "Right", "Upper") if m not in detected]
        return [
            self._finding(
                f"{len(detected)} of 3 markers detected {placement}. "
                f"{'/'.join(missing)} marker(s) not found (on screen direction)",
                Severity.WARNING,
            )
        ]

    @staticmethod
    def _skin_points(
        polys: List[np.ndarray],
        ux: float,
        uy: float,
        supine: bool,
    ) -> Dict[str, Tuple[float, float]]:
        """Puntos de piel (x, y) donde se esperan los marcadores."""
        contour = _contour_around(polys, ux, uy)
        if contour is None:
            return {}

        points: Dict[str, Tuple[float, float]] = {}
        xs = _line_crossings(contour, axis=1, value=uy)
        left = xs[xs < ux]
        right = xs[xs > ux]
        if left.size and right.size:
            points["Left"] = (float(left.max()), uy)
            points["Right"] = (float(right.min()), uy)

        ys = _line_crossings(contour, axis=0, value=ux)
        if ys.size:
            points["Upper"] = (ux, float(ys.min() if supine else ys.max()))
        return points

    @staticmethod
    def _has_marker(
        image: ImageInfo,
        px: float,
        py: float,
        slice_idx: int,
        radius: float,
        threshold: float,
    ) -> bool:
        """¿Algún vóxel >= threshold dentro de la esfera de radio `radius` mm?"""
        hu = image.hu
        ox, oy, _ = (float(v) for v in image.origin_mm)
        dx, dy, dz = (float(v) for v in image.resolution_mm)
        nz, ny, nx = hu.shape

        cx = int(round((px - ox) / dx))
        cy = int(round((py - oy) / dy))
        rx = int(np.ceil(radius / dx))
        ry = int(np.ceil(radius / dy))
        rz = int(np.ceil(radius / dz))

        oz_, oy_, ox_ = np.ogrid[-rz:rz + 1, -ry:ry + 1, -rx:rx + 1]
        iz, iy, ix = slice_idx + oz_, cy + oy_, cx + ox_
        inside = np.sqrt((ox_ * dx) ** 2 + (oy_ * dy) ** 2 + (oz_ * dz) ** 2) <= radius
        inside = (
            inside
            & (iz >= 0) & (iz < nz)
            & (iy >= 0) & (iy < ny)
            & (ix >= 0) & (ix < nx)
        )
        if not inside.any():
            return False

        kz, ky, kx = np.nonzero(inside)
        values = hu[iz.ravel()[kz], iy.ravel()[ky], ix.ravel()[kx]]
        return bool(np.any(values >= threshold))
