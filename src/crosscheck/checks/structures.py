# src/crosscheck/checks/structures.py

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import numpy as np

from plan_model.snapshot import ImageInfo, PlanSnapshot, Structure
from crosscheck.config import (
    get_fixation_config,
    get_machine_label,
    get_planning_structures_config,
)
from crosscheck.rules import Finding, Severity
from .common import ConfiguredRule, fmt_num, parse_hu_from_name, structures_with_prefixes


# =====================================================
# Helpers internos
# =====================================================

def _density_finding(
    rule: ConfiguredRule,
    structure: Structure,
    expected_hu: float,
    tolerance: float,
    noun: str,
    category: str,
) -> Finding:
    """Override de HU asignado vs el valor codificado en el nombre."""
    sid = structure.struct_id
    assigned = structure.assigned_hu
    if assigned is None:
        return rule._finding(
            f"{noun} '{sid}' has no density override assigned (expected: {fmt_num(expected_hu)} HU)",
            Severity.ERROR,
            category=category,
        )
    return rule._check(
        abs(assigned - expected_hu) < tolerance,
        f"{noun} '{sid}' has correct density override ({fmt_num(assigned)} HU)",
        f"{noun} '{sid}' has incorrect density override: {fmt_num(assigned)} HU "
        f"(expected: {fmt_num(expected_hu)} HU)",
        category=category,
    )


def sample_hu_inside(
    structure: Structure,
    image: ImageInfo,
    step_xy: int = 2,
    step_z: int = 2,
) -> np.ndarray:
    """
    HU de los vóxeles (muestreados cada `step_xy` en x/y y cada `step_z`
    cortes) cuyo centro cae dentro del contorno de la estructura.

    Devuelve un array 1D (vacío si no hay CT o no hay vóxeles dentro).
    """
    hu = image.hu
    if hu is None or structure.is_empty:
        return np.empty(0, dtype=float)

    nz, ny, nx = hu.shape
    ox, oy, _ = image.origin_mm
    dx, dy, _ = image.resolution_mm
    ix = np.arange(0, nx, step_xy)
    iy = np.arange(0, ny, step_xy)
    xx, yy = np.meshgrid(ox + ix * dx, oy + iy * dy)   # (len(iy), len(ix))

    chunks: List[np.ndarray] = []
    for z_idx in range(0, nz, step_z):
        if z_idx not in structure.contours_by_slice:
            continue
        mask = structure.contains_point_xy(z_idx, xx, yy)
        if not mask.any():
            continue
        plane = hu[z_idx][np.ix_(iy, ix)]
        chunks.append(plane[mask].astype(float))

    if not chunks:
        return np.empty(0, dtype=float)
    return np.concatenate(chunks)


# =====================================================
# Fixation.Structures / Fixation.Density
# =====================================================

class FixationRule(ConfiguredRule):
    """
    Dispositivos de fijación:
      - estructuras obligatorias por máquina (Halcyon)
      - override de densidad igual al HU del nombre (z_AltaHD_-390HU)
    """
    name = "FixationRule"
    category = "Fixation"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        if plan.structure_set is None:
            return []
        cfg = get_fixation_config(self.params)
        profile = self.machine_profile(plan)
        results: List[Finding] = []

        required = cfg["required_prefixes"].get(profile or "")
        if required:
            label = get_machine_label(profile, self.params)
            for prefix in required:
                exists = bool(plan.structure_set.with_prefix(prefix))
                results.append(
                    self._check(
                        exists,
                        f"Required {label} structure '{prefix}*' exists",
                        f"Required {label} structure '{prefix}*' is missing",
                        category="Fixation.Structures",
                    )
                )

        tol = float(cfg["density_tolerance_hu"])
        for s in structures_with_prefixes(plan.structures, cfg["density_prefixes"]):
            expected = parse_hu_from_name(s.struct_id)
            if expected is None:
                continue
            results.append(_density_finding(self, s, expected, tol, "Structure", "Fixation.Density"))

        return results


# =====================================================
# PlanningStructures.z_Air Density
# =====================================================

class PlanningStructuresRule(ConfiguredRule):
    """
    Estructuras de aire z_Air_<v>HU: override = v y, muestreando el CT,
    como mucho un 5 % de vóxeles por encima de v + 25 HU.
    """
    name = "PlanningStructuresRule"
    category = "PlanningStructures.z_Air Density"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        if plan.structure_set is None:
            return []
        cfg = get_planning_structures_config(self.params)
        image = plan.image
        results: List[Finding] = []

        for s in plan.structure_set.with_prefix(cfg["air_prefix"]):
            expected = parse_hu_from_name(s.struct_id)
            if expected is None:
                continue
            results.append(
                _density_finding(
                    self, s, expected, float(cfg["density_tolerance_hu"]), "Air structure", self.category
                )
            )
            if image is not None:
                voxel = self._voxel_finding(s, image, expected, cfg)
                if voxel is not None:
                    results.append(voxel)
        return results

    def _voxel_finding(
        self,
        structure: Structure,
        image: ImageInfo,
        expected_hu: float,
        cfg: Dict,
    ) -> Optional[Finding]:
        values = sample_hu_inside(
            structure,
            image,
            step_xy=int(cfg["sample_step_xy"]),
            step_z=int(cfg["sample_step_z"]),
        )
        if values.size == 0:
            return None

        threshold = expected_hu + float(cfg["hu_margin"])
        pct, _ = _percent_above(values, threshold)
        limit = float(cfg["max_percent_above"])
        head = f"Air structure '{structure.struct_id}': {pct:.1f}% of voxels exceed {fmt_num(threshold)} HU"
        return self._check(
            pct <= limit,
            f"{head} (within {limit:g}% limit)",
            f"{head} (exceeds {limit:g}% limit)",
            fail_severity=Severity.WARNING,
        )


def _percent_above(values: np.ndarray, threshold: float) -> Tuple[float, int]:
    n_above = int(np.count_nonzero(values > threshold))
    return 100.0 * n_above / values.size, n_above
