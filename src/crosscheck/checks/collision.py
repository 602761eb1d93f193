# src/crosscheck/checks/collision.py

from __future__ import annotations

from typing import List

from plan_model.geometry import describe_sectors
from plan_model.snapshot import PlanSnapshot
from crosscheck.collision import CollisionRiskScanner, classify_collision_risk, risk_suffix
from crosscheck.config import get_collision_config, get_crosscheck_logger
from crosscheck.rules import Finding, Severity
from .common import ConfiguredRule, structures_with_prefixes

logger = get_crosscheck_logger("crosscheck.checks")


class CollisionRule(ConfiguredRule):
    """
    Riesgo de colisión gantry / anillo vs paciente y fijaciones.

    Una sola regla para todas las máquinas: radio, umbrales, modo
    (clearance / distance), filtro angular y prefijos de estructuras
    salen de COLLISION_CONFIG[perfil].

    Orden de precondiciones:
      1. mesa rotada en algún campo → Info "manual verification required"
      2. máquina no reconocida      → Info "skipped"
      3. ninguna estructura con puntos → Warning (no se puede evaluar)
    """
    name = "CollisionRule"
    category = "Collision"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        if plan.has_couch_rotation:
            return [
                self._finding(
                    "Collision assessment skipped for plans with couch rotation - "
                    "manual verification required",
                    Severity.INFO,
                )
            ]

        profile = self.machine_profile(plan)
        cfg = get_collision_config(profile, self.params)
        if cfg is None:
            detected = plan.machine_id or "unknown"
            return [
                self._finding(
                    f"Collision validation skipped - not a recognized machine (detected: {detected})",
                    Severity.INFO,
                )
            ]

        # perfil reconocido: hay al menos un campo con isocentro
        center = plan.isocenter_mm

        sweeps = [b.sweep for b in plan.treatment_beams if b.control_points]
        scanner = CollisionRiskScanner.for_sweeps(
            center,
            float(cfg["boundary_radius_mm"]),
            sweeps,
            arc_margin=float(cfg["arc_margin_deg"]),
            static_margin=float(cfg["static_margin_deg"]),
            angular_filter=bool(cfg["angular_filter"]),
            slice_stride=int(cfg["slice_stride"]),
        )

        candidates = structures_with_prefixes(plan.structures, cfg["structure_prefixes"])
        scans = scanner.scan(candidates)
        worst = scanner.worst(scans)
        logger.debug(
            "Colisión %s: %d candidata(s), %d con puntos, sectores=%s",
            profile,
            len(candidates),
            len(scans),
            describe_sectors(scanner.sectors),
        )
        if worst is None:
            if any(not s.is_empty for s in candidates) and scanner.angular_filter_active:
                return [
                    self._finding(
                        "Cannot assess collision risk - no contour points within treated "
                        f"gantry angles ({describe_sectors(scanner.sectors)})",
                        Severity.WARNING,
                    )
                ]
            return [self._finding(cfg["missing_message"], Severity.WARNING)]

        mode = cfg["mode"]
        if mode == "clearance":
            value = worst.clearance_cm(scanner.boundary_radius_mm)
            message = (
                f"Clearance {value:.1f} cm between fixation device '{worst.structure_id}' "
                f"({worst.direction} edge) and {cfg['boundary_label']}"
            )
        else:
            value = worst.max_distance_cm
            message = (
                f"Max distance {value:.1f} cm from isocenter to fixation device "
                f"'{worst.structure_id}' ({worst.direction} edge)"
            )
            if scanner.angular_filter_active:
                message += f" within treated gantry angles (+/-{float(cfg['arc_margin_deg']):g} deg)"
            else:
                message += " - full arc check"

        severity = classify_collision_risk(
            value,
            mode,
            float(cfg["error_cm"]),
            float(cfg["warning_cm"]),
        )
        return [self._finding(message + risk_suffix(severity), severity)]
