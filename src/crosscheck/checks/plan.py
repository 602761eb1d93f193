# src/crosscheck/checks/plan.py

"""
Reglas a nivel de curso / plan y los grupos que estructuran el árbol.

    RootGroup
      ├─ CourseRule
      └─ PlanGroup            (+ Plan.Info al final: orientación, gating DIBH)
           ├─ CTAndPatientRule, ContrastStructureRule, DoseRule
           ├─ FieldsGroup
           ├─ ReferencePointRule, FixationRule, CollisionRule
           └─ OptimizationRule, PlanningStructuresRule

El árbol concreto lo arma crosscheck.engine.build_rule_tree().
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from plan_model.snapshot import PlanSnapshot
from crosscheck.config import (
    get_course_config,
    get_machine_label,
    get_optimization_config,
    get_plan_info_config,
)
from crosscheck.rules import Finding, RuleGroup, Severity
from .common import ConfiguredRule


# =====================================================
# Grupos
# =====================================================

class RootGroup(RuleGroup):
    """Raíz única del árbol de reglas."""
    name = "RootGroup"


class PlanGroup(RuleGroup):
    """
    Grupo de reglas del plan. Tras evaluar a sus hijos añade los
    hallazgos `Plan.Info` (orientación y gating para planes DIBH).
    """
    name = "PlanGroup"
    category = "Plan.Info"

    def __init__(self, params: Optional[Dict[str, Any]] = None, children=None):
        super().__init__(children=children)
        self._rule = ConfiguredRule(params, name="PlanInfo")
        self.params = self._rule.params

    def after(self, plan: PlanSnapshot) -> List[Finding]:
        cfg = get_plan_info_config(self.params)
        results: List[Finding] = []

        orientation = plan.treatment_orientation or ""
        is_standard = orientation.lower() == cfg["standard_orientation"].lower()
        msg = f"Treatment orientation: {orientation}"
        if not is_standard:
            msg += " (non-standard orientation)"
        results.append(
            self._finding(msg, Severity.INFO if is_standard else Severity.WARNING)
        )

        # Gating obligatorio si la imagen / set de estructuras es DIBH
        profile = self._rule.machine_profile(plan)
        if profile in cfg["gating_profiles"] and plan.treatment_beams:
            keyword = cfg["gating_keyword"].upper()
            ss = plan.structure_set
            image = plan.image
            labels = [
                image.image_id if image else "",
                ss.structure_set_id if ss else "",
                image.series_comment if image else "",
            ]
            if any(keyword in (label or "").upper() for label in labels):
                results.append(
                    self._check(
                        plan.use_gating,
                        "Gating is correctly enabled for DIBH plan",
                        "Gating should be enabled for DIBH plan",
                    )
                )

        return results


# =====================================================
# Curso
# =====================================================

class CourseRule(ConfiguredRule):
    name = "CourseRule"
    category = "Course"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        course_id = plan.course_id
        if not course_id:
            return []
        pattern = get_course_config(self.params)["id_pattern"]
        ok = re.match(pattern, course_id) is not None
        return [
            self._check(
                ok,
                f"Course ID '{course_id}' follows the required format (RT[n]_*)",
                f"Course ID '{course_id}' does not start with (RT[n]_*)",
            )
        ]


# =====================================================
# Optimización
# =====================================================

class OptimizationRule(ConfiguredRule):
    """
    Edge: Jaw Tracking debe estar activo. Planes SRS en Edge: el
    Aperture Shape Controller debe ser 'High' o 'Very High'.
    """
    name = "OptimizationRule"
    category = "Plan.Optimization"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        if not plan.beams:
            return []
        cfg = get_optimization_config(self.params)
        profile = self.machine_profile(plan)
        label = get_machine_label(profile, self.params)
        results: List[Finding] = []

        if profile in cfg["jaw_tracking_profiles"]:
            if plan.jaw_tracking_used is None:
                results.append(
                    self._finding(
                        f"Cannot determine Jaw Tracking usage for {label} plan",
                        Severity.WARNING,
                    )
                )
            else:
                results.append(
                    self._check(
                        plan.jaw_tracking_used,
                        f"Jaw Tracking is used for {label} plan",
                        f"Jaw Tracking is NOT used for {label} plan",
                        fail_severity=Severity.WARNING,
                    )
                )

        if profile in cfg["asc_profiles"] and plan.is_srs:
            asc = plan.calculation_options.get(cfg["asc_option_key"])
            if asc is None:
                results.append(
                    self._finding(
                        f"Cannot determine Aperture Shape Controller setting for {label} SRS plan",
                        Severity.WARNING,
                    )
                )
            else:
                valid = cfg["asc_valid_values"]
                results.append(
                    self._check(
                        asc in valid,
                        f"Aperture Shape Controller is set to '{asc}' for {label} SRS plan",
                        f"Aperture Shape Controller is set to '{asc}' - "
                        f"not {' or '.join(repr(v) for v in valid)} for {label} SRS plans",
                        fail_severity=Severity.WARNING,
                    )
                )

        return results
