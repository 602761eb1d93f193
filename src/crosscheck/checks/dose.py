# src/crosscheck/checks/dose.py

from __future__ import annotations

from typing import Dict, List

from plan_model.snapshot import PlanSnapshot, ReferencePoint
from crosscheck.config import get_dose_config, get_reference_point_config
from crosscheck.rules import Finding, Severity
from .common import ConfiguredRule, fmt_num


# =====================================================
# Dose.Grid / Dose.Technique / Dose.DoseRate
# =====================================================

class DoseRule(ConfiguredRule):
    """
    Checks sobre la dosis calculada. Sin grid de dosis no hay nada que
    revisar y la regla no devuelve hallazgos.
    """
    name = "DoseRule"
    category = "Dose"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        if not plan.has_dose:
            return []
        cfg = get_dose_config(self.params)
        results: List[Finding] = [self._grid(plan, cfg)]
        results.extend(self._technique(plan, cfg))
        results.extend(self._dose_rate(plan, cfg))
        return results

    def _grid(self, plan: PlanSnapshot, cfg: Dict) -> Finding:
        grid_cm = float(plan.dose_grid_resolution_mm) / 10.0
        srs = plan.is_srs
        limit = float(cfg["grid_max_cm_srs"] if srs else cfg["grid_max_cm"])
        if srs:
            ok_msg = f"Dose grid size ({grid_cm:.3f} cm) is valid for SRS plan"
            fail_msg = f"Dose grid size ({grid_cm:.3f} cm) is too large (should be ≤ {limit:g} cm for SRS plans)"
        else:
            ok_msg = f"Dose grid size ({grid_cm:.3f} cm) is valid"
            fail_msg = f"Dose grid size ({grid_cm:.3f} cm) is too large (should be ≤ {limit:g} cm)"
        return self._check(grid_cm <= limit, ok_msg, fail_msg, category="Dose.Grid")

    def _technique(self, plan: PlanSnapshot, cfg: Dict) -> List[Finding]:
        dpf = plan.dose_per_fraction_gy
        threshold = float(cfg["srs_dose_per_fraction_gy"])
        if dpf is None or dpf < threshold:
            return []
        return [
            self._check(
                b.is_srs,
                f"Field '{b.beam_id}' correctly uses SRS technique for ≥{threshold:g}Gy/fraction ({dpf:.2f} Gy)",
                f"Field '{b.beam_id}' should use SRS technique for ≥{threshold:g}Gy/fraction ({dpf:.2f} Gy)",
                category="Dose.Technique",
                is_per_item=True,
            )
            for b in plan.treatment_beams
        ]

    def _dose_rate(self, plan: PlanSnapshot, cfg: Dict) -> List[Finding]:
        machine_rates = cfg["expected_dose_rates"].get(self.machine_profile(plan) or "")
        if machine_rates is None:
            return []
        dpf = plan.dose_per_fraction_gy
        high_dose = dpf is not None and dpf >= float(cfg["srs_dose_per_fraction_gy"])
        if machine_rates.get("high_dose_only") and not high_dose:
            return []

        results: List[Finding] = []
        for b in plan.treatment_beams:
            expected = machine_rates["rates"].get(b.energy)
            if expected is None:
                continue
            rate = b.dose_rate
            results.append(
                self._check(
                    rate is not None and abs(float(rate) - float(expected)) < 0.5,
                    f"Field '{b.beam_id}' has correct dose rate ({fmt_num(rate)} MU/min) for {b.energy}",
                    f"Field '{b.beam_id}' has incorrect dose rate ({fmt_num(rate)} MU/min) for {b.energy} "
                    f"(should be {fmt_num(expected)} MU/min)",
                    category="Dose.DoseRate",
                    is_per_item=True,
                )
            )
        return results


# =====================================================
# Dose.ReferencePoint / Dose.Prescription
# =====================================================

class ReferencePointRule(ConfiguredRule):
    """
    Punto de referencia primario: nombre RP_*, tipo Target y límites de
    dosis = dosis del plan + 0.1 Gy (total, diario y por sesión).

    La prescripción se revisa solo cuando existe punto primario.
    """
    name = "ReferencePointRule"
    category = "Dose.ReferencePoint"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        cfg = get_reference_point_config(self.params)
        prefix = cfg["name_prefix"]
        required_type = cfg["required_type"]
        results: List[Finding] = []

        for rp in plan.reference_points:
            if not rp.point_id.upper().startswith(prefix.upper()):
                continue
            results.append(
                self._check(
                    rp.point_type == required_type,
                    f"Reference point '{rp.point_id}' correctly has type '{required_type}'",
                    f"Reference point '{rp.point_id}' should have type '{required_type}' "
                    f"(current: {rp.point_type})",
                    fail_severity=Severity.WARNING,
                )
            )

        primary = plan.primary_reference_point
        if primary is None:
            results.append(self._finding("No primary reference point found in plan", Severity.ERROR))
            return results

        results.append(
            self._check(
                primary.point_id.upper().startswith(prefix.upper()),
                f"Primary reference point name '{primary.point_id}' follows naming convention ({prefix}*)",
                f"Primary reference point name '{primary.point_id}' should start with '{prefix}'",
            )
        )
        results.extend(self._limits(plan, primary, cfg))
        results.extend(self._prescription(plan, cfg))
        return results

    def _limits(self, plan: PlanSnapshot, rp: ReferencePoint, cfg: Dict) -> List[Finding]:
        offset = float(cfg["limit_offset_gy"])
        tol = float(cfg["limit_tolerance_gy"])
        rows = [
            ("Total", rp.total_dose_limit_gy, plan.total_dose_gy, "Total+{o:g}={e:.2f} Gy"),
            ("Daily", rp.daily_dose_limit_gy, plan.dose_per_fraction_gy, "Fraction+{o:g}=({e:.2f} Gy)"),
            ("Session", rp.session_dose_limit_gy, plan.dose_per_fraction_gy, "Fraction+{o:g}=({e:.2f} Gy)"),
        ]
        results: List[Finding] = []
        for label, actual, planned, template in rows:
            if actual is None or planned is None:
                results.append(
                    self._finding(
                        f"{label} reference point dose limit is not available",
                        Severity.WARNING,
                    )
                )
                continue
            expected = float(planned) + offset
            detail = template.format(o=offset, e=expected)
            results.append(
                self._check(
                    abs(float(actual) - expected) <= tol,
                    f"{label} reference point dose ({actual:.2f} Gy) is correct: {detail}",
                    f"{label} reference point dose ({actual:.2f} Gy) is incorrect: {detail}",
                )
            )
        return results

    def _prescription(self, plan: PlanSnapshot, cfg: Dict) -> List[Finding]:
        category = "Dose.Prescription"
        rx = plan.prescription
        if rx is None:
            return [
                self._finding(
                    "This plan is not linked to the Prescription",
                    Severity.WARNING,
                    category=category,
                )
            ]

        target = rx.highest_dose_target()
        if target is None or target.total_dose_gy <= 0:
            return [
                self._finding(
                    "No dose values found in prescription targets",
                    Severity.WARNING,
                    category=category,
                )
            ]

        tol = float(cfg["prescription_tolerance_gy"])
        plan_total = float(plan.total_dose_gy or 0.0)
        plan_dpf = float(plan.dose_per_fraction_gy or 0.0)
        rx_total = target.total_dose_gy
        rx_dpf = target.dose_per_fraction_gy

        total_ok = abs(plan_total - rx_total) < tol
        dpf_ok = abs(plan_dpf - rx_dpf) < tol
        return [
            self._check(
                total_ok,
                f"Plan dose ({plan_total:.2f} Gy) matches prescription dose ({rx_total:.2f} Gy)",
                f"Plan dose ({plan_total:.2f} Gy) does not match prescription dose ({rx_total:.2f} Gy)",
                category=category,
            ),
            self._check(
                dpf_ok,
                f"Plan fraction dose ({plan_dpf:.2f} Gy) matches prescription dose per fraction ({rx_dpf:.2f} Gy)",
                f"Plan fraction dose ({plan_dpf:.2f} Gy) does not match prescription dose per fraction ({rx_dpf:.2f} Gy)",
                category=category,
            ),
        ]
