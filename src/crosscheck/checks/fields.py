# src/crosscheck/checks/fields.py

from __future__ import annotations

import re
from collections import OrderedDict
from itertools import combinations
from typing import Dict, List, Optional

from plan_model.geometry import angular_difference
from plan_model.snapshot import Beam, PlanSnapshot
from crosscheck.config import (
    get_beam_energy_config,
    get_field_geometry_config,
    get_field_naming_config,
    get_machine_label,
    get_setup_fields_config,
)
from crosscheck.rules import Finding, RuleGroup, Severity
from .common import ConfiguredRule


class FieldsGroup(RuleGroup):
    """Nombres, geometría, campos de setup y energía."""
    name = "FieldsGroup"


# =====================================================
# Helpers internos
# =====================================================

def _rounded_gantry(angle: float, beam: Beam, naming_cfg: Dict) -> int:
    """
    Ángulo de gantry tal como debe aparecer en el nombre del campo.

    Se redondea a 0.1° y, en HyperArc, 180.1 → 181 y 179.9 → 179 (el
    gantry no se detiene en 180). Resto: redondeo al entero.
    """
    a = round(float(angle), 1)
    technique = (beam.technique or "").upper()
    if naming_cfg["hyperarc_technique"].upper() in technique:
        tol = float(naming_cfg["hyperarc_map_tolerance_deg"])
        for src, dst in naming_cfg["hyperarc_angle_map"]:
            if abs(a - float(src)) < tol:
                return int(dst)
    return int(round(a))


def _expected_name_ok(beam: Beam, has_couch: bool, naming_cfg: Dict) -> bool:
    start = _rounded_gantry(beam.gantry_start, beam, naming_cfg)
    end = _rounded_gantry(beam.gantry_end, beam, naming_cfg)
    couch = int(round(beam.couch_angle))
    name = beam.beam_id or ""

    if start != end:
        key = "arc_pattern_couch" if has_couch else "arc_pattern"
        m = re.match(naming_cfg[key], name)
        if m is None:
            return False
        groups = m.groups()
        if has_couch:
            if int(groups[0]) != couch:
                return False
            groups = groups[1:]
        g_start, label, g_end = int(groups[0]), groups[1], int(groups[2])
        return (
            g_start == start
            and g_end == end
            and label == beam.gantry_direction.value
        )

    key = "static_pattern_couch" if has_couch else "static_pattern"
    m = re.match(naming_cfg[key], name)
    if m is None:
        return False
    groups = m.groups()
    if has_couch:
        return int(groups[0]) == couch and int(groups[1]) == start
    return int(groups[0]) == start


def _beams_with_control_points(beams: List[Beam]) -> List[Beam]:
    return [b for b in beams if b.control_points]


# =====================================================
# Fields.Names
# =====================================================

class FieldNamesRule(ConfiguredRule):
    """
    Convención de nombres de campos de tratamiento:

      - estático:  G<gantry>-<letra>            (G180-A)
      - arco:      <inicio><CW|CCW><fin>-<letra> (181CW179-B)
      - con mesa rotada en algún campo, prefijo T<mesa>- en todos
    """
    name = "FieldNamesRule"
    category = "Fields.Names"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        cfg = get_field_naming_config(self.params)
        has_couch = plan.has_couch_rotation
        results: List[Finding] = []
        for beam in _beams_with_control_points(plan.treatment_beams):
            results.append(
                self._check(
                    _expected_name_ok(beam, has_couch, cfg),
                    f"Field '{beam.beam_id}' follows naming convention",
                    f"Field '{beam.beam_id}' does not follow naming convention",
                    fail_severity=Severity.WARNING,
                    is_per_item=True,
                )
            )
        return results


# =====================================================
# Fields.Geometry.*
# =====================================================

class FieldGeometryRule(ConfiguredRule):
    name = "FieldGeometryRule"
    category = "Fields.Geometry"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        beams = _beams_with_control_points(plan.treatment_beams)
        if not beams:
            return []
        cfg = get_field_geometry_config(self.params)
        profile = self.machine_profile(plan)

        results: List[Finding] = []
        results.extend(self._collimator(beams, cfg))
        results.extend(self._isocenter(plan, beams, cfg, profile))
        results.extend(self._tolerance_table(beams, cfg, profile))
        if not plan.has_couch_rotation:
            results.extend(self._first_field_start(beams, cfg))
            if profile in cfg["mlc_overlap_profiles"]:
                results.extend(self._jaw_overlap(beams))
        return results

    def _collimator(self, beams: List[Beam], cfg: Dict) -> List[Finding]:
        category = "Fields.Geometry.Collimator"
        halfwidth = float(cfg["collimator_forbidden_halfwidth_deg"])
        counts: Dict[float, int] = {}
        for b in beams:
            key = round(b.collimator_angle, 1)
            counts[key] = counts.get(key, 0) + 1

        results: List[Finding] = []
        for b in beams:
            angle = b.collimator_angle
            if any(angular_difference(angle, f) < halfwidth for f in cfg["collimator_forbidden_angles"]):
                results.append(
                    self._finding(
                        f"Invalid collimator angle {angle:.1f}°",
                        Severity.ERROR,
                        category=category,
                        is_per_item=True,
                    )
                )
            elif counts[round(angle, 1)] > 1:
                results.append(
                    self._finding(
                        f"Collimator angle {angle:.1f}° is duplicated",
                        Severity.WARNING,
                        category=category,
                        is_per_item=True,
                    )
                )
            else:
                results.append(
                    self._finding(
                        f"Collimator angle {angle:.1f}° is valid",
                        Severity.INFO,
                        category=category,
                        is_per_item=True,
                    )
                )
        return results

    def _isocenter(self, plan: PlanSnapshot, beams: List[Beam], cfg: Dict, profile: Optional[str]) -> List[Finding]:
        limits = cfg["isocenter_iec_y_limits_cm"].get(profile or "")
        if limits is None:
            return []
        lo, hi = float(limits[0]), float(limits[1])
        image = plan.image
        user_origin = image.user_origin_mm if image is not None else None
        origin_z = user_origin[2] if user_origin is not None else 0.0
        label = get_machine_label(profile, self.params)

        results: List[Finding] = []
        for b in beams:
            iec_y = (b.isocenter_mm[2] - origin_z) / 10.0
            inside = lo < iec_y < hi
            where = "within" if inside else "outside"
            results.append(
                self._finding(
                    f"Field '{b.beam_id}' isocenter Y position ({iec_y:.1f} cm) is {where} "
                    f"{label} limits ({lo:g} to {hi:+g} cm)",
                    Severity.INFO if inside else Severity.ERROR,
                    category="Fields.Geometry.Isocenter",
                    is_per_item=True,
                )
            )
        return results

    def _tolerance_table(self, beams: List[Beam], cfg: Dict, profile: Optional[str]) -> List[Finding]:
        expected = cfg["tolerance_tables"].get(profile or "")
        if expected is None:
            return []
        summary = f"All treatment fields have correct tolerance table ({expected})"
        results: List[Finding] = []
        for b in beams:
            tt = b.tolerance_table or ""
            results.append(
                self._check(
                    tt == expected,
                    f"Field '{b.beam_id}' has correct tolerance table ({tt})",
                    f"Field '{b.beam_id}' has incorrect tolerance table. "
                    f"Expected: {expected}, Found: {tt or 'none'}",
                    fail_severity=Severity.WARNING,
                    category="Fields.Geometry.ToleranceTable",
                    is_per_item=True,
                    collapsed_summary=summary,
                )
            )
        return results

    def _first_field_start(self, beams: List[Beam], cfg: Dict) -> List[Finding]:
        first = beams[0]
        g = first.gantry_start
        ok = abs(g - 180.0) <= float(cfg["first_field_max_deviation_deg"])
        return [
            self._check(
                ok,
                f"First field '{first.beam_id}' correctly starts at {g:.1f}° - closest to the 180°",
                f"First field '{first.beam_id}' starts at {g:.1f}° (should be close to 180°)",
                fail_severity=Severity.WARNING,
                category="Fields.Geometry.1st Field Start Angle",
                is_per_item=True,
            )
        ]

    def _jaw_overlap(self, beams: List[Beam]) -> List[Finding]:
        """
        Campos con el mismo colimador deben solaparse en X (mandíbulas)
        para no dejar una banda sin cubrir entre ellos.
        """
        groups: "OrderedDict[float, List[Beam]]" = OrderedDict()
        for b in beams:
            groups.setdefault(round(b.collimator_angle, 1), []).append(b)

        results: List[Finding] = []
        for coll, members in groups.items():
            for a, b in combinations(members, 2):
                ja = a.first_control_point.jaws
                jb = b.first_control_point.jaws
                if ja is None or jb is None:
                    continue
                overlap = min(ja.x2, jb.x2) - max(ja.x1, jb.x1)
                jaws_txt = (
                    f"(X1/X2: {ja.x1 / 10:.1f}/{ja.x2 / 10:.1f} cm and "
                    f"{jb.x1 / 10:.1f}/{jb.x2 / 10:.1f} cm)"
                )
                head = f"Fields '{a.beam_id}' and '{b.beam_id}' with collimator {coll:.1f}°"
                if overlap > 0:
                    results.append(
                        self._finding(
                            f"{head} have {overlap / 10:.1f} cm jaw overlap {jaws_txt}",
                            Severity.INFO,
                            category="Fields.Geometry.MLCOverlap",
                            is_per_item=True,
                        )
                    )
                else:
                    results.append(
                        self._finding(
                            f"{head} have no jaw overlap {jaws_txt}",
                            Severity.WARNING,
                            category="Fields.Geometry.MLCOverlap",
                            is_per_item=True,
                        )
                    )
        return results


# =====================================================
# Fields.SetupFields
# =====================================================

class SetupFieldsRule(ConfiguredRule):
    """
    Campos de setup por máquina (número, nombres y energía).

    HALCYON: exactamente 1 campo 'kVCBCT'. EDGE: 'CBCT' + 'SF-0'.
    Máquina desconocida: no se evalúa.
    """
    name = "SetupFieldsRule"
    category = "Fields.SetupFields"

    def _valid_name(self, beam: Beam, cfg: Dict) -> bool:
        name = (beam.beam_id or "").upper()
        if name in [n.upper() for n in cfg["valid_names"]]:
            return True
        return any(name.startswith(p.upper()) for p in cfg["valid_name_prefixes"])

    def _valid_energy(self, beam: Beam, cfg: Dict) -> bool:
        energies = cfg["valid_energies"]
        return energies is None or beam.energy in energies

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        profile = self.machine_profile(plan)
        cfg = get_setup_fields_config(profile, self.params)
        if cfg is None:
            return []
        label = get_machine_label(profile, self.params)
        required = int(cfg["required_count"])

        setups = plan.setup_beams
        if cfg["count_only_valid_names"]:
            count = sum(1 for b in setups if self._valid_name(b, cfg))
        else:
            count = len(setups)

        plural = "field" if required == 1 else "fields"
        results: List[Finding] = [
            self._check(
                count == required,
                f"Plan has the required {required} setup {plural} for {label}",
                f"Invalid setup field count for {label}: {count} (should be {required})",
            )
        ]

        required_names = [n.upper() for n in cfg["required_names"]]
        if count == required and required_names:
            present = sorted((b.beam_id or "").upper() for b in setups)
            if present != sorted(required_names):
                quoted = " and ".join(f"'{n}'" for n in cfg["required_names"])
                results.append(
                    self._finding(
                        f"{label} setup fields should be named {quoted}",
                        Severity.ERROR,
                    )
                )

        display = cfg["display_name"]
        for b in setups:
            ok = self._valid_name(b, cfg) and self._valid_energy(b, cfg)
            if display:
                ok_msg = f"Setup field '{b.beam_id}' configuration is valid for {label}"
                fail_msg = f"Invalid setup field for {label}: should be '{display}'"
            else:
                ok_msg = f"Setup field '{b.beam_id}' configuration is valid"
                fail_msg = f"Invalid setup field configuration: {b.beam_id} with energy {b.energy}"
            results.append(self._check(ok, ok_msg, fail_msg, is_per_item=True))

        return results


# =====================================================
# Fields.Energy
# =====================================================

class BeamEnergyRule(ConfiguredRule):
    name = "BeamEnergyRule"
    category = "Fields.Energy"

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        beams = plan.treatment_beams
        if not beams:
            return []
        cfg = get_beam_energy_config(self.params)
        profile = self.machine_profile(plan)
        results: List[Finding] = []

        # FFF obligatorio en dosis altas por fracción
        dpf = plan.dose_per_fraction_gy
        threshold = float(cfg["high_dose_per_fraction_gy"])
        if profile in cfg["high_dose_fff_profiles"] and dpf is not None and dpf >= threshold:
            fff = cfg["fff_energies"]
            names = " or ".join(e.replace("X-", "") for e in fff)
            for b in beams:
                results.append(
                    self._check(
                        b.energy in fff,
                        f"Field '{b.beam_id}' correctly uses FFF energy ({b.energy}) "
                        f"for dose/fraction ≥{threshold:g}Gy",
                        f"Field '{b.beam_id}' should use {names} energy for dose/fraction "
                        f"≥{threshold:g}Gy, found: {b.energy}",
                        is_per_item=True,
                    )
                )

        # Consistencia de energía entre campos
        energies = list(OrderedDict.fromkeys(b.energy for b in beams if b.energy))
        if len(energies) == 1:
            results.append(
                self._finding(
                    f"All treatment fields use the same energy: {energies[0]}",
                    Severity.INFO,
                )
            )
        elif len(energies) > 1:
            results.append(
                self._finding(
                    f"Treatment fields use different energies: {', '.join(energies)}. "
                    "Verify this is clinically intended.",
                    Severity.WARNING,
                )
            )
            for b in beams:
                results.append(
                    self._finding(f"Field '{b.beam_id}': {b.energy}", Severity.INFO, is_per_item=True)
                )
        return results
