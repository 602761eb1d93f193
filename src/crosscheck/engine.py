# src/crosscheck/engine.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from plan_model.snapshot import PlanSnapshot
from crosscheck.aggregation import aggregate_findings
from crosscheck.checks import (
    BeamEnergyRule,
    CollisionRule,
    ContrastStructureRule,
    CourseRule,
    CTAndPatientRule,
    DoseRule,
    FieldGeometryRule,
    FieldNamesRule,
    FieldsGroup,
    FixationRule,
    OptimizationRule,
    PlanGroup,
    PlanningStructuresRule,
    ReferencePointRule,
    RootGroup,
    SetupFieldsRule,
    UserOriginMarkerRule,
)
from crosscheck.config import build_effective_config, get_category_order, get_crosscheck_logger
from crosscheck.rules import Finding, Rule, RuleGroup, Severity

logger = get_crosscheck_logger("crosscheck.engine")


# =====================================================
# Construcción del árbol
# =====================================================

def build_rule_tree(effective: Optional[Dict[str, Any]] = None) -> RootGroup:
    """
    Arma el árbol de reglas una sola vez:

        RootGroup
          ├─ CourseRule
          └─ PlanGroup
               ├─ CTAndPatientRule
               ├─ UserOriginMarkerRule
               ├─ ContrastStructureRule
               ├─ DoseRule
               ├─ FieldsGroup (FieldNames, FieldGeometry, SetupFields, BeamEnergy)
               ├─ ReferencePointRule
               ├─ FixationRule
               ├─ CollisionRule
               ├─ OptimizationRule
               └─ PlanningStructuresRule

    Las reglas (o grupos) desactivados en effective["rules"] se omiten.
    """
    effective = effective if effective is not None else build_effective_config()
    switches = effective.get("rules", {})
    params = effective["params"]

    def enabled(name: str) -> bool:
        return bool(switches.get(name, True))

    def add_if_enabled(group: RuleGroup, rule: Rule) -> None:
        if enabled(rule.name):
            group.add(rule)
        else:
            logger.debug("Regla '%s' desactivada por config", rule.name)

    root = RootGroup()
    add_if_enabled(root, CourseRule(params))

    if enabled("PlanGroup"):
        plan_group = PlanGroup(params)
        add_if_enabled(plan_group, CTAndPatientRule(params))
        add_if_enabled(plan_group, UserOriginMarkerRule(params))
        add_if_enabled(plan_group, ContrastStructureRule(params))
        add_if_enabled(plan_group, DoseRule(params))

        if enabled("FieldsGroup"):
            fields = FieldsGroup()
            add_if_enabled(fields, FieldNamesRule(params))
            add_if_enabled(fields, FieldGeometryRule(params))
            add_if_enabled(fields, SetupFieldsRule(params))
            add_if_enabled(fields, BeamEnergyRule(params))
            plan_group.add(fields)

        add_if_enabled(plan_group, ReferencePointRule(params))
        add_if_enabled(plan_group, FixationRule(params))
        add_if_enabled(plan_group, CollisionRule(params))
        add_if_enabled(plan_group, OptimizationRule(params))
        add_if_enabled(plan_group, PlanningStructuresRule(params))
        root.add(plan_group)

    return root


# =====================================================
# Resultado de una revisión
# =====================================================

@dataclass
class ReviewResult:
    """
    Resultado de una revisión de plan.

    - raw_findings: secuencia tal cual la produce el árbol
    - findings: secuencia agregada (colapsada + ordenada) para presentar
    """
    plan_id: str
    raw_findings: List[Finding] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)

    def _count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity == severity)

    @property
    def num_errors(self) -> int:
        return self._count(Severity.ERROR)

    @property
    def num_warnings(self) -> int:
        return self._count(Severity.WARNING)

    @property
    def num_info(self) -> int:
        return self._count(Severity.INFO)

    @property
    def has_errors(self) -> bool:
        return self.num_errors > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "num_errors": self.num_errors,
            "num_warnings": self.num_warnings,
            "num_info": self.num_info,
            "findings": [f.to_dict() for f in self.findings],
        }


# =====================================================
# Evaluación
# =====================================================

def evaluate_plan(
    plan: PlanSnapshot,
    tree: Optional[RuleGroup] = None,
    effective: Optional[Dict[str, Any]] = None,
) -> ReviewResult:
    """
    Interfaz de alto nivel del cross-check.

    1) Recorre el árbol de reglas (se construye si no se pasa uno)
    2) Agrega los hallazgos (colapso per-item + orden por categoría)

    Los ValueError de geometría se propagan: un reporte parcial no es
    un reporte válido.
    """
    effective = effective if effective is not None else build_effective_config()
    if tree is None:
        tree = build_rule_tree(effective)

    for node in tree.walk():
        if isinstance(node, RuleGroup):
            logger.debug("Grupo '%s' con %d hijo(s)", node.name, len(node.children))

    raw = tree.evaluate(plan)
    findings = aggregate_findings(raw, get_category_order(effective["params"]))
    result = ReviewResult(plan_id=plan.plan_id, raw_findings=list(raw), findings=findings)

    logger.info(
        "Plan '%s': %d hallazgos (%d error, %d warning, %d info)",
        plan.plan_id,
        len(findings),
        result.num_errors,
        result.num_warnings,
        result.num_info,
    )
    return result
