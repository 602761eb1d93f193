# src/crosscheck/aggregation.py

"""
aggregation.py
==============

Post-proceso de la lista plana de hallazgos para presentación:

  1) collapse_per_item_findings: por categoría, si TODOS los hallazgos
     son per-item, Info y hay más de uno, se sustituyen por un único
     Info de resumen.
  2) order_by_category: orden estable por (prioridad, categoría).

Funciones puras: no modifican la lista de entrada.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence, Tuple

from crosscheck.config import category_priority
from crosscheck.rules import Finding, Severity


def _group_by_category(findings: Iterable[Finding]) -> "OrderedDict[str, List[Finding]]":
    groups: "OrderedDict[str, List[Finding]]" = OrderedDict()
    for f in findings:
        groups.setdefault(f.category, []).append(f)
    return groups


def _collapsible(group: Sequence[Finding]) -> bool:
    return len(group) > 1 and all(
        f.is_per_item and f.severity == Severity.INFO for f in group
    )


def collapse_per_item_findings(findings: Sequence[Finding]) -> List[Finding]:
    """
    Colapsa categorías homogéneas de hallazgos per-item.

    El orden de salida es el de primera aparición de cada categoría. Un
    Warning o Error nunca se colapsa, y una categoría con un único
    hallazgo se deja tal cual.
    """
    out: List[Finding] = []
    for category, group in _group_by_category(findings).items():
        if not _collapsible(group):
            out.extend(group)
            continue
        summary = group[0].collapsed_summary or f"All treatment fields passed {category} checks"
        out.append(
            Finding(
                category=category,
                message=summary,
                severity=Severity.INFO,
                is_per_item=False,
            )
        )
    return out


def order_by_category(
    findings: Sequence[Finding],
    order: Optional[List[Tuple[str, int]]] = None,
) -> List[Finding]:
    """Orden estable por (prioridad de categoría, nombre de categoría)."""
    return sorted(
        findings,
        key=lambda f: (category_priority(f.category, order), f.category),
    )


def aggregate_findings(
    findings: Sequence[Finding],
    order: Optional[List[Tuple[str, int]]] = None,
) -> List[Finding]:
    return order_by_category(collapse_per_item_findings(findings), order)
