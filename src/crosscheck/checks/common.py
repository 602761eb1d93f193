# src/crosscheck/checks/common.py

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from plan_model.snapshot import PlanSnapshot, Structure
from crosscheck.config import build_effective_config, infer_machine_profile
from crosscheck.rules import Rule


# =====================================================
# Base de reglas parametrizadas
# =====================================================

class ConfiguredRule(Rule):
    """
    Regla que lee sus umbrales de la config efectiva (`params`).

    Una misma clase cubre todas las variantes de máquina: lo que cambia
    entre Halcyon / Edge / STX son los datos de config, no el código.
    """

    def __init__(self, params: Optional[Dict[str, Any]] = None, name: Optional[str] = None):
        super().__init__(name)
        self.params: Dict[str, Any] = (
            params if params is not None else build_effective_config()["params"]
        )

    def machine_profile(self, plan: PlanSnapshot) -> Optional[str]:
        return infer_machine_profile(plan.machine_id, self.params)


# =====================================================
# Helpers internos
# =====================================================

_HU_SUFFIX = re.compile(r"_([+-]?\d+(?:\.\d+)?)HU$", re.IGNORECASE)


def parse_hu_from_name(struct_id: str) -> Optional[float]:
    """
    Densidad esperada codificada en el nombre: 'z_AltaHD_-390HU' → -390.0.

    Toma el texto tras el último '_' y exige sufijo HU. None si no aplica.
    """
    m = _HU_SUFFIX.search(struct_id or "")
    if m is None:
        return None
    return float(m.group(1))


def structures_with_prefixes(structures: List[Structure], prefixes: List[str]) -> List[Structure]:
    """
    Estructuras que empiezan por alguno de los prefijos (sin distinguir
    mayúsculas), en orden de prefijo y luego de aparición; sin duplicados.
    """
    out: List[Structure] = []
    seen = set()
    for prefix in prefixes:
        p = prefix.lower()
        for s in structures:
            if id(s) in seen:
                continue
            if s.struct_id.lower().startswith(p):
                out.append(s)
                seen.add(id(s))
    return out


def fmt_num(value: Optional[float]) -> str:
    """Número sin ceros sobrantes ('600', '-390', '0.5'); 'n/a' si None."""
    if value is None:
        return "n/a"
    return f"{value:g}"
