# src/crosscheck/rules.py

"""
rules.py
========

Motor de reglas: `Rule` (check individual) y `RuleGroup` (compuesto).

- Una regla recibe el `PlanSnapshot` (solo lectura) y devuelve una lista
  de `Finding`. Puede devolver lista vacía si su precondición no aplica.
- Un grupo evalúa sus hijos en orden de registro y concatena sus
  hallazgos. Puede añadir hallazgos propios antes (`before`) o después
  (`after`) de los hijos.
- El árbol se construye una vez y luego solo se lee: los hijos se
  exponen como tupla y `add()` rechaza ciclos.

Los datos ausentes se reportan como Finding; los errores de geometría
(ValueError) se propagan sin capturar.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from plan_model.snapshot import PlanSnapshot


class Severity(Enum):
    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"

    @property
    def rank(self) -> int:
        """0 = Error (más grave) ... 2 = Info."""
        return {"Error": 0, "Warning": 1, "Info": 2}[self.value]


@dataclass(frozen=True)
class Finding:
    """
    Resultado individual de un check.

    - category: agrupación jerárquica con puntos ("Fields.Names", "Collision")
    - is_per_item: el hallazgo corresponde a una instancia repetida
      (p.ej. un campo concreto) y puede colapsarse si todos pasan
    - collapsed_summary: texto alternativo para el colapso de la categoría
    """
    category: str
    message: str
    severity: Severity
    is_per_item: bool = False
    collapsed_summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["severity"] = self.severity.value
        return d


class Rule:
    """
    Check individual. Las subclases implementan `evaluate`.

    `name` se usa para activar/desactivar la regla desde config
    (RULE_SWITCHES / overrides).
    """

    name: str = ""
    category: str = ""

    def __init__(self, name: Optional[str] = None):
        if name is not None:
            self.name = name
        if not self.name:
            self.name = type(self).__name__

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        raise NotImplementedError

    # Helpers para construir hallazgos con la categoría de la regla

    def _finding(
        self,
        message: str,
        severity: Severity,
        category: Optional[str] = None,
        is_per_item: bool = False,
        collapsed_summary: Optional[str] = None,
    ) -> Finding:
        return Finding(
            category=category or self.category,
            message=message,
            severity=severity,
            is_per_item=is_per_item,
            collapsed_summary=collapsed_summary,
        )

    def _check(
        self,
        passed: bool,
        ok_message: str,
        fail_message: str,
        fail_severity: Severity = Severity.ERROR,
        category: Optional[str] = None,
        is_per_item: bool = False,
        collapsed_summary: Optional[str] = None,
    ) -> Finding:
        """Info si `passed`, si no `fail_severity`."""
        return self._finding(
            ok_message if passed else fail_message,
            Severity.INFO if passed else fail_severity,
            category=category,
            is_per_item=is_per_item,
            collapsed_summary=collapsed_summary,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class RuleGroup(Rule):
    """
    Compuesto de reglas/grupos. Dueño exclusivo de sus hijos.
    """

    def __init__(self, name: Optional[str] = None, children: Optional[List[Rule]] = None):
        super().__init__(name)
        self._children: List[Rule] = []
        for child in children or []:
            self.add(child)

    @property
    def children(self) -> Tuple[Rule, ...]:
        return tuple(self._children)

    def add(self, child: Rule) -> "RuleGroup":
        if child is self:
            raise ValueError(f"El grupo '{self.name}' no puede contenerse a sí mismo")
        if isinstance(child, RuleGroup) and any(node is self for node in child.walk()):
            raise ValueError(
                f"Añadir '{child.name}' a '{self.name}' crearía un ciclo en el árbol de reglas"
            )
        if any(node is child for node in self.walk()):
            raise ValueError(f"La regla '{child.name}' ya pertenece al árbol de '{self.name}'")
        self._children.append(child)
        return self

    def walk(self) -> Iterator[Rule]:
        """Recorrido en profundidad (pre-orden), incluyendo el propio grupo."""
        yield self
        for child in self._children:
            if isinstance(child, RuleGroup):
                yield from child.walk()
            else:
                yield child

    def before(self, plan: PlanSnapshot) -> List[Finding]:
        return []

    def after(self, plan: PlanSnapshot) -> List[Finding]:
        return []

    def evaluate(self, plan: PlanSnapshot) -> List[Finding]:
        findings: List[Finding] = list(self.before(plan))
        for child in self._children:
            findings.extend(child.evaluate(plan))
        findings.extend(self.after(plan))
        return findings
