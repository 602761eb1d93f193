# src/plan_model/geometry.py

"""
geometry.py
===========

Geometría de sectores angulares sobre el círculo del gantry.

Convenciones
------------
- Todos los ángulos en grados.
- Un `AngularSector` es un intervalo [start, end] que NUNCA cruza la
  costura 0°/360°. Un arco tipo 350°→10° se guarda como dos sectores:
  [350, 360] y [0, 10].
- Las listas de sectores que devuelve este módulo están siempre
  ordenadas y fusionadas (tolerancia de 1°).
- Restricción de hardware: el gantry no puede pasar por 180° mientras
  rota. Los márgenes de un arco nunca empujan la cobertura a través de
  180° si el arco original no lo cruzaba.

Las funciones de este módulo no dependen del modelo de plan; reciben
`ArcSweep` ya construidos (ver `Beam.sweep` en snapshot.py).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple


# Tolerancias fijadas por la clínica (no recalcular).
ANGLE_TOLERANCE_DEGREES = 0.1
MERGE_TOLERANCE_DEGREES = 1.0
STATIC_FIELD_SECTOR_DEGREES = 10.0
FULL_COVERAGE_THRESHOLD_DEGREES = 180.0

GANTRY_FORBIDDEN_ANGLE = 180.0


class GantryDirection(Enum):
    NONE = "NONE"
    CLOCKWISE = "CW"
    COUNTER_CLOCKWISE = "CCW"


def normalize_angle(angle: float) -> float:
    """
    Lleva un ángulo a [0, 360).

    Lanza ValueError si el ángulo no es finito: una geometría corrupta
    debe abortar la evaluación completa, no producir un reporte parcial.
    """
    a = float(angle)
    if not math.isfinite(a):
        raise ValueError(f"Ángulo no finito: {angle!r}")
    a = a % 360.0
    # -1e-17 % 360 da 360.0 en coma flotante
    if a >= 360.0:
        a = 0.0
    return a


def angular_difference(a: float, b: float) -> float:
    """Distancia angular mínima entre a y b, en [0, 180]."""
    d = abs(normalize_angle(a) - normalize_angle(b))
    return min(d, 360.0 - d)


# =====================================================
# Tipos
# =====================================================

@dataclass(frozen=True, order=True)
class AngularSector:
    """
    Intervalo cerrado [start, end] con 0 <= start <= end <= 360.
    """
    start: float
    end: float

    def __post_init__(self):
        if not (math.isfinite(self.start) and math.isfinite(self.end)):
            raise ValueError(f"Sector con límites no finitos: ({self.start}, {self.end})")
        if not (0.0 <= self.start <= self.end <= 360.0):
            raise ValueError(
                f"Sector inválido ({self.start}, {self.end}): "
                "se requiere 0 <= start <= end <= 360"
            )

    @property
    def span(self) -> float:
        return self.end - self.start

    def contains(self, angle: float) -> bool:
        # Inclusivo en ambos extremos
        return self.start <= angle <= self.end


FULL_CIRCLE = AngularSector(0.0, 360.0)


@dataclass(frozen=True)
class ArcSweep:
    """
    Recorrido del gantry para un campo: ángulo inicial, final y sentido.

    start/end se normalizan a [0, 360) al construir.
    """
    start_angle: float
    end_angle: float
    direction: GantryDirection = GantryDirection.NONE

    def __post_init__(self):
        object.__setattr__(self, "start_angle", normalize_angle(self.start_angle))
        object.__setattr__(self, "end_angle", normalize_angle(self.end_angle))

    @property
    def is_static(self) -> bool:
        return angular_difference(self.start_angle, self.end_angle) < ANGLE_TOLERANCE_DEGREES


# =====================================================
# Operaciones básicas
# =====================================================

def arc_span(sweep: ArcSweep) -> float:
    """
    Grados recorridos por el gantry en el sentido de giro.

      - 0 si el campo es estático.
      - CW:  (end - start + 360) % 360
      - CCW: (start - end + 360) % 360
      - Un span ~0 en un arco significa vuelta completa (360).

    Si el sentido no está definido en un arco, o el resultado no es
    plausible, se devuelve 360 (se revisa más área, nunca menos).
    """
    if sweep.is_static:
        return 0.0

    start, end = sweep.start_angle, sweep.end_angle
    if sweep.direction == GantryDirection.CLOCKWISE:
        span = (end - start + 360.0) % 360.0
    elif sweep.direction == GantryDirection.COUNTER_CLOCKWISE:
        span = (start - end + 360.0) % 360.0
    else:
        return 360.0

    if not math.isfinite(span) or span < 0.0 or span > 360.0:
        return 360.0
    if span < ANGLE_TOLERANCE_DEGREES:
        span = 360.0
    return span


def split_at_seam(start: float, end: float) -> List[AngularSector]:
    """
    Convierte un intervalo [start, end] en coordenadas "desenrolladas"
    (end - start < 360, start puede ser negativo o > 360) en uno o dos
    sectores sin cruce de la costura 0°/360°.
    """
    length = end - start
    if length >= 360.0:
        return [FULL_CIRCLE]
    if length < 0.0:
        raise ValueError(f"Intervalo invertido: ({start}, {end})")

    lo = normalize_angle(start)
    hi = lo + length
    if hi <= 360.0:
        return [AngularSector(lo, hi)]
    return [AngularSector(lo, 360.0), AngularSector(0.0, hi - 360.0)]


def merge_sectors(
    sectors: Iterable[AngularSector],
    tolerance: float = MERGE_TOLERANCE_DEGREES,
) -> List[AngularSector]:
    """
    Ordena por inicio (y fin) y fusiona sectores que se solapan o están
    a menos de `tolerance` grados. No fusiona a través de 0°/360°.
    """
    ordered = sorted(sectors, key=lambda s: (s.start, s.end))
    if len(ordered) <= 1:
        return ordered

    merged: List[AngularSector] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if nxt.start <= current.end + tolerance:
            current = AngularSector(current.start, max(current.end, nxt.end))
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def _crosses_forbidden_angle(sweep: ArcSweep, span: float) -> bool:
    """True si el arco (sin márgenes) pasa por 180° en su interior."""
    if sweep.direction == GantryDirection.CLOCKWISE:
        dist = (GANTRY_FORBIDDEN_ANGLE - sweep.start_angle) % 360.0
    else:
        dist = (sweep.start_angle - GANTRY_FORBIDDEN_ANGLE) % 360.0
    return 0.0 < dist < span


def _arc_interval(sweep: ArcSweep, span: float, arc_margin: float) -> Tuple[float, float]:
    """
    Intervalo desenrollado [lo, hi] (lo <= hi, en sentido creciente)
    cubierto por un arco con márgenes aplicados en el sentido de giro.

    Si el arco no cruza 180°, cada margen se recorta a la distancia que
    queda hasta 180° en la dirección en que se extiende.
    """
    start = sweep.start_angle
    end = sweep.end_angle
    clamp = not _crosses_forbidden_angle(sweep, span)

    if sweep.direction == GantryDirection.CLOCKWISE:
        # Ángulos crecientes: el margen inicial va hacia atrás (decreciente)
        lo_room = (start - GANTRY_FORBIDDEN_ANGLE) % 360.0
        hi_room = (GANTRY_FORBIDDEN_ANGLE - end) % 360.0
        lo_base = start
    else:
        # CCW: el intervalo creciente va de end a start
        lo_room = (end - GANTRY_FORBIDDEN_ANGLE) % 360.0
        hi_room = (GANTRY_FORBIDDEN_ANGLE - start) % 360.0
        lo_base = end

    lo_margin = min(arc_margin, lo_room) if clamp else arc_margin
    hi_margin = min(arc_margin, hi_room) if clamp else arc_margin

    lo = lo_base - lo_margin
    hi = lo_base + span + hi_margin
    return lo, hi


def build_sectors(
    sweeps: Sequence[ArcSweep],
    arc_margin: float = 0.0,
    static_margin: float = STATIC_FIELD_SECTOR_DEGREES,
) -> List[AngularSector]:
    """
    Construye la lista ordenada y fusionada de sectores cubiertos por un
    conjunto de campos.

      - Campo estático: [a - static_margin, a + static_margin].
      - Arco: se extiende `arc_margin` en ambos extremos siguiendo el
        sentido de giro, sin cruzar 180° (ver `_arc_interval`).
      - Los intervalos que cruzan 0°/360° se parten en la costura.
      - Si un solo arco + sus dos márgenes llega a 360°, se devuelve
        directamente [0, 360].
    """
    if arc_margin < 0 or static_margin < 0:
        raise ValueError("Los márgenes angulares no pueden ser negativos")

    working: List[AngularSector] = []
    for sweep in sweeps:
        if sweep.is_static:
            a = sweep.start_angle
            working.extend(split_at_seam(a - static_margin, a + static_margin))
            continue

        span = arc_span(sweep)
        if span + 2.0 * arc_margin >= 360.0:
            return [FULL_CIRCLE]
        if sweep.direction == GantryDirection.NONE:
            # arc_span ya devolvió 360 para este caso
            return [FULL_CIRCLE]

        lo, hi = _arc_interval(sweep, span, arc_margin)
        working.extend(split_at_seam(lo, hi))

    return merge_sectors(working)


def is_angle_covered(angle: float, sectors: Sequence[AngularSector]) -> bool:
    """True si el ángulo (normalizado a [0,360)) cae en algún sector."""
    if not sectors:
        return False
    a = normalize_angle(angle)
    return any(s.contains(a) for s in sectors)


def total_coverage_degrees(sectors: Sequence[AngularSector]) -> float:
    """Suma de (end - start) sobre una lista ya fusionada."""
    return float(sum(s.span for s in sectors))


def is_full_coverage(
    sweeps: Sequence[ArcSweep],
    threshold: float = FULL_COVERAGE_THRESHOLD_DEGREES,
) -> bool:
    """
    Cobertura "completa" (>= 180°): algún arco individual la alcanza, o
    la unión de sectores (márgenes por defecto) la alcanza.
    """
    if not sweeps:
        return False
    if any(arc_span(s) >= threshold for s in sweeps):
        return True
    return total_coverage_degrees(build_sectors(sweeps)) >= threshold


# =====================================================
# Helpers en el plano axial (perpendicular al eje de giro)
# =====================================================

def direction_label(dx: float, dy: float) -> str:
    """
    Etiqueta anatómica gruesa del punto respecto al isocentro.

    Cuadrantes de 90° desplazados 45° (convención de la clínica sobre
    coordenadas DICOM x/y):
      [-45, 45) left, [45, 135) anterior, [135, 180] u [-180, -135) right,
      resto posterior.
    """
    deg = math.degrees(math.atan2(dy, dx))
    if -45.0 <= deg < 45.0:
        return "left"
    if 45.0 <= deg < 135.0:
        return "anterior"
    if deg >= 135.0 or deg < -135.0:
        return "right"
    return "posterior"


def sectors_from_tuples(pairs: Iterable[Tuple[float, float]]) -> List[AngularSector]:
    """Construye sectores desde pares (start, end); parte los que envuelven."""
    out: List[AngularSector] = []
    for start, end in pairs:
        s = normalize_angle(start)
        e = float(end) if float(end) == 360.0 else normalize_angle(end)
        if s <= e:
            out.append(AngularSector(s, e))
        else:
            out.extend(split_at_seam(s, e + 360.0))
    return merge_sectors(out)


def describe_sectors(sectors: Optional[Sequence[AngularSector]]) -> str:
    if not sectors:
        return "none"
    return ", ".join(f"{s.start:.0f}-{s.end:.0f}" for s in sectors)
