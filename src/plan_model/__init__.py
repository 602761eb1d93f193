# src/plan_model/__init__.py

"""
Modelo de solo lectura del plan (lo que entrega el host) y la geometría
de sectores angulares del gantry.

El adaptador DICOM vive en `plan_model.dicom_snapshot` y no se importa
aquí para no forzar pydicom a quien solo construye snapshots en memoria.
"""

from .geometry import (  # noqa: F401
    AngularSector,
    ArcSweep,
    GantryDirection,
    arc_span,
    build_sectors,
    is_angle_covered,
    is_full_coverage,
    merge_sectors,
    total_coverage_degrees,
)
from .snapshot import (  # noqa: F401
    Beam,
    ControlPoint,
    ImageInfo,
    JawPositions,
    PlanSnapshot,
    Prescription,
    PrescriptionTarget,
    ReferencePoint,
    Structure,
    StructureSet,
)
