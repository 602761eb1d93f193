# src/crosscheck/config.py

from __future__ import annotations

import copy
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypedDict

from crosscheck.config_overrides import (
    apply_overrides_to_config,
    load_overrides,
)
from plan_model.geometry import (
    ANGLE_TOLERANCE_DEGREES,
    FULL_COVERAGE_THRESHOLD_DEGREES,
    MERGE_TOLERANCE_DEGREES,
    STATIC_FIELD_SECTOR_DEGREES,
)


def _normalize_profile_key(profile: Optional[str]) -> str:
    """
    Normaliza la clave de perfil de máquina a algo tipo 'EDGE' o 'DEFAULT'.

    - None o cadena vacía → 'DEFAULT'
    - strip() + mayúsculas
    """
    return (profile or "DEFAULT").strip().upper()


# ============================================================
# 1) MÁQUINAS
#    - Identificación del perfil de máquina a partir del id del TPS
#    - Un id no reconocido devuelve None: las reglas específicas de
#      máquina se saltan (nunca se asume un perfil por defecto)
# ============================================================

class MachineProfile(TypedDict, total=False):
    label: str                 # nombre visible en mensajes ("Halcyon", "Edge")
    ids: List[str]             # ids exactos
    id_prefixes: List[str]     # prefijos (sin distinguir mayúsculas)
    id_contains: List[str]     # subcadenas (sin distinguir mayúsculas)


MACHINE_PROFILES: Dict[str, MachineProfile] = {
    "HALCYON": {
        "label": "Halcyon",
        "ids": [],
        "id_prefixes": ["Halcyon"],
        "id_contains": [],
    },
    "EDGE": {
        "label": "Edge",
        "ids": ["TrueBeamSN6368"],
        "id_prefixes": [],
        "id_contains": [],
    },
    "TRUEBEAM_STX": {
        "label": "TrueBeam STX",
        "ids": ["TrueBeamSN4625", "TrueBeamSN4664"],
        "id_prefixes": [],
        "id_contains": ["STX"],
    },
}


def get_machine_profiles(params: Optional[Dict[str, Any]] = None) -> Dict[str, MachineProfile]:
    if params is not None and "MACHINE_PROFILES" in params:
        return params["MACHINE_PROFILES"]
    return MACHINE_PROFILES


def infer_machine_profile(
    machine_id: Optional[str],
    params: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Devuelve la clave de perfil ('HALCYON', 'EDGE', 'TRUEBEAM_STX') o None.

    Orden de evaluación = orden de MACHINE_PROFILES; la primera coincidencia gana.
    """
    if not machine_id:
        return None
    mid = machine_id.strip()
    mid_up = mid.upper()
    for key, prof in get_machine_profiles(params).items():
        if mid in prof.get("ids", []):
            return key
        if any(mid_up.startswith(p.upper()) for p in prof.get("id_prefixes", [])):
            return key
        if any(s.upper() in mid_up for s in prof.get("id_contains", [])):
            return key
    return None


def get_machine_label(profile: Optional[str], params: Optional[Dict[str, Any]] = None) -> str:
    prof = get_machine_profiles(params).get(_normalize_profile_key(profile), {})
    return prof.get("label", profile or "unknown")


# ============================================================
# 2) GEOMETRÍA ANGULAR
#    Constantes clínicas: se conservan tal cual, no se recalculan.
# ============================================================

GEOMETRY_CONSTANTS: Dict[str, float] = {
    "angle_tolerance_deg": ANGLE_TOLERANCE_DEGREES,      # campo estático si |start-end| < 0.1°
    "merge_tolerance_deg": MERGE_TOLERANCE_DEGREES,      # fusión de sectores
    "static_margin_deg": STATIC_FIELD_SECTOR_DEGREES,    # ±10° alrededor de un campo estático
    "couch_rotation_tolerance_deg": ANGLE_TOLERANCE_DEGREES,
    "full_coverage_threshold_deg": FULL_COVERAGE_THRESHOLD_DEGREES,
}


def get_geometry_constants() -> Dict[str, float]:
    return GEOMETRY_CONSTANTS


# ============================================================
# 3) COLISIÓN (por perfil de máquina)
#
#   mode = "clearance": se reporta boundary - max_distancia (cm);
#                       Error si < error_cm, Warning si < warning_cm
#   mode = "distance":  se reporta la distancia máxima (cm);
#                       Error si > error_cm, Warning si > warning_cm
# ============================================================

COLLISION_STRUCTURE_PREFIXES: List[str] = [
    "BODY",
    "z_AltaLD",
    "z_AltaHD",
    "CouchSurface",
    "z_ArmShuttle",
    "z_VacBag",
]

COLLISION_CONFIG: Dict[str, Dict[str, Any]] = {
    "HALCYON": {
        "mode": "clearance",
        "boundary_radius_mm": 475.0,        # anillo de 47.5 cm
        "boundary_label": "Halcyon ring",
        "error_cm": 4.5,
        "warning_cm": 5.0,
        "angular_filter": False,            # Halcyon: siempre 360°
        "arc_margin_deg": 0.0,
        "static_margin_deg": 10.0,
        "slice_stride": 1,
        "structure_prefixes": list(COLLISION_STRUCTURE_PREFIXES),
        "missing_message": (
            "Cannot assess Halcyon collision risk - "
            "none of the required fixation devices found"
        ),
    },
    "EDGE": {
        "mode": "distance",
        "boundary_radius_mm": 380.0,
        "boundary_label": "Edge gantry",
        "error_cm": 38.0,
        "warning_cm": 37.0,
        "angular_filter": True,             # solo ángulos tratados ±10°
        "arc_margin_deg": 10.0,
        "static_margin_deg": 10.0,
        "slice_stride": 1,
        "structure_prefixes": list(COLLISION_STRUCTURE_PREFIXES),
        "missing_message": (
            "Cannot assess collision risk - no BODY or fixation structures found"
        ),
    },
    "TRUEBEAM_STX": {
        "mode": "distance",
        "boundary_radius_mm": 375.0,
        "boundary_label": "TrueBeam STX gantry",
        "error_cm": 37.5,
        "warning_cm": 36.5,
        "angular_filter": False,
        "arc_margin_deg": 0.0,
        "static_margin_deg": 10.0,
        "slice_stride": 1,
        "structure_prefixes": [
            "BODY",
            "CouchSurface",
            "MP_Optek_BP",
            "MP_WingSpan",
            "MP_BrB_Up_BaPl",
            "MP_BrB_Bott_BaPl",
            "MP_Solo_BPl",
            "MP_Enc_BPl",
            "MP_Enc_HFr",
        ],
        "missing_message": (
            "Cannot assess collision risk - no BODY or fixation structures found"
        ),
    },
}


def get_collision_config(
    profile: Optional[str],
    params: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Config de colisión para un perfil de máquina, o None si no existe
    (máquina desconocida → la regla emite un Info de "skipped").
    """
    cfg = (params or {}).get("COLLISION_CONFIG", COLLISION_CONFIG)
    if profile is None:
        return None
    return cfg.get(_normalize_profile_key(profile))


# ============================================================
# 4) CAMPOS: NOMBRES, GEOMETRÍA, SETUP, ENERGÍA
# ============================================================

FIELD_NAMING_CONFIG: Dict[str, Any] = {
    # Sin rotación de mesa en el plan
    "static_pattern": r"^G(\d+)-[A-Z]$",
    "arc_pattern": r"^(\d+)(CW|CCW)(\d+)-[A-Z]$",
    # Con rotación de mesa en algún campo: prefijo T<mesa>-
    "static_pattern_couch": r"^T(\d+)-G(\d+)-[A-Z]$",
    "arc_pattern_couch": r"^T(\d+)-(\d+)(CW|CCW)(\d+)-[A-Z]$",
    # HyperArc: 180.1 → 181, 179.9 → 179 (el gantry no para en 180)
    "hyperarc_technique": "SRS HyperArc",
    "hyperarc_angle_map": [[180.1, 181], [179.9, 179]],
    "hyperarc_map_tolerance_deg": 0.01,
}


def get_field_naming_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("FIELD_NAMING_CONFIG", FIELD_NAMING_CONFIG)


FIELD_GEOMETRY_CONFIG: Dict[str, Any] = {
    # Colimador prohibido a menos de 2° (exclusivo) de 0/90/270
    "collimator_forbidden_angles": [0.0, 90.0, 270.0],
    "collimator_forbidden_halfwidth_deg": 2.0,
    # Halcyon: isocentro IEC-Y (z DICOM relativo al user origin), cm, exclusivo
    "isocenter_iec_y_limits_cm": {"HALCYON": [-30.0, 17.0]},
    "tolerance_tables": {"HALCYON": "HAL", "EDGE": "EDGE"},
    # Sin mesa: el primer campo debe empezar cerca de 180°
    "first_field_max_deviation_deg": 90.0,
    "mlc_overlap_profiles": ["HALCYON"],
}


def get_field_geometry_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("FIELD_GEOMETRY_CONFIG", FIELD_GEOMETRY_CONFIG)


SETUP_FIELDS_CONFIG: Dict[str, Dict[str, Any]] = {
    "HALCYON": {
        "required_count": 1,
        # El conteo solo incluye campos de setup con nombre válido:
        # un kVCBCT mal nombrado cuenta como ausente.
        "count_only_valid_names": True,
        "valid_names": ["KVCBCT"],
        "valid_name_prefixes": [],
        "display_name": "kVCBCT",
        "required_names": [],
        "valid_energies": None,
    },
    "EDGE": {
        "required_count": 2,
        "count_only_valid_names": False,
        "valid_names": ["CBCT"],
        "valid_name_prefixes": ["SF-"],
        "display_name": None,
        "required_names": ["CBCT", "SF-0"],
        "valid_energies": ["6X", "10X"],
    },
}


def get_setup_fields_config(
    profile: Optional[str],
    params: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    cfg = (params or {}).get("SETUP_FIELDS_CONFIG", SETUP_FIELDS_CONFIG)
    if profile is None:
        return None
    return cfg.get(_normalize_profile_key(profile))


BEAM_ENERGY_CONFIG: Dict[str, Any] = {
    "high_dose_per_fraction_gy": 5.0,
    "high_dose_fff_profiles": ["EDGE"],
    "fff_energies": ["6X-FFF", "10X-FFF"],
}


def get_beam_energy_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("BEAM_ENERGY_CONFIG", BEAM_ENERGY_CONFIG)


# ============================================================
# 5) DOSIS Y PUNTOS DE REFERENCIA
# ============================================================

DOSE_CONFIG: Dict[str, Any] = {
    "grid_max_cm": 0.2,
    "grid_max_cm_srs": 0.125,
    "srs_dose_per_fraction_gy": 5.0,
    # Tasa de dosis esperada (MU/min) por perfil y energía
    "expected_dose_rates": {
        "EDGE": {
            "high_dose_only": True,
            "rates": {"6X-FFF": 1400, "10X-FFF": 2400, "6X": 600, "10X": 600},
        },
        "HALCYON": {
            "high_dose_only": False,
            "rates": {"6X-FFF": 600},
        },
    },
}


def get_dose_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("DOSE_CONFIG", DOSE_CONFIG)


REFERENCE_POINT_CONFIG: Dict[str, Any] = {
    "name_prefix": "RP_",
    "required_type": "Target",
    "limit_offset_gy": 0.1,          # límite = dosis plan + 0.1 Gy
    "limit_tolerance_gy": 0.09,
    "prescription_tolerance_gy": 0.01,
}


def get_reference_point_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("REFERENCE_POINT_CONFIG", REFERENCE_POINT_CONFIG)


# ============================================================
# 6) ESTRUCTURAS: FIJACIÓN, CONTRASTE, PLANIFICACIÓN
# ============================================================

FIXATION_CONFIG: Dict[str, Any] = {
    "required_prefixes": {
        "HALCYON": ["z_AltaHD_", "z_AltaLD_", "CouchSurface", "CouchInterior"],
    },
    # Estructuras de fijación con override de densidad en el nombre (..._-390HU)
    "density_prefixes": [
        "z_AltaHD_", "z_AltaLD_", "z_FrameHN_", "z_MaskLock_",
        "z_FrameHead_", "z_LocBar_", "z_ArmShuttle_", "z_EncFrame_",
        "z_VacBag_", "z_Contrast_", "z_ArmHoldR_",
        "z_FlexHigh_", "z_FlexLow_", "z_LocBarMR_", "z_VacIndex_",
    ],
    "density_tolerance_hu": 1.0,
}


def get_fixation_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("FIXATION_CONFIG", FIXATION_CONFIG)


CONTRAST_CONFIG: Dict[str, Any] = {
    "study_keyword": "CONTRAST",
    "structure_prefix": "z_Contrast",
}


def get_contrast_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("CONTRAST_CONFIG", CONTRAST_CONFIG)


PLANNING_STRUCTURES_CONFIG: Dict[str, Any] = {
    "air_prefix": "z_Air_",
    "density_tolerance_hu": 1.0,
    # Muestreo de vóxeles: cada 2 en x/y y cada 2 cortes
    "sample_step_xy": 2,
    "sample_step_z": 2,
    "hu_margin": 25.0,               # umbral = HU esperado + 25
    "max_percent_above": 5.0,
}


def get_planning_structures_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("PLANNING_STRUCTURES_CONFIG", PLANNING_STRUCTURES_CONFIG)


# ============================================================
# 7) CT / PACIENTE / PLAN / CURSO / OPTIMIZACIÓN
# ============================================================

CT_PATIENT_CONFIG: Dict[str, Any] = {
    "user_origin_max_offset_cm": 0.5,           # x y z (DICOM) respecto a 0
    "user_origin_y_range_mm": [-500.0, -80.0],  # y DICOM (altura de mesa)
    "head_series_prefix": "Head",
    "head_series_exclusions": ["Head and Neck", "Head & Neck"],
    "head_imaging_device": "CT130265 HEAD",
    "default_imaging_device": "CT130265",
    # Marcadores radiopacos (3 balines) en la piel, a la altura del origen
    # de usuario: izquierda / derecha / superior (según decúbito).
    "marker_threshold_hu": 500.0,
    "marker_radius_mm": 5.0,
    "marker_body_id": "BODY",
    "marker_body_dicom_type": "EXTERNAL",
}


def get_ct_patient_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("CT_PATIENT_CONFIG", CT_PATIENT_CONFIG)


PLAN_INFO_CONFIG: Dict[str, Any] = {
    "standard_orientation": "Head First-Supine",
    "gating_keyword": "DIBH",
    "gating_profiles": ["EDGE"],
}


def get_plan_info_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("PLAN_INFO_CONFIG", PLAN_INFO_CONFIG)


COURSE_CONFIG: Dict[str, Any] = {
    "id_pattern": r"^RT\d*_",
}


def get_course_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("COURSE_CONFIG", COURSE_CONFIG)


OPTIMIZATION_CONFIG: Dict[str, Any] = {
    "jaw_tracking_profiles": ["EDGE"],
    "asc_profiles": ["EDGE"],
    "asc_option_key": "VMAT/ApertureShapeController",
    "asc_valid_values": ["High", "Very High"],
}


def get_optimization_config(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return (params or {}).get("OPTIMIZATION_CONFIG", OPTIMIZATION_CONFIG)


# ============================================================
# 8) ORDEN DE CATEGORÍAS (presentación)
#    Prefijo de categoría → prioridad (menor primero). El resto: 999.
# ============================================================

CATEGORY_ORDER: List[Tuple[str, int]] = [
    ("Course", 10),
    ("CT.Curve", 20),
    ("Plan.Info", 30),
    ("PlanningStructures", 40),
    ("Structure", 40),
    ("Fixation", 50),
    ("Collision", 60),
    ("CT.UserOrigin", 70),
    ("Fields", 80),
    ("Dose", 90),
    ("Plan.Optimization", 100),
]

UNKNOWN_CATEGORY_PRIORITY = 999


def get_category_order(params: Optional[Dict[str, Any]] = None) -> List[Tuple[str, int]]:
    order = (params or {}).get("CATEGORY_ORDER", CATEGORY_ORDER)
    return [(str(p), int(v)) for p, v in order]


def category_priority(category: str, order: Optional[List[Tuple[str, int]]] = None) -> int:
    """Prioridad del primer prefijo que coincide (orden de la tabla)."""
    for prefix, priority in order if order is not None else CATEGORY_ORDER:
        if category.startswith(prefix):
            return priority
    return UNKNOWN_CATEGORY_PRIORITY


# ============================================================
# 9) INTERRUPTORES DE REGLAS
#    Clave = Rule.name. False → build_rule_tree() omite la regla.
# ============================================================

RULE_SWITCHES: Dict[str, bool] = {
    "CourseRule": True,
    "PlanGroup": True,
    "CTAndPatientRule": True,
    "UserOriginMarkerRule": True,
    "ContrastStructureRule": True,
    "DoseRule": True,
    "FieldsGroup": True,
    "FieldNamesRule": True,
    "FieldGeometryRule": True,
    "SetupFieldsRule": True,
    "BeamEnergyRule": True,
    "ReferencePointRule": True,
    "FixationRule": True,
    "CollisionRule": True,
    "OptimizationRule": True,
    "PlanningStructuresRule": True,
}


def get_rule_switches() -> Dict[str, bool]:
    return RULE_SWITCHES


# ============================================================
# 10) REPORTING (consola)
# ============================================================

REPORTING_CONFIG: Dict[str, Any] = {
    "use_colors": True,
    "color_error": "\033[91m",
    "color_warning": "\033[93m",
    "color_info": "\033[92m",
    "color_reset": "\033[0m",
    # Severidad mínima mostrada: "Info" muestra todo
    "min_severity": "Info",
    "show_summary": True,
    "category_width": 38,
}


def get_reporting_config() -> Dict[str, Any]:
    """
    Config genérica para la capa de reporting en consola.
    """
    return REPORTING_CONFIG


# ============================================================
# 11) VISTA EFECTIVA (defaults + overrides JSON)
# ============================================================

# Secciones de parámetros que se pueden sobreescribir desde JSON ("params")
PARAM_SECTIONS: Dict[str, Any] = {
    "MACHINE_PROFILES": MACHINE_PROFILES,
    "COLLISION_CONFIG": COLLISION_CONFIG,
    "FIELD_NAMING_CONFIG": FIELD_NAMING_CONFIG,
    "FIELD_GEOMETRY_CONFIG": FIELD_GEOMETRY_CONFIG,
    "SETUP_FIELDS_CONFIG": SETUP_FIELDS_CONFIG,
    "BEAM_ENERGY_CONFIG": BEAM_ENERGY_CONFIG,
    "DOSE_CONFIG": DOSE_CONFIG,
    "REFERENCE_POINT_CONFIG": REFERENCE_POINT_CONFIG,
    "FIXATION_CONFIG": FIXATION_CONFIG,
    "CONTRAST_CONFIG": CONTRAST_CONFIG,
    "PLANNING_STRUCTURES_CONFIG": PLANNING_STRUCTURES_CONFIG,
    "CT_PATIENT_CONFIG": CT_PATIENT_CONFIG,
    "PLAN_INFO_CONFIG": PLAN_INFO_CONFIG,
    "COURSE_CONFIG": COURSE_CONFIG,
    "OPTIMIZATION_CONFIG": OPTIMIZATION_CONFIG,
    "CATEGORY_ORDER": CATEGORY_ORDER,
}


def build_effective_config(
    overrides: Optional[Dict[str, Any]] = None,
    use_overrides_file: bool = False,
    overrides_path: Optional[str | Path] = None,
) -> Dict[str, Any]:
    """
    Construye una vista 'efectiva' de la configuración:

        {
            "rules":  { "CourseRule": True, ... },
            "params": { "COLLISION_CONFIG": {...}, ... },
        }

    - Clona (deepcopy) los dicts base; nunca los modifica.
    - Si `use_overrides_file` o `overrides_path`, carga el JSON de overrides.
    - Si se pasa `overrides` (dict), se aplica después del archivo.
    """
    effective: Dict[str, Any] = {
        "rules": copy.deepcopy(RULE_SWITCHES),
        "params": {k: copy.deepcopy(v) for k, v in PARAM_SECTIONS.items()},
    }

    if use_overrides_file or overrides_path is not None:
        apply_overrides_to_config(effective, load_overrides(overrides_path))

    if overrides:
        apply_overrides_to_config(effective, overrides)

    return effective


# ============================================================
# 12) VALIDACIÓN DEL CONFIG
# ============================================================

def validate_config(
    effective: Optional[Dict[str, Any]] = None,
    strict: bool = False,
) -> Dict[str, Any]:
    """
    Recorre la configuración y reporta inconsistencias básicas.

    Devuelve:
        {
            "ok": bool,
            "errors":   [str, ...],
            "warnings": [str, ...],
        }

    Si strict=True, cualquier warning cuenta como error lógico (ok=False).
    No lanza excepción.
    """
    effective = effective if effective is not None else build_effective_config()
    params = effective.get("params", {})
    rules = effective.get("rules", {})

    errors: List[str] = []
    warnings: List[str] = []

    profiles = params.get("MACHINE_PROFILES", {})

    # --- 1) Claves de máquina deben existir en MACHINE_PROFILES ---
    per_machine = {
        "COLLISION_CONFIG": params.get("COLLISION_CONFIG", {}),
        "SETUP_FIELDS_CONFIG": params.get("SETUP_FIELDS_CONFIG", {}),
        "DOSE_CONFIG.expected_dose_rates": params.get("DOSE_CONFIG", {}).get("expected_dose_rates", {}),
        "FIXATION_CONFIG.required_prefixes": params.get("FIXATION_CONFIG", {}).get("required_prefixes", {}),
        "FIELD_GEOMETRY_CONFIG.tolerance_tables": params.get("FIELD_GEOMETRY_CONFIG", {}).get("tolerance_tables", {}),
    }
    for section, entries in per_machine.items():
        for key in entries:
            if key not in profiles:
                errors.append(f"{section} tiene máquina '{key}' que no existe en MACHINE_PROFILES.")

    # --- 2) Umbrales de colisión en el orden correcto ---
    for key, cfg in params.get("COLLISION_CONFIG", {}).items():
        mode = cfg.get("mode")
        err = cfg.get("error_cm")
        warn = cfg.get("warning_cm")
        if mode not in ("clearance", "distance"):
            errors.append(f"COLLISION_CONFIG['{key}'].mode inválido: {mode!r}")
            continue
        if err is None or warn is None:
            errors.append(f"COLLISION_CONFIG['{key}'] sin umbrales error_cm/warning_cm.")
            continue
        if mode == "clearance" and not err < warn:
            errors.append(
                f"COLLISION_CONFIG['{key}']: en modo clearance error_cm ({err}) "
                f"debe ser menor que warning_cm ({warn})."
            )
        if mode == "distance" and not err > warn:
            errors.append(
                f"COLLISION_CONFIG['{key}']: en modo distance error_cm ({err}) "
                f"debe ser mayor que warning_cm ({warn})."
            )
        if float(cfg.get("boundary_radius_mm", 0.0)) <= 0:
            errors.append(f"COLLISION_CONFIG['{key}'].boundary_radius_mm debe ser positivo.")
        if int(cfg.get("slice_stride", 1)) < 1:
            errors.append(f"COLLISION_CONFIG['{key}'].slice_stride debe ser >= 1.")
        if not cfg.get("structure_prefixes"):
            warnings.append(f"COLLISION_CONFIG['{key}'] no define structure_prefixes.")

    # --- 3) Patrones regex compilables ---
    naming = params.get("FIELD_NAMING_CONFIG", {})
    patterns = {
        f"FIELD_NAMING_CONFIG.{k}": v for k, v in naming.items() if k.endswith("pattern") or "_pattern_" in k
    }
    patterns["COURSE_CONFIG.id_pattern"] = params.get("COURSE_CONFIG", {}).get("id_pattern", "")
    for name, pattern in patterns.items():
        try:
            re.compile(pattern)
        except (re.error, TypeError) as exc:
            errors.append(f"{name} no es un regex válido: {exc}")

    # --- 4) Interruptores de reglas ---
    for name, enabled in rules.items():
        if name not in RULE_SWITCHES:
            warnings.append(f"Interruptor de regla desconocido '{name}'.")
        if not isinstance(enabled, bool):
            errors.append(f"Interruptor de regla '{name}' debe ser bool, no {type(enabled).__name__}.")

    # --- 5) Marcadores del origen de usuario ---
    ct_cfg = params.get("CT_PATIENT_CONFIG", {})
    if float(ct_cfg.get("marker_radius_mm", 1.0)) <= 0:
        errors.append("CT_PATIENT_CONFIG.marker_radius_mm debe ser positivo.")

    # --- 6) Orden de categorías ---
    seen_prefixes: Dict[str, int] = {}
    for item in params.get("CATEGORY_ORDER", []):
        try:
            prefix, prio = item
            prio = int(prio)
        except (TypeError, ValueError):
            errors.append(f"CATEGORY_ORDER contiene una entrada inválida: {item!r}")
            continue
        if prefix in seen_prefixes:
            warnings.append(f"CATEGORY_ORDER repite el prefijo '{prefix}'.")
        seen_prefixes[prefix] = prio

    ok = len(errors) == 0 and (len(warnings) == 0 or not strict)
    return {
        "ok": ok,
        "errors": errors,
        "warnings": warnings,
    }


# ============================================================
# 13) LOGGING
# ============================================================
# Solo define un dict estilo logging.config.dictConfig; la aplicación
# (cli.py) es quien llama a logging.config.dictConfig(...).

LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "[%(levelname)s] %(name)s: %(message)s",
        },
        "detailed": {
            "format": "%(asctime)s [%(levelname)s] %(name)s (%(funcName)s): %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "level": "INFO",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "crosscheck": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
}


def get_logging_config(verbose: bool = False) -> Dict[str, Any]:
    """
    Devuelve una copia del LOGGING_CONFIG lista para dictConfig.
    Con verbose=True baja el logger 'crosscheck' y su handler a DEBUG.
    """
    cfg = copy.deepcopy(LOGGING_CONFIG)
    if verbose:
        cfg["handlers"]["console"]["level"] = "DEBUG"
        cfg["handlers"]["console"]["formatter"] = "detailed"
        cfg["loggers"]["crosscheck"]["level"] = "DEBUG"
    return cfg


def get_crosscheck_logger(name: str = "crosscheck") -> logging.Logger:
    """
    Helper para obtener un logger consistente en todo el proyecto.
    No llama a dictConfig; se asume que la app lo hará en el arranque.
    """
    return logging.getLogger(name)


# ------------------------------------------------------------
# Registro de getters (introspección / debugging)
# ------------------------------------------------------------

GETTER_REGISTRY: Dict[str, Callable[..., Any]] = {
    "get_machine_profiles": get_machine_profiles,
    "get_geometry_constants": get_geometry_constants,
    "get_collision_config": get_collision_config,
    "get_field_naming_config": get_field_naming_config,
    "get_field_geometry_config": get_field_geometry_config,
    "get_setup_fields_config": get_setup_fields_config,
    "get_beam_energy_config": get_beam_energy_config,
    "get_dose_config": get_dose_config,
    "get_reference_point_config": get_reference_point_config,
    "get_fixation_config": get_fixation_config,
    "get_contrast_config": get_contrast_config,
    "get_planning_structures_config": get_planning_structures_config,
    "get_ct_patient_config": get_ct_patient_config,
    "get_plan_info_config": get_plan_info_config,
    "get_course_config": get_course_config,
    "get_optimization_config": get_optimization_config,
    "get_category_order": get_category_order,
    "get_rule_switches": get_rule_switches,
    "get_reporting_config": get_reporting_config,
    "get_logging_config": get_logging_config,
}


def list_getters() -> List[str]:
    """Lista ordenada de getters registrados."""
    return sorted(GETTER_REGISTRY.keys())
